"""Prompt templates sent to provider command-line tools.

Every request prompt is assembled from the role preamble, the
operation-specific template, context fragments (location, rules, source
text), and the output framing that names the temp file the provider must
write its answer to.
"""

from __future__ import annotations

from .core.geo import Range
from .orchestration.reconcile import IMPORTS_MARKER

__all__ = [
    "READ_TMP",
    "agent_rule",
    "directions",
    "file_location",
    "fill_in_function",
    "implement_function",
    "output_file",
    "range_text",
    "role",
    "tmp_file_location",
    "visual_selection",
]

READ_TMP = (
    "Never attempt to read TEMP_FILE. It is purely for output. "
    "Previous contents can be overwritten without concern."
)


def role() -> str:
    """System role prompt shared by every operation."""
    return """You are an expert software engineer. You write robust, canonical, idiomatic code.
You follow best practices and conventions for the language you are working in.
You ALWAYS return ONLY raw code - no markdown fences, no explanations, no conversation."""


def _language(file_type: str | None) -> str:
    return file_type or "the given language"


def _imports_rule(number: int) -> str:
    return (
        f"{number}. If the code needs imports that are not in the file yet, write them first, "
        f"one per line, then a line containing exactly {IMPORTS_MARKER}, then the code"
    )


def fill_in_function(file_type: str | None) -> str:
    language = _language(file_type)
    return f"""You are given a function to implement in {language}.

TASK: Create the complete function body.

RULES:
1. Return ONLY the complete function including its signature
2. Do NOT include any text before or after the function
3. Do NOT wrap code in markdown fences (no ```{file_type or ""} or ``` blocks)
4. Do NOT include explanations or comments about what you did
5. If the function already has partial contents, use those as context
6. Check the file for helper functions, types, or context you can use
7. Write idiomatic {language} code following best practices
{_imports_rule(8)}

<Example language="typescript">
<Input>
export function fizz_buzz(count: number): void {{
}}
</Input>
<Output>
export function fizz_buzz(count: number): void {{
  for (let i = 1; i <= count; i++) {{
    if (i % 15 === 0) {{
      console.log("FizzBuzz");
    }} else if (i % 3 === 0) {{
      console.log("Fizz");
    }} else if (i % 5 === 0) {{
      console.log("Buzz");
    }} else {{
      console.log(i);
    }}
  }}
}}
</Output>
<Notes>
- Keep modifiers/signature details present in the input (e.g. export/async/public)
- Return ONLY the function, nothing else
</Notes>
</Example>

If there are DIRECTIONS provided, follow them precisely. Do not deviate.
"""


def implement_function(file_type: str | None) -> str:
    language = _language(file_type)
    return f"""You are given a function call in {language} that references a function which does not exist yet.

TASK: Implement the missing function based on how it is being called.

RULES:
1. Return ONLY the complete function implementation
2. Do NOT include any text before or after the function
3. Do NOT wrap code in markdown fences (no ```{file_type or ""} or ``` blocks)
4. Infer the function signature from the call site (parameter types, return type)
5. Infer the function behavior from its name and how the result is used
6. Write idiomatic {language} code following best practices
7. Include appropriate error handling if the language supports it
{_imports_rule(8)}

If there are DIRECTIONS provided, follow them precisely.
"""


def visual_selection(span: Range, file_type: str | None, selection: str, file_text: str) -> str:
    language = _language(file_type)
    return f"""You are given a code selection in {language} that you need to replace with new code.

TASK: Replace the selected code with an improved or corrected version.

RULES:
1. Return ONLY the replacement code
2. Do NOT include any text before or after the code
3. Do NOT wrap code in markdown fences (no ```{file_type or ""} or ``` blocks)
4. If the selection contains TODO/FIXME comments, implement what they describe
5. Maintain the same indentation level as the original selection
6. Consider the surrounding file context when writing the replacement

<SELECTION_LOCATION>
{span.human()}
</SELECTION_LOCATION>
<SELECTION_CONTENT>
{selection}
</SELECTION_CONTENT>
<FILE_CONTEXT>
{file_text}
</FILE_CONTEXT>

If there are DIRECTIONS provided, follow them precisely.
"""


def output_file() -> str:
    return """CRITICAL OUTPUT RULES:
1. NEVER alter any file other than TEMP_FILE
2. NEVER provide conversational output - return ONLY code
3. ONLY write the requested code changes to TEMP_FILE
4. Do NOT include markdown code fences in your output
5. Do NOT include explanations before or after the code
"""


def directions(prompt: str, action: str) -> str:
    """Wrap user directions around an operation template."""
    return f"""<DIRECTIONS>
{prompt}
</DIRECTIONS>
<Context>
{action}
</Context>
"""


def tmp_file_location(tmp_file: str) -> str:
    return (
        f"<OutputInstructions>\n{output_file()}\n{READ_TMP}\n</OutputInstructions>\n"
        f"<TEMP_FILE>{tmp_file}</TEMP_FILE>"
    )


def file_location(full_path: str, span: Range) -> str:
    first, last = span.rows
    return f"<Location><File>{full_path}</File><Lines>{first + 1}-{last + 1}</Lines></Location>"


def range_text(text: str) -> str:
    return f"<FunctionText>\n{text}\n</FunctionText>"


def agent_rule(name: str, content: str) -> str:
    return f'<Rule name="{name}">\n{content.rstrip()}\n</Rule>'
