"""Settings dataclass and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "default_settings_path",
    "redact_secret",
    "redact_settings",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".ninetynine"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "NINETYNINE_PROVIDER": "provider",
    "NINETYNINE_MODEL": "model",
    "NINETYNINE_TMP_DIR": "tmp_dir",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "NINETYNINE_DEBUG_LOGGING": "debug_logging",
    "NINETYNINE_DISPLAY_ERRORS": "display_errors",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "NINETYNINE_REQUEST_TIMEOUT": "request_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "NINETYNINE_STDOUT_ROWS": "ai_stdout_rows",
    "NINETYNINE_HISTORY_LIMIT": "request_history_limit",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEYS_FIELD = "provider_api_keys"
_API_KEYS_CIPHERTEXT_FIELD = "provider_api_keys_ciphertext"


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    provider: str | None = None
    model: str | None = None
    ai_stdout_rows: int = 3
    display_errors: bool = False
    request_history_limit: int = 100
    request_timeout: float = 0.0
    tmp_dir: str | None = None
    debug_logging: bool = False
    provider_api_keys: dict[str, str] = field(default_factory=dict)
    agent_rules: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def api_key_for(self, provider_name: str) -> str | None:
        """Return the stored API key for ``provider_name`` if one is configured."""

        key = (self.provider_api_keys or {}).get(provider_name)
        return key or None


class SecretVault:
    """Fernet-encrypts provider API keys for ``settings.json``.

    The key lives next to the settings file (mode 0600 on POSIX) and is created
    on first use. Stored tokens carry a ``fernet:`` prefix; bare tokens from
    older files are still accepted.
    """

    strategy = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self.key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._cipher().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{self.strategy}:{token}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, sep, payload = token.partition(":")
        if not sep:
            payload = token
        elif prefix != self.strategy:
            LOGGER.warning("Unknown secret token prefix %s; returning ciphertext.", prefix)
            return token
        try:
            return self._cipher().decrypt(payload.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError(f"API key token does not match {self.key_path}") from exc

    def _cipher(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(_load_or_create_key(self.key_path))
        return self._fernet


def _load_or_create_key(path: Path) -> bytes:
    if path.exists():
        return path.read_bytes().strip()
    path.parent.mkdir(parents=True, exist_ok=True)
    key = Fernet.generate_key()
    staged = path.with_suffix(".tmp")
    staged.write_bytes(key)
    if os.name != "nt":  # pragma: no cover - depends on OS
        os.chmod(staged, 0o600)
    staged.replace(path)
    LOGGER.info("Created API key encryption key at %s", path)
    return key


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        key_path = self._path.with_suffix(".key")
        self._vault = vault or SecretVault(key_path=key_path)

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        needs_migration = False

        if payload:
            api_keys, migrated = self._decrypt_api_keys(
                payload.pop(_API_KEYS_CIPHERTEXT_FIELD, None), payload.pop(_API_KEYS_FIELD, None)
            )
            needs_migration = migrated
            data = _filter_fields(payload)
            if not isinstance(data.get("metadata", {}), Mapping):
                LOGGER.debug("Ignoring non-mapping metadata payload of type %s", type(data["metadata"]))
                data.pop("metadata")
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if api_keys:
                settings = replace(settings, provider_api_keys=api_keys)
            LOGGER.debug(
                "Settings loaded from %s: provider=%s, model=%s, %d stored key(s)",
                self._path,
                settings.provider,
                settings.model,
                len(settings.provider_api_keys),
            )

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        api_keys = data.pop(_API_KEYS_FIELD, {}) or {}
        encrypted: dict[str, str] = {}
        for name, secret in api_keys.items():
            token = self._encrypt_secret_value(secret, field_name=f"{name} API key")
            if token:
                encrypted[name] = token
        if encrypted:
            data[_API_KEYS_CIPHERTEXT_FIELD] = encrypted
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.strategy
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {field.name for field in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        metadata_override = filtered.get("metadata")
        if isinstance(metadata_override, Mapping):
            merged_metadata = dict(settings.metadata or {})
            merged_metadata.update(metadata_override)
            filtered["metadata"] = merged_metadata
        keys_override = filtered.get(_API_KEYS_FIELD)
        if isinstance(keys_override, Mapping):
            merged_keys = dict(settings.provider_api_keys or {})
            merged_keys.update(keys_override)
            filtered[_API_KEYS_FIELD] = merged_keys
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid integer",
                    env_name,
                    value,
                )
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid float", env_name, value
                )
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    def _encrypt_secret_value(self, secret: str, *, field_name: str) -> str | None:
        if not secret:
            return None
        token = self._vault.encrypt(secret)
        LOGGER.debug("%s encrypted via %s backend", field_name, self._vault.strategy)
        return token

    def _decrypt_api_keys(
        self, ciphertext: Any, legacy_plaintext: Any
    ) -> tuple[dict[str, str], bool]:
        keys: dict[str, str] = {}
        migrated = False
        if isinstance(legacy_plaintext, Mapping) and legacy_plaintext:
            LOGGER.info("Detected plaintext provider API keys; migrating to encrypted storage.")
            keys.update({str(name): str(value) for name, value in legacy_plaintext.items() if value})
            migrated = True
        if isinstance(ciphertext, Mapping):
            for name, token in ciphertext.items():
                try:
                    keys.setdefault(str(name), self._vault.decrypt(token))
                except ValueError as exc:
                    LOGGER.warning("Unable to decrypt %s API key: %s", name, exc)
        return keys, migrated


def default_settings_path() -> Path:
    return _DEFAULT_SETTINGS_PATH


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(Settings)} - {_API_KEYS_FIELD}
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        if key not in allowed:
            continue
        result[key] = value
    return result


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"


def redact_settings(settings: Settings) -> dict[str, Any]:
    """Return a JSON-friendly dump of ``settings`` with API keys masked."""

    payload = asdict(settings)
    payload[_API_KEYS_FIELD] = {
        name: redact_secret(secret) for name, secret in (settings.provider_api_keys or {}).items()
    }
    return payload
