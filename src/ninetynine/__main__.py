"""Allow ``python -m ninetynine``."""

from .app import main

raise SystemExit(main())
