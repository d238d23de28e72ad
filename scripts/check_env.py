"""Pre-flight check for the connector's ``.env`` before (re)starting the API.

Loads the file the same way ``app.core.config`` does and reports every problem
that would stop a tenant from connecting QuickBooks:

* Intuit app credentials (``QUICKBOOKS_CLIENT_ID``, ``QUICKBOOKS_CLIENT_SECRET``).
* ``QUICKBOOKS_ENVIRONMENT`` must be ``sandbox`` or ``production``.
* ``TOKEN_ENCRYPTION_SECRET`` must be set, and every secret listed in
  ``TOKEN_ENCRYPTION_PREVIOUS_SECRETS`` must differ from it.
* Production apps must use an HTTPS ``QUICKBOOKS_REDIRECT_URI``; Intuit
  rejects plain HTTP callbacks outside the sandbox.

Example::

    python -m scripts.check_env --env-file /opt/qbo-connector/.env
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from pydantic import ValidationError

from app.core.config import AppSettings, _load_env_file

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_RUNTIME_ERROR = 5


def collect_problems(settings: AppSettings) -> list[str]:
    """Return human-readable problems with the loaded settings."""
    problems: list[str] = []
    quickbooks = settings.quickbooks
    if not quickbooks.client_id:
        problems.append("QUICKBOOKS_CLIENT_ID is not set.")
    if not quickbooks.client_secret:
        problems.append("QUICKBOOKS_CLIENT_SECRET is not set.")
    if quickbooks.environment == "production" and quickbooks.redirect_uri.scheme != "https":
        problems.append(
            "QUICKBOOKS_REDIRECT_URI must use https when QUICKBOOKS_ENVIRONMENT=production."
        )

    security = settings.security
    secret = security.token_encryption_secret
    if not secret:
        problems.append("TOKEN_ENCRYPTION_SECRET is not set; stored tokens cannot be encrypted.")
    elif secret in security.previous_token_encryption_secrets:
        problems.append(
            "TOKEN_ENCRYPTION_PREVIOUS_SECRETS repeats the active TOKEN_ENCRYPTION_SECRET."
        )
    return problems


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate the QuickBooks connector settings in a .env file."
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        type=Path,
        help="Path to the environment file (default: .env in the repo root).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    if not env_file.exists():
        print(f"Environment file {env_file} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    _load_env_file(str(env_file))
    try:
        settings = AppSettings()  # type: ignore[call-arg]
    except ValidationError as exc:
        print(f"Settings validation failed:\n{exc}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR

    problems = collect_problems(settings)
    if problems:
        print("Settings validation failed:", file=sys.stderr)
        for problem in problems:
            print(f"  - {problem}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR

    print(
        f"Settings OK ({settings.quickbooks.environment}, "
        f"API host {settings.quickbooks.api_base_url})."
    )
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
