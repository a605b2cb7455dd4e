"""
ensure_account: load the persisted ACME account or register a new one.

A parseable account.json is trusted as-is and costs no network call.  Anything
else (missing, unreadable, not JSON, no uri) triggers a registration whose
result overwrites the file.
"""
from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from ca.client import AcmeClient
from ca.messages import Account
from errors import AccountPersistError
from polling import Context
from storage.filesystem import write_account_json

logger = logging.getLogger(__name__)


def load_account(path: Path) -> Account:
    """Decode account.json; raises OSError or ValidationError when it cannot be used."""
    return Account.model_validate_json(Path(path).read_text(encoding="utf-8"))


def ensure_account(ctx: Context, client: AcmeClient, path: Path) -> Account:
    """
    Return the account for *client*'s key, binding it to the client.

    Raises AccountPersistError when the CA registered an account that could
    not then be written to *path*; proceeding would re-register on every run.
    """
    try:
        account = load_account(path)
    except (OSError, ValueError, ValidationError) as exc:
        logger.info("No usable ACME account at %s (%s); registering", path, exc)
    else:
        logger.info("Using existing ACME account %s", account.uri)
        client.bind_account(account)
        return account

    account = client.register(ctx)
    logger.info("Registered new ACME account: %s", account.uri)
    try:
        write_account_json(Path(path), account.to_json())
    except OSError as exc:
        raise AccountPersistError(
            f"Registered account {account.uri} but could not save it to {path}: {exc}"
        ) from exc
    return account
