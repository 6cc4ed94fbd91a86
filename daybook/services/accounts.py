"""
Account Directory

Accounts are owned by the user's settings document, not by the ledger.
The ledger only reads them to zero-fill balances for display.

DESIGN DECISION: Account lookups go through a small interface so that
guest sessions and tests can use a fixed list while signed-in sessions
read `user_setting.json` from the same Drive folder as the day-files.
"""

import json
from abc import ABC, abstractmethod
from typing import Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from daybook.models.ledger import Account
from daybook.services.storage.interface import BlobStoreInterface, FileQuery


logger = structlog.get_logger(__name__)


def default_accounts(currency: str = "TWD") -> list[Account]:
    """Accounts every new user starts with."""
    return [
        Account(id="acc_cash", name="Cash", type="cash", currency=currency),
        Account(id="acc_bank", name="Bank", type="bank", currency=currency),
    ]


class AccountDirectory(ABC):
    """Read-only source of the user's accounts."""

    @abstractmethod
    async def list_accounts(self) -> list[Account]:
        """Return all accounts, including deleted ones."""
        pass

    async def active_accounts(self) -> list[Account]:
        return [a for a in await self.list_accounts() if not a.deleted]


class StaticAccountDirectory(AccountDirectory):
    """A fixed list of accounts (guest sessions and tests)."""

    def __init__(self, accounts: Optional[list[Account]] = None):
        self._accounts = list(accounts) if accounts is not None else default_accounts()

    async def list_accounts(self) -> list[Account]:
        return list(self._accounts)


class BlobSettingsAccountDirectory(AccountDirectory):
    """
    Reads accounts from the settings document in the blob store.

    The result is cached for the lifetime of the directory; call
    `refresh()` after the settings change. A missing or unreadable
    document yields the default accounts.
    """

    def __init__(
        self,
        store: BlobStoreInterface,
        folder_name: str,
        settings_file_name: str = "user_setting.json",
        default_currency: str = "TWD",
    ):
        self._store = store
        self._folder_name = folder_name
        self._settings_file_name = settings_file_name
        self._default_currency = default_currency
        self._cache: Optional[list[Account]] = None

    def refresh(self) -> None:
        self._cache = None

    async def list_accounts(self) -> list[Account]:
        if self._cache is None:
            self._cache = await self._load()
        return list(self._cache)

    async def _load(self) -> list[Account]:
        folder_id = await self._store.ensure_folder(self._folder_name)
        files = await self._store.list_files(
            FileQuery(name=self._settings_file_name, parent_id=folder_id)
        )
        if not files:
            logger.info("settings_missing", file_name=self._settings_file_name)
            return default_accounts(self._default_currency)

        raw = await self._store.read_file(files[0].id)
        try:
            document = json.loads(raw.decode("utf-8"))
            entries = document.get("accounts") or []
            accounts = [Account.model_validate(item) for item in entries]
        except (UnicodeDecodeError, ValueError, AttributeError,
                PydanticValidationError) as e:
            logger.warning(
                "settings_unreadable",
                file_name=self._settings_file_name,
                error=str(e),
            )
            return default_accounts(self._default_currency)

        return accounts or default_accounts(self._default_currency)
