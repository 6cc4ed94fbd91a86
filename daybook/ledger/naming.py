"""
Day-file naming.

Current format:  YYYYMMDD_<user>_<16 hex>.json
Legacy format:   YYYY-MM-DD_<user>.json

The hash suffix is sha256("YYYYMMDD_<user>")[:16], so the name depends
only on the day and the sanitized user name.

DESIGN DECISION: Finding an existing day-file is a list of resolver
strategies tried in order. The first strategy is the current naming;
every later one recognizes a format older clients wrote, and a file it
finds is migrated to the current name on first touch.
"""

import re
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Optional

from daybook.ledger.hashing import day_stamp, short_hash
from daybook.services.storage.interface import FileQuery


UNKNOWN_USER = "UnknownUser"

CURRENT_NAME = re.compile(r"^(?P<day>\d{8})_(?P<user>[^_]+)_(?P<hash>[0-9a-f]{16})\.json$")
LEGACY_DASHED_NAME = re.compile(r"^(?P<day>\d{4}-\d{2}-\d{2})_(?P<user>.+)\.json$")


def sanitize_user(user_name: Optional[str]) -> str:
    """
    Remove whitespace and replace underscores with dashes.

    Underscores separate the parts of a file name, so they cannot
    appear inside the user part.
    """
    cleaned = re.sub(r"\s+", "", user_name or "").replace("_", "-")
    return cleaned or UNKNOWN_USER


def _legacy_user(user_name: Optional[str]) -> str:
    # Older clients only stripped whitespace
    return re.sub(r"\s+", "", user_name or "") or UNKNOWN_USER


def file_prefix(day: date, user_name: str) -> str:
    return f"{day_stamp(day)}_{sanitize_user(user_name)}"


def resolve_file_name(day: date, user_name: str) -> str:
    """The current-format name of the day-file for (day, user)."""
    prefix = file_prefix(day, user_name)
    return f"{prefix}_{short_hash(prefix)}.json"


class NamingStrategy(ABC):
    """One way a day-file may have been named."""

    name: str = ""
    is_current: bool = False

    @abstractmethod
    def query(self, day: date, user_name: str, folder_id: str) -> FileQuery:
        """Store query that finds candidates for (day, user)."""
        pass

    @abstractmethod
    def parse_day(self, file_name: str, user_name: str) -> Optional[date]:
        """The day a file holds, if this strategy recognizes it for `user_name`."""
        pass

    def matches(self, file_name: str, day: date, user_name: str) -> bool:
        return self.parse_day(file_name, user_name) == day


class CurrentNaming(NamingStrategy):
    """Exact current-format name."""

    name = "current"
    is_current = True

    def query(self, day: date, user_name: str, folder_id: str) -> FileQuery:
        return FileQuery(name=resolve_file_name(day, user_name), parent_id=folder_id)

    def parse_day(self, file_name: str, user_name: str) -> Optional[date]:
        match = CURRENT_NAME.match(file_name)
        if not match or match["user"] != sanitize_user(user_name):
            return None
        day = datetime.strptime(match["day"], "%Y%m%d").date()
        if file_name != resolve_file_name(day, user_name):
            return None
        return day


class ForeignHashNaming(NamingStrategy):
    """Current layout, but the suffix came from a different hash function."""

    name = "foreign_hash"

    def query(self, day: date, user_name: str, folder_id: str) -> FileQuery:
        return FileQuery(name_contains=f"{file_prefix(day, user_name)}_", parent_id=folder_id)

    def parse_day(self, file_name: str, user_name: str) -> Optional[date]:
        match = CURRENT_NAME.match(file_name)
        if not match or match["user"] != sanitize_user(user_name):
            return None
        day = datetime.strptime(match["day"], "%Y%m%d").date()
        if file_name == resolve_file_name(day, user_name):
            return None
        return day


class LegacyDashedNaming(NamingStrategy):
    """YYYY-MM-DD_<user>.json, written by the first clients."""

    name = "legacy_dashed"

    def legacy_name(self, day: date, user_name: str) -> str:
        return f"{day.isoformat()}_{_legacy_user(user_name)}.json"

    def query(self, day: date, user_name: str, folder_id: str) -> FileQuery:
        return FileQuery(name=self.legacy_name(day, user_name), parent_id=folder_id)

    def parse_day(self, file_name: str, user_name: str) -> Optional[date]:
        match = LEGACY_DASHED_NAME.match(file_name)
        if not match or match["user"] != _legacy_user(user_name):
            return None
        try:
            return date.fromisoformat(match["day"])
        except ValueError:
            return None


DEFAULT_STRATEGIES: tuple[NamingStrategy, ...] = (
    CurrentNaming(),
    ForeignHashNaming(),
    LegacyDashedNaming(),
)


def recognize(
    file_name: str,
    user_name: str,
    strategies: tuple[NamingStrategy, ...] = DEFAULT_STRATEGIES,
) -> Optional[tuple[date, NamingStrategy]]:
    """The day and strategy of a ledger file, or None for any other file."""
    for strategy in strategies:
        day = strategy.parse_day(file_name, user_name)
        if day is not None:
            return day, strategy
    return None
