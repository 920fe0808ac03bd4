"""Tracks which users are currently looking at which instruments."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Set, Tuple

from ..config.logging import get_logger
from ..utils.clock import Clock, utc_now

logger = get_logger(__name__)


@dataclass
class ActivityRecord:
    """Last time a user showed interest in an instrument."""

    user_id: str
    symbol: str
    last_seen: datetime

    def is_active(self, now: datetime, timeout: timedelta) -> bool:
        return now - self.last_seen < timeout


class ActivityTracker:
    """
    In-memory (user, symbol) activity map used to pick polling cadence.

    Records are never removed eagerly: a stale record is simply inactive and
    gets evicted the next time its symbol is queried or a sweep runs. All
    methods are synchronous, so each update is atomic with respect to the
    event loop and needs no lock.
    """

    def __init__(self, timeout_seconds: int = 1800, clock: Clock = utc_now):
        self.timeout = timedelta(seconds=timeout_seconds)
        self._clock = clock
        self._records: Dict[Tuple[str, str], ActivityRecord] = {}
        self._users_by_symbol: Dict[str, Set[str]] = {}
        self.logger = logger.bind(component="activity_tracker")

    def __len__(self) -> int:
        return len(self._records)

    def record(self, user_id: str, symbol: str) -> ActivityRecord:
        """
        Mark a user as active on a symbol now.

        Args:
            user_id: User identifier
            symbol: Normalized trading pair

        Returns:
            The updated activity record
        """
        key = (user_id, symbol)
        now = self._clock()
        record = self._records.get(key)
        if record is None:
            record = self._records[key] = ActivityRecord(user_id, symbol, now)
            self._users_by_symbol.setdefault(symbol, set()).add(user_id)
        else:
            record.last_seen = now

        self.logger.debug("User activity recorded", user_id=user_id, symbol=symbol)
        return record

    def has_active_users(self, symbol: str) -> bool:
        """Whether any user has been active on the symbol within the timeout."""
        return bool(self.active_users(symbol))

    def active_users(self, symbol: str) -> List[str]:
        now = self._clock()
        active = []
        for user_id in list(self._users_by_symbol.get(symbol, ())):
            record = self._records[(user_id, symbol)]
            if record.is_active(now, self.timeout):
                active.append(user_id)
            else:
                self._evict(user_id, symbol)
        return active

    def active_symbols(self) -> Set[str]:
        """Symbols that currently have at least one active user."""
        return {symbol for symbol in list(self._users_by_symbol) if self.has_active_users(symbol)}

    def evict_stale(self) -> Set[str]:
        """
        Drop every inactive record.

        Returns:
            Symbols that lost their last active user in this sweep
        """
        now = self._clock()
        touched = set()
        for (user_id, symbol), record in list(self._records.items()):
            if not record.is_active(now, self.timeout):
                self._evict(user_id, symbol)
                touched.add(symbol)

        demoted = {symbol for symbol in touched if symbol not in self._users_by_symbol}
        if touched:
            self.logger.debug(
                "Stale activity evicted",
                symbols=sorted(touched),
                demoted=sorted(demoted),
            )
        return demoted

    def _evict(self, user_id: str, symbol: str) -> None:
        self._records.pop((user_id, symbol), None)
        users = self._users_by_symbol.get(symbol)
        if users is not None:
            users.discard(user_id)
            if not users:
                del self._users_by_symbol[symbol]

    def stats(self) -> Dict[str, int]:
        return {
            "records": len(self._records),
            "symbols": len(self._users_by_symbol),
        }
