"""Short-lived local cache of denials.

Not authoritative. A cached denial is only ever served until the moment the
store itself said a retry could succeed, so a stale entry can only err
toward denying; the limiter uses it for strict (fail-closed) policies only.
"""

from collections import OrderedDict
from dataclasses import replace
from typing import Optional, Tuple

from limiter.app.models import Decision


class LocalDenyCache:
    """LRU-bounded map of store key -> denial valid until a Unix time.

    Methods never await, so no lock is needed on a single event loop.
    """

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self._max_entries = max_entries
        self._entries: OrderedDict[str, Tuple[Decision, float]] = OrderedDict()

    def get(self, key: str, now: float) -> Optional[Decision]:
        """Return the cached denial for key if it is still in force."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        decision, until = entry
        if now >= until:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return replace(decision, remaining=0, retry_after=until - now)

    def put(self, key: str, decision: Decision, now: float) -> None:
        """Remember a denial until its retry time."""
        if decision.allowed or not decision.retry_after or decision.retry_after <= 0:
            return
        self._entries[key] = (decision, now + decision.retry_after)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one key, or everything when key is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
