"""
Bounded memory of ingested external items.

Maps an item's external id to a fingerprint of its mutable fields so an
unchanged item pushed twice is recognised. Uses an OrderedDict as the
eviction queue: re-recording an item moves it to the newest end, and the
oldest entries are dropped once capacity is exceeded.
"""

import hashlib
import json
from collections import OrderedDict

from ..models import RelayItem

FINGERPRINT_FIELDS = ("type", "author", "title", "text", "url", "sourceUrl")


def item_fingerprint(item: RelayItem) -> str:
    """SHA-1 over the canonical JSON of the item's mutable fields."""
    payload = {name: getattr(item, name) for name in FINGERPRINT_FIELDS}
    canonical = json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()


class DedupLedger:
    """Not locked; the owning scheduler serializes access."""

    def __init__(self, capacity: int = 5000):
        self.capacity = capacity
        self._versions: "OrderedDict[str, str]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._versions)

    def __contains__(self, key: str) -> bool:
        return key in self._versions

    def is_unchanged(self, key: str, fingerprint: str) -> bool:
        return self._versions.get(key) == fingerprint

    def record(self, key: str, fingerprint: str) -> None:
        """Remember the latest version of an item, evicting the oldest entries."""
        self._versions[key] = fingerprint
        self._versions.move_to_end(key)

        while len(self._versions) > self.capacity:
            self._versions.popitem(last=False)
