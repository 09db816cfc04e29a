#!/usr/bin/env python3
"""
In-memory record of which feed items have already been seen.

The tracker maps a feed-URL fingerprint to the set of item fingerprints seen
in that feed's most recent completed cycle. Each commit replaces the stored
set, so memory stays bounded by the current size of each feed rather than by
its history. Nothing is persisted: after a restart every URL is unseen again
and its first cycle seeds the tracker without delivering anything.
"""

from hashlib import blake2b
from typing import AbstractSet, Dict, FrozenSet, Iterable, List, Tuple, Union

from config import get_logger

logger = get_logger("tracker")

ItemFingerprint = int


def url_fingerprint(url: str) -> str:
    """Stable, case-insensitive fingerprint of a feed URL."""
    canonical = (url or "").strip().casefold()
    return blake2b(canonical.encode("utf-8"), digest_size=16).hexdigest()


def item_fingerprint(identity: Union[int, str]) -> ItemFingerprint:
    """Fingerprint an item's natural identity.

    Integer identities are already compact and pass through unchanged;
    strings are reduced to a 64-bit BLAKE2b digest.
    """
    if isinstance(identity, bool):
        raise TypeError("item identity must be an int or str")
    if isinstance(identity, int):
        return identity
    digest = blake2b(str(identity).encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big")


class SeenItemTracker:
    """Per-feed sets of previously observed item fingerprints.

    Accessed by one cycle at a time; concurrent URL groups never share a
    fingerprint so no locking is needed.
    """

    def __init__(self) -> None:
        self._seen: Dict[str, FrozenSet[ItemFingerprint]] = {}

    def was_seen(self, url_fp: str, item_fp: ItemFingerprint) -> bool:
        return item_fp in self._seen.get(url_fp, frozenset())

    def begin_cycle(self, url_fp: str) -> Tuple[bool, FrozenSet[ItemFingerprint]]:
        """Return (is_first_cycle_for_url, previously committed set)."""
        previous = self._seen.get(url_fp)
        if previous is None:
            return True, frozenset()
        return False, previous

    def commit_cycle(self, url_fp: str, processed: Iterable[ItemFingerprint]) -> None:
        """Replace the stored set for a URL with this cycle's processed set."""
        new_set = frozenset(processed)
        previous = self._seen.get(url_fp)
        self._seen[url_fp] = new_set
        if previous is None:
            logger.debug(f"Seeded tracker for {url_fp} with {len(new_set)} items")
        else:
            dropped = len(previous - new_set)
            if dropped:
                logger.debug(f"{dropped} items dropped off {url_fp} since last cycle")

    def seen_items(self, url_fp: str) -> AbstractSet[ItemFingerprint]:
        return self._seen.get(url_fp, frozenset())

    def tracked_urls(self) -> List[str]:
        return list(self._seen)

    def __contains__(self, url_fp: str) -> bool:
        return url_fp in self._seen

    def __len__(self) -> int:
        return len(self._seen)
