import hashlib
import logging
import threading
from collections import OrderedDict
from typing import Sequence

logger = logging.getLogger("automation_engine")


class IdempotencyKey:
    @staticmethod
    def compute_hash(*parts) -> str:
        """
        Computes a deterministic hash for deduplication and stable assignment.
        """
        raw = ":".join(str(p) for p in parts)
        return hashlib.sha256(raw.encode()).hexdigest()

    @staticmethod
    def stable_bucket(modulus: int, *parts) -> int:
        """Maps `parts` onto [0, modulus) using the first 8 bytes of the hash."""
        if modulus <= 0:
            raise ValueError("modulus must be positive")
        digest = IdempotencyKey.compute_hash(*parts)
        return int(digest[:16], 16) % modulus


def choose_weighted(weights: Sequence[int], *parts) -> int:
    """
    Deterministically picks an index into `weights` for the given key parts.
    The same parts always map to the same index.
    """
    total = sum(weights)
    bucket = IdempotencyKey.stable_bucket(total, *parts)
    cumulative = 0
    for index, weight in enumerate(weights):
        cumulative += weight
        if bucket < cumulative:
            return index
    return len(weights) - 1


class IdempotencyChecker:
    """Remembers recently processed keys (bounded) so redelivered events are ignored."""

    def __init__(self, max_keys: int = 10000):
        self.max_keys = max_keys
        self._seen: "OrderedDict[str, bool]" = OrderedDict()
        self._lock = threading.Lock()

    def check_and_mark(self, key: str) -> bool:
        """
        Returns True if `key` was already processed, otherwise records it and
        returns False.
        """
        with self._lock:
            if key in self._seen:
                self._seen.move_to_end(key)
                logger.info(f"Idempotency check: key {key} already processed.")
                return True
            self._seen[key] = True
            if len(self._seen) > self.max_keys:
                self._seen.popitem(last=False)
            return False
