"""
TTL cache for enrichment results.

Entries are keyed by slot and carry the fingerprint of the evaluation they
were computed for. An entry is served only while it is younger than the TTL
and the current evaluation's fingerprint still matches; otherwise it is
evicted on read.
"""

import hashlib
import json
import threading
import time
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, Optional

from structlog import get_logger

from .evaluation import CostEvaluation

logger = get_logger(__name__)

DEFAULT_SLOT = "current"
FINGERPRINT_TOP_CATEGORIES = 5


def _cents(amount: Decimal) -> str:
    return str(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def fingerprint(evaluation: CostEvaluation) -> str:
    """SHA-256 over the salient fields of an evaluation.

    Covers total, projected total, period, category count and the top five
    categories by amount. Retrieval time is deliberately excluded.
    """
    top = sorted(evaluation.breakdown.items(), key=lambda item: (-item[1], item[0]))
    payload = {
        "total": _cents(evaluation.total_cost),
        "projected": _cents(evaluation.projected_total),
        "period": [evaluation.period_start.isoformat(), evaluation.period_end.isoformat()],
        "categories": len(evaluation.breakdown),
        "top": [[name, _cents(amount)] for name, amount in top[:FINGERPRINT_TOP_CATEGORIES]],
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class InferenceCacheEntry:
    """Cached enrichment result with the fingerprint it was computed for."""
    fingerprint: str
    result: Any
    cached_at: float


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    evictions: int
    size: int

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class InferenceCache:
    """Thread-safe TTL map with lazy eviction; no background sweeper."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, InferenceCacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, evaluation: CostEvaluation, slot: str = DEFAULT_SLOT) -> Optional[Any]:
        """Cached result for `evaluation`, or None.

        An expired entry or one computed for a different fingerprint is
        evicted.
        """
        current = fingerprint(evaluation)
        with self._lock:
            entry = self._entries.get(slot)
            if entry is None:
                self._misses += 1
                return None

            expired = self._clock() - entry.cached_at >= self.ttl_seconds
            if expired or entry.fingerprint != current:
                del self._entries[slot]
                self._evictions += 1
                self._misses += 1
                logger.debug(
                    "Inference cache entry evicted",
                    slot=slot,
                    reason="expired" if expired else "fingerprint_mismatch",
                )
                return None

            self._hits += 1
            return entry.result

    def put(self, evaluation: CostEvaluation, result: Any, slot: str = DEFAULT_SLOT) -> InferenceCacheEntry:
        entry = InferenceCacheEntry(
            fingerprint=fingerprint(evaluation),
            result=result,
            cached_at=self._clock(),
        )
        with self._lock:
            self._entries[slot] = entry
        return entry

    def invalidate(self, slot: Optional[str] = None) -> None:
        """Drop one slot, or everything."""
        with self._lock:
            if slot is None:
                self._entries.clear()
            else:
                self._entries.pop(slot, None)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                size=len(self._entries),
            )
