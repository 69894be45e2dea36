"""
Monthly spend ledger for paid inference calls.

The ledger is shared across cycles. Every read and mutation happens under one
lock, so the check-then-update sequence of a budget gate cannot interleave
with another cycle's. Period rollover is lazy: it is checked on each access,
never scheduled.
"""

import itertools
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Optional

from structlog import get_logger

from .evaluation import Number, to_decimal
from .interfaces import KeyValueStore
from .pricing import quantize_cost
from ..storage.models import BudgetLedgerEntry

logger = get_logger(__name__)

LEDGER_KEY_PREFIX = "ledger#"


def current_period_id(now: datetime) -> str:
    """Billing period identifier, e.g. "2024-03"."""
    return now.strftime("%Y-%m")


@dataclass(frozen=True)
class Reservation:
    """Budget held for an in-flight call until it is settled or released."""
    reservation_id: int
    period_id: str
    amount: Decimal


class BudgetLedger:
    """Accumulated inference spend for the current period against a threshold.

    Calls reserve their estimated cost before going out (`try_reserve`) and
    settle the actual cost once they have completed (`settle`), or hand the
    reservation back (`release`). Spend is only ever recorded after a call
    has finished, so an abandoned cycle leaves no partial mutation.
    """

    def __init__(
        self,
        threshold: Number,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        store: Optional[KeyValueStore] = None,
        name: str = "inference",
    ):
        """Initialize the ledger, resuming persisted spend when a store is given.

        Args:
            threshold: Monthly spend limit
            clock: Wall clock used for period rollover
            store: Optional key-value store to persist the entry in
            name: Ledger name, part of the store key

        Raises:
            ValueError: If threshold is not positive
        """
        self.threshold = to_decimal(threshold)
        if self.threshold <= 0:
            raise ValueError("threshold must be > 0")
        self.name = name
        self._clock = clock
        self._store = store
        self._lock = threading.RLock()
        self._reservations: Dict[int, Reservation] = {}
        self._ids = itertools.count(1)
        self._entry = self._load()

    @property
    def store_key(self) -> str:
        return f"{LEDGER_KEY_PREFIX}{self.name}"

    def snapshot(self) -> BudgetLedgerEntry:
        """Current entry after applying any pending rollover."""
        with self._lock:
            self._rollover()
            return self._entry

    def remaining(self) -> Decimal:
        """Threshold minus recorded spend and outstanding reservations."""
        return self.snapshot().remaining

    def utilization(self) -> Decimal:
        """Recorded spend as a fraction of the threshold (1 means exhausted)."""
        return self.snapshot().utilization

    def is_disabled(self) -> bool:
        return self.snapshot().disabled

    def is_exhausted(self) -> bool:
        """True if no further calls are allowed this period.

        Spend meeting or exceeding the threshold disables calls for the rest
        of the period.
        """
        with self._lock:
            self._rollover()
            if self._entry.disabled:
                return True
            if self._entry.spent >= self.threshold:
                logger.warning(
                    "Inference budget exhausted, disabling for period",
                    ledger=self.name,
                    period_id=self._entry.period_id,
                    spent=str(self._entry.spent),
                    threshold=str(self.threshold),
                )
                self._set_entry(replace(self._entry, disabled=True))
                return True
            return False

    def disable_for_period(self) -> None:
        """Stop further calls until the period rolls over."""
        with self._lock:
            self._rollover()
            self._set_entry(replace(self._entry, disabled=True))

    def try_reserve(self, amount: Number) -> Optional[Reservation]:
        """Atomically check the budget and hold `amount` against it.

        Returns:
            The reservation, or None if the ledger is disabled or `amount`
            exceeds what is left of the budget
        """
        amount = quantize_cost(to_decimal(amount))
        with self._lock:
            self._rollover()
            entry = self._entry
            if entry.disabled or entry.spent >= self.threshold or amount > entry.remaining:
                logger.info(
                    "Budget reservation refused",
                    ledger=self.name,
                    requested=str(amount),
                    remaining=str(entry.remaining),
                    disabled=entry.disabled,
                )
                return None

            reservation = Reservation(
                reservation_id=next(self._ids),
                period_id=entry.period_id,
                amount=amount,
            )
            self._reservations[reservation.reservation_id] = reservation
            self._entry = replace(entry, reserved=entry.reserved + amount)
            return reservation

    def settle(self, reservation: Reservation, actual: Number) -> BudgetLedgerEntry:
        """Replace a reservation with the actual cost of the completed call."""
        actual = quantize_cost(to_decimal(actual))
        with self._lock:
            self._rollover()
            self._drop_reservation(reservation)
            entry = replace(self._entry, spent=self._entry.spent + actual)
            self._set_entry(entry)
            logger.info(
                "Inference spend recorded",
                ledger=self.name,
                period_id=entry.period_id,
                amount=str(actual),
                estimated=str(reservation.amount),
                spent=str(entry.spent),
                remaining=str(entry.remaining),
            )
            return entry

    def release(self, reservation: Reservation) -> None:
        """Hand back a reservation whose call recorded nothing."""
        with self._lock:
            self._rollover()
            self._drop_reservation(reservation)

    def record(self, amount: Number) -> BudgetLedgerEntry:
        """Record spend that was not reserved beforehand."""
        amount = quantize_cost(to_decimal(amount))
        if amount < 0:
            raise ValueError("amount must be >= 0")
        with self._lock:
            self._rollover()
            entry = replace(self._entry, spent=self._entry.spent + amount)
            self._set_entry(entry)
            return entry

    def _drop_reservation(self, reservation: Reservation) -> None:
        # Reservations from a previous period were cleared by the rollover
        if self._reservations.pop(reservation.reservation_id, None) is None:
            return
        reserved = max(self._entry.reserved - reservation.amount, Decimal("0"))
        self._entry = replace(self._entry, reserved=reserved)

    def _rollover(self) -> None:
        period_id = current_period_id(self._clock())
        if self._entry.period_id == period_id:
            return
        logger.info(
            "Budget period rolled over",
            ledger=self.name,
            previous_period=self._entry.period_id,
            previous_spent=str(self._entry.spent),
            period_id=period_id,
        )
        self._reservations.clear()
        self._set_entry(BudgetLedgerEntry(period_id=period_id, spent=Decimal("0"), threshold=self.threshold))

    def _set_entry(self, entry: BudgetLedgerEntry) -> None:
        self._entry = entry
        if self._store is not None:
            self._store.put(self.store_key, entry.to_record())

    def _load(self) -> BudgetLedgerEntry:
        period_id = current_period_id(self._clock())
        if self._store is not None:
            record = self._store.get(self.store_key)
            if record:
                stored = BudgetLedgerEntry.from_record(record)
                # Configured threshold wins over the stored one
                return replace(stored, threshold=self.threshold)
        return BudgetLedgerEntry(period_id=period_id, spent=Decimal("0"), threshold=self.threshold)
