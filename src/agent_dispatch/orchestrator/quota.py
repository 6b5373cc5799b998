"""Per-credential quota accounting with atomic reservation.

Each credential carries its own lock; a reservation only ever holds the lock
of the credential it is debiting, so concurrent dispatches to different
credentials never serialize on each other.  Usage changes are handed to a
write-behind thread so storage latency stays outside the critical section.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Protocol
from uuid import uuid4

from agent_dispatch.orchestrator.models import (
    BackendQuotaStatus,
    BackendType,
    Credential,
    CredentialStatus,
    QuotaSnapshot,
    QuotaUnit,
    Reservation,
)
from agent_dispatch.storage.common import utc_now

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class CredentialStore(Protocol):
    """Source of credentials and sink for their usage counters."""

    def list_credentials(self, backend: BackendType) -> list[Credential]: ...

    def persist_usage(self, credential_id: str, used_today: int, reset_at: datetime) -> None: ...


class InMemoryCredentialStore:
    """Credential store kept entirely in process memory."""

    def __init__(self, credentials: Iterable[Credential] = ()) -> None:
        self._credentials: dict[str, Credential] = {}
        self._lock = threading.Lock()
        for credential in credentials:
            self.add(credential)

    def add(self, credential: Credential) -> None:
        with self._lock:
            self._credentials[credential.credential_id] = replace(credential)

    def get(self, credential_id: str) -> Credential | None:
        with self._lock:
            credential = self._credentials.get(credential_id)
            return replace(credential) if credential is not None else None

    def list_credentials(self, backend: BackendType) -> list[Credential]:
        with self._lock:
            return [
                replace(credential)
                for credential in self._credentials.values()
                if credential.backend is backend
            ]

    def persist_usage(self, credential_id: str, used_today: int, reset_at: datetime) -> None:
        with self._lock:
            credential = self._credentials.get(credential_id)
            if credential is None:
                return
            credential.used_today = used_today
            credential.reset_at = reset_at


@dataclass(frozen=True, slots=True)
class UsageUpdate:
    """Usage counters of one credential after a change."""

    credential_id: str
    used_today: int
    reset_at: datetime


class UsageWriteBehind:
    """Background thread that persists usage updates in arrival order."""

    def __init__(self, store: CredentialStore) -> None:
        self._store = store
        self._queue: queue.Queue[UsageUpdate | None] = queue.Queue()
        self._thread = threading.Thread(
            target=self._run,
            name="quota-write-behind",
            daemon=True,
        )
        self._thread.start()

    def submit(self, update: UsageUpdate) -> None:
        self._queue.put(update)

    def flush(self) -> None:
        """Block until every queued update has been handed to the store."""

        self._queue.join()

    def close(self) -> None:
        if not self._thread.is_alive():
            return
        self._queue.put(None)
        self._thread.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                self._store.persist_usage(item.credential_id, item.used_today, item.reset_at)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to persist quota usage update")
            finally:
                self._queue.task_done()


@dataclass(slots=True)
class _Slot:
    credential: Credential
    lock: threading.Lock = field(default_factory=threading.Lock)
    epoch: int = 0
    open: dict[str, tuple[int, int]] = field(default_factory=dict)


class QuotaPool:
    """Quota of one backend spread over its credentials."""

    def __init__(
        self,
        backend: BackendType,
        credentials: Iterable[Credential],
        *,
        unit: QuotaUnit = QuotaUnit.REQUESTS,
        clock: Clock = utc_now,
        on_change: Callable[[UsageUpdate], None] | None = None,
    ) -> None:
        self.backend = backend
        self.unit = unit
        self._clock = clock
        self._on_change = on_change
        self._slots: dict[str, _Slot] = {}
        for credential in credentials:
            if credential.backend is not backend:
                raise ValueError(
                    f"Credential {credential.credential_id} belongs to "
                    f"{credential.backend.value}, not {backend.value}.",
                )
            self._slots[credential.credential_id] = _Slot(credential=replace(credential))

    def try_reserve(self, amount: int) -> Reservation | None:
        """Debit ``amount`` from the best credential that can afford it, or return None."""

        if amount < 0:
            raise ValueError("Reservation amount must be >= 0.")
        now = self._clock()
        for slot in self._slots.values():
            with slot.lock:
                self._reset_if_due(slot, now)

        for slot in self._ranked_slots():
            with slot.lock:
                credential = slot.credential
                if (
                    not credential.active
                    or credential.used_today >= credential.daily_limit
                    or credential.used_today + amount > credential.daily_limit
                ):
                    continue
                credential.used_today += amount
                reservation = Reservation(
                    reservation_id=uuid4().hex,
                    credential_id=credential.credential_id,
                    backend=self.backend,
                    amount=amount,
                )
                slot.open[reservation.reservation_id] = (amount, slot.epoch)
                self._publish(credential)
            return reservation
        return None

    def commit(self, reservation: Reservation, actual_amount: int, *, success: bool) -> bool:
        """Replace the reserved amount with the actual one; False if already settled."""

        slot = self._slot_for(reservation)
        with slot.lock:
            entry = slot.open.pop(reservation.reservation_id, None)
            if entry is None:
                logger.warning(
                    "Reservation %s already committed or released",
                    reservation.reservation_id,
                )
                return False
            reserved, epoch = entry
            credential = slot.credential
            # A reservation from a previous period no longer counts toward used_today.
            base = credential.used_today - reserved if epoch == slot.epoch else credential.used_today
            charged = max(0, base + actual_amount)
            if charged > credential.daily_limit:
                logger.warning(
                    "Usage of %s %s on %s exceeds its limit of %s; capping",
                    charged,
                    self.unit.value,
                    credential.credential_id,
                    credential.daily_limit,
                )
            credential.used_today = min(credential.daily_limit, charged)
            self._publish(credential)
        logger.debug(
            "Committed %s %s on %s (reserved %s, success=%s)",
            actual_amount,
            self.unit.value,
            reservation.credential_id,
            reservation.amount,
            success,
        )
        return True

    def release(self, reservation: Reservation) -> bool:
        """Undo an unsettled reservation. Releasing twice is a no-op."""

        slot = self._slot_for(reservation)
        with slot.lock:
            entry = slot.open.pop(reservation.reservation_id, None)
            if entry is None:
                return False
            reserved, epoch = entry
            if epoch != slot.epoch:
                return True
            credential = slot.credential
            credential.used_today = max(0, credential.used_today - reserved)
            self._publish(credential)
        return True

    def has_available(self, amount: int = 1) -> bool:
        """Advisory check; only ``try_reserve`` is authoritative."""

        now = self._clock()
        return any(
            slot.credential.active
            and (
                now >= slot.credential.reset_at
                or (
                    slot.credential.used_today < slot.credential.daily_limit
                    and slot.credential.used_today + amount <= slot.credential.daily_limit
                )
            )
            for slot in self._slots.values()
        )

    def status(self) -> BackendQuotaStatus:
        now = self._clock()
        credentials = []
        for slot in self._slots.values():
            with slot.lock:
                self._reset_if_due(slot, now)
                credential = slot.credential
                credentials.append(
                    CredentialStatus(
                        credential_id=credential.credential_id,
                        name=credential.name,
                        priority=credential.priority,
                        active=credential.active,
                        used_today=credential.used_today,
                        daily_limit=credential.daily_limit,
                        reset_at=credential.reset_at,
                    ),
                )
        active = [item for item in credentials if item.active]
        return BackendQuotaStatus(
            backend=self.backend,
            unit=self.unit,
            remaining=sum(item.remaining for item in active),
            daily_limit=sum(item.daily_limit for item in active),
            credentials=tuple(sorted(credentials, key=lambda item: item.priority)),
        )

    def credential(self, credential_id: str) -> Credential:
        """Copy of a credential, secret included, for handing to an adapter."""

        slot = self._slots.get(credential_id)
        if slot is None:
            raise KeyError(f"Unknown credential: {credential_id}")
        with slot.lock:
            return replace(slot.credential)

    def set_active(self, credential_id: str, active: bool) -> None:
        slot = self._slots.get(credential_id)
        if slot is None:
            raise KeyError(f"Unknown credential: {credential_id}")
        with slot.lock:
            slot.credential.active = active
        logger.info(
            "Credential %s %s",
            credential_id,
            "enabled" if active else "disabled",
        )

    def _ranked_slots(self) -> list[_Slot]:
        return sorted(
            (slot for slot in self._slots.values() if slot.credential.active),
            key=lambda slot: (slot.credential.priority, -slot.credential.remaining),
        )

    def _slot_for(self, reservation: Reservation) -> _Slot:
        slot = self._slots.get(reservation.credential_id)
        if slot is None or reservation.backend is not self.backend:
            raise KeyError(f"Reservation {reservation.reservation_id} is not from this pool.")
        return slot

    def _reset_if_due(self, slot: _Slot, now: datetime) -> None:
        credential = slot.credential
        if now < credential.reset_at:
            return
        periods = (now - credential.reset_at) // credential.reset_period + 1
        credential.reset_at = credential.reset_at + credential.reset_period * periods
        credential.used_today = 0
        slot.epoch += 1
        logger.info(
            "Quota reset for %s credential %s; next reset at %s",
            self.backend.value,
            credential.credential_id,
            credential.reset_at.isoformat(),
        )
        self._publish(credential)

    def _publish(self, credential: Credential) -> None:
        # Called under the credential lock so updates reach the queue in order.
        if self._on_change is not None:
            self._on_change(
                UsageUpdate(
                    credential_id=credential.credential_id,
                    used_today=credential.used_today,
                    reset_at=credential.reset_at,
                ),
            )


class QuotaRegistry:
    """All quota pools of one dispatcher plus their write-behind persister."""

    def __init__(
        self,
        pools: Mapping[BackendType, QuotaPool],
        *,
        writer: UsageWriteBehind | None = None,
    ) -> None:
        self._pools = dict(pools)
        self._writer = writer

    @classmethod
    def from_store(
        cls,
        store: CredentialStore,
        units: Mapping[BackendType, QuotaUnit],
        *,
        clock: Clock = utc_now,
    ) -> QuotaRegistry:
        """Load credentials for each backend in ``units`` and persist changes back to ``store``."""

        writer = UsageWriteBehind(store)
        pools = {
            backend: QuotaPool(
                backend,
                store.list_credentials(backend),
                unit=unit,
                clock=clock,
                on_change=writer.submit,
            )
            for backend, unit in units.items()
        }
        return cls(pools, writer=writer)

    @property
    def backends(self) -> tuple[BackendType, ...]:
        return tuple(self._pools)

    def pool(self, backend: BackendType) -> QuotaPool:
        pool = self._pools.get(backend)
        if pool is None:
            raise KeyError(f"No quota pool for backend {backend.value}")
        return pool

    def try_reserve(self, backend: BackendType, amount: int) -> Reservation | None:
        pool = self._pools.get(backend)
        if pool is None:
            return None
        return pool.try_reserve(amount)

    def commit(self, reservation: Reservation, actual_amount: int, *, success: bool) -> bool:
        return self.pool(reservation.backend).commit(reservation, actual_amount, success=success)

    def release(self, reservation: Reservation) -> bool:
        return self.pool(reservation.backend).release(reservation)

    def snapshot(self) -> QuotaSnapshot:
        return {backend: pool.status() for backend, pool in self._pools.items()}

    def flush(self) -> None:
        if self._writer is not None:
            self._writer.flush()

    def close(self) -> None:
        if self._writer is not None:
            self._writer.close()

