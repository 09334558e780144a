import logging
from datetime import datetime, timezone
from itertools import chain

from sqlalchemy.ext.asyncio import AsyncSession

from app import crud, reports
from app.billing import BillingEngine
from app.config import DB_MAX_RETRIES, DB_RETRY_BACKOFF
from app.database import run_in_transaction
from app.notifications import NotificationDispatcher


def detach(db: AsyncSession, *instances):
    """Expunge returned rows so a later rollback on ``db`` cannot expire them."""
    for instance in instances:
        if instance in db:
            db.expunge(instance)


def as_utc(now: datetime = None) -> datetime:
    """Stored timestamps are naive UTC; aware values are converted to match."""
    if now is None:
        return datetime.utcnow()
    if now.tzinfo is not None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


class ParkingEngine:
    """Operations offered to the request layer, one store transaction each."""

    def __init__(self, billing: BillingEngine, notifier: NotificationDispatcher,
                 retries: int = DB_MAX_RETRIES, backoff: float = DB_RETRY_BACKOFF):
        self.billing = billing
        self.notifier = notifier
        self.retries = retries
        self.backoff = backoff

    async def _transaction(self, db: AsyncSession, work):
        return await run_in_transaction(db, work, retries=self.retries, backoff=self.backoff)

    async def register_checkin(self, db: AsyncSession, plate: str, vehicle_class: str,
                               contact: str = None, now: datetime = None):
        opened_at = as_utc(now)

        async def work(db):
            vehicle_id = await crud.upsert_vehicle(db, plate, vehicle_class, contact)
            session = await crud.open_session(db, vehicle_id, opened_at)
            vehicle = await crud.get_vehicle(db, vehicle_id)
            return vehicle, session

        vehicle, session = await self._transaction(db, work)
        detach(db, vehicle, session)
        logging.info(f"Check-in {vehicle.plate} ({vehicle.vehicle_class}) session {session.id}")
        return vehicle, session

    async def checkout(self, db: AsyncSession, plate: str, now: datetime = None):
        closed_at = as_utc(now)
        return await self._transaction(
            db, lambda db: self.billing.checkout(db, plate, closed_at)
        )

    async def report_violation(self, db: AsyncSession, vehicle_id: int, kind: str, amount: float,
                               description: str = None, now: datetime = None):
        occurred_at = as_utc(now)

        async def work(db):
            violation = await crud.record_violation(
                db, vehicle_id, kind, amount, description, occurred_at
            )
            vehicle = await crud.get_vehicle(db, vehicle_id)
            return vehicle, violation

        vehicle, violation = await self._transaction(db, work)
        detach(db, vehicle, violation)
        logging.info(f"Violation {violation.id} '{violation.kind}' ({violation.amount}) for {vehicle.plate}")

        # Only after commit; delivery never affects the recorded violation.
        self.notifier.notify(
            vehicle.contact,
            f"Parking violation for {vehicle.plate}",
            f"A {violation.kind} fine of {violation.amount:.2f} was recorded for {vehicle.plate}"
            f" on {violation.occurred_at:%Y-%m-%d %H:%M} UTC."
            + (f" {violation.description}" if violation.description else "")
            + " It will be settled at your next checkout.",
        )
        return violation

    async def list_currently_parked(self, db: AsyncSession):
        rows = await self._transaction(db, crud.list_open_sessions)
        detach(db, *chain.from_iterable(rows))
        return rows

    async def list_history(self, db: AsyncSession):
        rows = await self._transaction(db, crud.list_all_sessions)
        detach(db, *chain.from_iterable(rows))
        return rows

    async def list_violations(self, db: AsyncSession, vehicle_id: int, include_paid: bool = False):
        async def work(db):
            await crud.get_vehicle(db, vehicle_id)
            return await crud.list_violations(db, vehicle_id, include_paid=include_paid)

        violations = await self._transaction(db, work)
        detach(db, *violations)
        return violations

    async def list_unpaid_violations(self, db: AsyncSession, vehicle_id: int):
        return await self.list_violations(db, vehicle_id)

    async def occupancy(self, db: AsyncSession) -> int:
        return await self._transaction(db, reports.occupancy)

    async def get_statistics(self, db: AsyncSession):
        return await self._transaction(db, reports.statistics)
