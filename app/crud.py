import math
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import (
    AlreadyParked,
    InvalidAmount,
    NoActiveSession,
    SessionAlreadyClosed,
    StorageFailure,
    ValidationError,
    VehicleNotFound,
)
from app.models import ParkingSession, Vehicle, Violation

UPSERT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def _fresh(stmt):
    # Sessions outlive transactions, so rows already in the identity map are reloaded.
    return stmt.execution_options(populate_existing=True)


def normalize_plate(plate: str) -> str:
    if plate is None or not plate.strip():
        raise ValidationError("Plate is required")
    return plate.strip().upper()


def normalize_class(vehicle_class: str) -> str:
    if vehicle_class is None or not vehicle_class.strip():
        raise ValidationError("Vehicle class is required")
    return vehicle_class.strip().lower()


# Vehicle registry

async def upsert_vehicle(db: AsyncSession, plate: str, vehicle_class: str, contact: str = None) -> int:
    """Insert the vehicle or overwrite its class and contact, returning its id in one statement."""
    plate = normalize_plate(plate)
    vehicle_class = normalize_class(vehicle_class)
    dialect = db.get_bind().dialect.name
    if dialect not in UPSERT_DIALECTS:
        raise StorageFailure(f"Unsupported store dialect: {dialect}")

    stmt = UPSERT_DIALECTS[dialect](Vehicle).values(
        plate=plate, vehicle_class=vehicle_class, contact=contact
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Vehicle.plate],
        set_={"vehicle_class": stmt.excluded.vehicle_class, "contact": stmt.excluded.contact},
    ).returning(Vehicle.id)
    result = await db.execute(stmt)
    return result.scalar_one()


async def get_vehicle(db: AsyncSession, vehicle_id: int) -> Vehicle:
    vehicle = await db.get(Vehicle, vehicle_id, populate_existing=True)
    if vehicle is None:
        raise VehicleNotFound(f"Vehicle {vehicle_id} not found")
    return vehicle


async def get_vehicle_by_plate(db: AsyncSession, plate: str) -> Vehicle:
    plate = normalize_plate(plate)
    result = await db.execute(_fresh(select(Vehicle).where(Vehicle.plate == plate)))
    vehicle = result.scalars().first()
    if vehicle is None:
        raise VehicleNotFound(f"Vehicle {plate} not found")
    return vehicle


# Session ledger

async def get_open_session(db: AsyncSession, vehicle_id: int, for_update: bool = False):
    stmt = select(ParkingSession).where(
        ParkingSession.vehicle_id == vehicle_id,
        ParkingSession.closed_at.is_(None),
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(_fresh(stmt))
    return result.scalars().first()


async def find_open_session(db: AsyncSession, vehicle_id: int, for_update: bool = False) -> ParkingSession:
    session = await get_open_session(db, vehicle_id, for_update=for_update)
    if session is None:
        raise NoActiveSession(f"No active parking session for vehicle {vehicle_id}")
    return session


async def open_session(db: AsyncSession, vehicle_id: int, opened_at: datetime = None) -> ParkingSession:
    if await get_open_session(db, vehicle_id) is not None:
        raise AlreadyParked(f"Vehicle {vehicle_id} is already inside")

    new_session = ParkingSession(vehicle_id=vehicle_id, opened_at=opened_at or datetime.utcnow())
    db.add(new_session)
    try:
        await db.flush()
    except IntegrityError as e:
        # Lost the race against a concurrent check-in for the same vehicle.
        raise AlreadyParked(f"Vehicle {vehicle_id} is already inside") from e
    await db.refresh(new_session)
    return new_session


async def close_session(db: AsyncSession, session_id: int, closed_at: datetime, fee: float) -> ParkingSession:
    stmt = (
        update(ParkingSession)
        .where(ParkingSession.id == session_id, ParkingSession.closed_at.is_(None))
        .values(closed_at=closed_at, fee=fee)
        .returning(ParkingSession)
    )
    result = await db.execute(_fresh(stmt))
    closed = result.scalars().first()
    if closed is None:
        raise SessionAlreadyClosed(f"Parking session {session_id} is already closed")
    return closed


async def list_open_sessions(db: AsyncSession):
    result = await db.execute(
        _fresh(
            select(Vehicle, ParkingSession)
            .join(ParkingSession, ParkingSession.vehicle_id == Vehicle.id)
            .where(ParkingSession.closed_at.is_(None))
            .order_by(ParkingSession.opened_at.desc(), ParkingSession.id.desc())
        )
    )
    return [tuple(row) for row in result.all()]


async def list_all_sessions(db: AsyncSession):
    result = await db.execute(
        _fresh(
            select(Vehicle, ParkingSession)
            .join(ParkingSession, ParkingSession.vehicle_id == Vehicle.id)
            .order_by(ParkingSession.opened_at.desc(), ParkingSession.id.desc())
        )
    )
    return [tuple(row) for row in result.all()]


async def count_open_sessions(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(ParkingSession.id)).where(ParkingSession.closed_at.is_(None))
    )
    return result.scalar_one()


# Violation ledger

async def record_violation(db: AsyncSession, vehicle_id: int, kind: str, amount: float,
                           description: str = None, occurred_at: datetime = None) -> Violation:
    if kind is None or not kind.strip():
        raise ValidationError("Violation kind is required")
    if amount is None or math.isnan(amount) or amount < 0:
        raise InvalidAmount(f"Fine amount must be non-negative, got {amount}")
    await get_vehicle(db, vehicle_id)

    violation = Violation(
        vehicle_id=vehicle_id,
        kind=kind.strip(),
        amount=amount,
        description=description,
        occurred_at=occurred_at or datetime.utcnow(),
        paid=False,
    )
    db.add(violation)
    await db.flush()
    await db.refresh(violation)
    return violation


async def list_violations(db: AsyncSession, vehicle_id: int, include_paid: bool = False):
    stmt = select(Violation).where(Violation.vehicle_id == vehicle_id)
    if not include_paid:
        stmt = stmt.where(Violation.paid.is_(False))
    result = await db.execute(_fresh(stmt.order_by(Violation.occurred_at, Violation.id)))
    return result.scalars().all()


async def list_unpaid_violations(db: AsyncSession, vehicle_id: int):
    return await list_violations(db, vehicle_id)


async def unpaid_total(db: AsyncSession, vehicle_id: int) -> float:
    result = await db.execute(
        select(func.coalesce(func.sum(Violation.amount), 0)).where(
            Violation.vehicle_id == vehicle_id,
            Violation.paid.is_(False),
        )
    )
    return float(result.scalar_one())


async def settle_violations(db: AsyncSession, vehicle_id: int, paid_at: datetime, violation_ids=None) -> int:
    """Mark unpaid violations of the vehicle as paid.

    With ``violation_ids`` only that batch is settled, so fines recorded after the
    batch was read stay unpaid. Settling nothing is not an error.
    """
    stmt = update(Violation).where(
        Violation.vehicle_id == vehicle_id,
        Violation.paid.is_(False),
    )
    if violation_ids is not None:
        if not violation_ids:
            return 0
        stmt = stmt.where(Violation.id.in_(violation_ids))
    result = await db.execute(
        _fresh(stmt.values(paid=True, paid_at=paid_at).returning(Violation.id))
    )
    return len(result.all())
