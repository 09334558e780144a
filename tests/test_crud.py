from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app import crud
from app.errors import (
    AlreadyParked,
    InvalidAmount,
    NoActiveSession,
    SessionAlreadyClosed,
    ValidationError,
    VehicleNotFound,
)
from app.models import Vehicle
from tests.conftest import T0


async def test_upsert_normalizes_and_overwrites(db):
    async with db.begin():
        first = await crud.upsert_vehicle(db, " ab-123 ", "Car", "a@example.com")
    async with db.begin():
        second = await crud.upsert_vehicle(db, "AB-123", "truck", "b@example.com")
        vehicle = await crud.get_vehicle_by_plate(db, "ab-123")
        count = (await db.execute(select(func.count(Vehicle.id)))).scalar_one()

    assert first == second == vehicle.id
    assert count == 1
    assert vehicle.plate == "AB-123"
    assert vehicle.vehicle_class == "truck"
    assert vehicle.contact == "b@example.com"


@pytest.mark.parametrize("plate, vehicle_class", [("", "car"), ("  ", "car"), ("AB1", ""), (None, "car")])
async def test_upsert_requires_plate_and_class(db, plate, vehicle_class):
    with pytest.raises(ValidationError):
        async with db.begin():
            await crud.upsert_vehicle(db, plate, vehicle_class)


async def test_unknown_plate(db):
    with pytest.raises(VehicleNotFound):
        async with db.begin():
            await crud.get_vehicle_by_plate(db, "NOPE")


async def test_second_open_session_rejected(db):
    async with db.begin():
        vehicle_id = await crud.upsert_vehicle(db, "AB1", "car")
        await crud.open_session(db, vehicle_id, T0)

    with pytest.raises(AlreadyParked):
        async with db.begin():
            await crud.open_session(db, vehicle_id, T0 + timedelta(minutes=5))

    async with db.begin():
        assert await crud.count_open_sessions(db) == 1


async def test_close_session_only_once(db):
    async with db.begin():
        vehicle_id = await crud.upsert_vehicle(db, "AB1", "car")
        session = await crud.open_session(db, vehicle_id, T0)
        closed = await crud.close_session(db, session.id, T0 + timedelta(hours=1), 5)

    assert closed.closed_at == T0 + timedelta(hours=1)
    assert closed.fee == 5

    with pytest.raises(SessionAlreadyClosed):
        async with db.begin():
            await crud.close_session(db, session.id, T0 + timedelta(hours=2), 10)

    with pytest.raises(NoActiveSession):
        async with db.begin():
            await crud.find_open_session(db, vehicle_id)


async def test_listings_order_most_recent_first(db):
    async with db.begin():
        a = await crud.upsert_vehicle(db, "AAA1", "car")
        b = await crud.upsert_vehicle(db, "BBB2", "bike")
        first = await crud.open_session(db, a, T0)
        await crud.open_session(db, b, T0 + timedelta(minutes=10))
        await crud.close_session(db, first.id, T0 + timedelta(minutes=20), 5)
        await crud.open_session(db, a, T0 + timedelta(minutes=30))

    async with db.begin():
        parked = await crud.list_open_sessions(db)
        history = await crud.list_all_sessions(db)

    assert [(v.plate, s.opened_at) for v, s in parked] == [
        ("AAA1", T0 + timedelta(minutes=30)),
        ("BBB2", T0 + timedelta(minutes=10)),
    ]
    assert [v.plate for v, _ in history] == ["AAA1", "BBB2", "AAA1"]
    assert history[-1][1].fee == 5
    assert history[0][1].closed_at is None


async def test_record_violation_validation(db):
    async with db.begin():
        vehicle_id = await crud.upsert_vehicle(db, "AB1", "car")

    with pytest.raises(InvalidAmount):
        async with db.begin():
            await crud.record_violation(db, vehicle_id, "overstay", -1)
    with pytest.raises(ValidationError):
        async with db.begin():
            await crud.record_violation(db, vehicle_id, " ", 10)
    with pytest.raises(VehicleNotFound):
        async with db.begin():
            await crud.record_violation(db, vehicle_id + 100, "overstay", 10)

    async with db.begin():
        assert await crud.list_violations(db, vehicle_id, include_paid=True) == []


async def test_unpaid_total_and_settle(db):
    async with db.begin():
        vehicle_id = await crud.upsert_vehicle(db, "AB1", "car")
        assert await crud.unpaid_total(db, vehicle_id) == 0
        await crud.record_violation(db, vehicle_id, "overstay", 20, occurred_at=T0)
        await crud.record_violation(db, vehicle_id, "blocking", 12.5, occurred_at=T0)

    async with db.begin():
        assert await crud.unpaid_total(db, vehicle_id) == 32.5
        settled = await crud.settle_violations(db, vehicle_id, T0 + timedelta(hours=1))

    assert settled == 2
    async with db.begin():
        assert await crud.unpaid_total(db, vehicle_id) == 0
        assert await crud.list_unpaid_violations(db, vehicle_id) == []
        history = await crud.list_violations(db, vehicle_id, include_paid=True)
        # Nothing left to settle.
        assert await crud.settle_violations(db, vehicle_id, T0 + timedelta(hours=2)) == 0

    assert all(v.paid and v.paid_at == T0 + timedelta(hours=1) for v in history)


async def test_settle_only_the_given_batch(db):
    async with db.begin():
        vehicle_id = await crud.upsert_vehicle(db, "AB1", "car")
        early = await crud.record_violation(db, vehicle_id, "overstay", 20, occurred_at=T0)
        late = await crud.record_violation(db, vehicle_id, "overstay", 30, occurred_at=T0)

    async with db.begin():
        settled = await crud.settle_violations(db, vehicle_id, T0, violation_ids=[early.id])
        assert await crud.settle_violations(db, vehicle_id, T0, violation_ids=[]) == 0

    assert settled == 1
    async with db.begin():
        unpaid = await crud.list_unpaid_violations(db, vehicle_id)
    assert [v.id for v in unpaid] == [late.id]
