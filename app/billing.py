"""Fee computation and the checkout transaction.

Parking is billed per started hour: any positive remainder of an hour counts as a
full hour. The hourly rate comes from a RateTable keyed by vehicle class.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.errors import Busy

SECONDS_PER_HOUR = 3600


@dataclass(frozen=True)
class RateTable:
    rates: Mapping[str, float]
    default_rate: float

    def __post_init__(self):
        rates = {}
        for name, rate in self.rates.items():
            if rate < 0:
                raise ValueError(f"Rate for {name!r} must be non-negative")
            rates[name.strip().lower()] = float(rate)
        if self.default_rate < 0:
            raise ValueError("Default rate must be non-negative")
        object.__setattr__(self, "rates", MappingProxyType(rates))

    @classmethod
    def parse(cls, text: str, default_rate: float) -> "RateTable":
        """Build a table from ``"car=5,bike=3"`` style text."""
        rates = {}
        for item in text.split(","):
            if not item.strip():
                continue
            name, sep, value = item.partition("=")
            if not sep or not name.strip():
                raise ValueError(f"Malformed rate entry: {item!r}")
            rates[name] = float(value)
        return cls(rates=rates, default_rate=default_rate)

    def rate_for(self, vehicle_class: str) -> float:
        return self.rates.get((vehicle_class or "").strip().lower(), self.default_rate)


def billable_hours(duration: timedelta) -> int:
    seconds = duration.total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / SECONDS_PER_HOUR)


@dataclass
class Receipt:
    plate: str
    vehicle_id: int
    session_id: int
    opened_at: datetime
    closed_at: datetime
    hours_billed: int
    parking_fee: float
    fines_fee: float
    total_fee: float
    violations_settled: int


class BillingEngine:
    def __init__(self, rates: RateTable):
        self.rates = rates

    def parking_fee(self, duration: timedelta, vehicle_class: str):
        hours = billable_hours(duration)
        return hours, hours * self.rates.rate_for(vehicle_class)

    async def checkout(self, db: AsyncSession, plate: str, now: datetime) -> Receipt:
        """Close the open session of ``plate`` and settle its unpaid fines.

        Must run inside a single transaction: the open session is locked, the
        fines that are summed are exactly the ones marked paid, and the session
        close and the settlement commit or roll back together.
        """
        vehicle = await crud.get_vehicle_by_plate(db, plate)
        session = await crud.find_open_session(db, vehicle.id, for_update=True)

        hours, parking_fee = self.parking_fee(now - session.opened_at, vehicle.vehicle_class)
        unpaid = await crud.list_unpaid_violations(db, vehicle.id)
        fines_fee = sum(v.amount for v in unpaid)
        total_fee = round(parking_fee + fines_fee, 2)

        closed = await crud.close_session(db, session.id, now, total_fee)
        settled = await crud.settle_violations(
            db, vehicle.id, now, violation_ids=[v.id for v in unpaid]
        )
        # Not expected while the open session is locked; a mismatch aborts the whole checkout.
        if settled != len(unpaid):
            raise Busy(f"Violations of {vehicle.plate} changed during checkout")

        logging.info(
            f"Checkout {vehicle.plate}: {hours}h parking={parking_fee} fines={fines_fee} total={total_fee}"
        )
        return Receipt(
            plate=vehicle.plate,
            vehicle_id=vehicle.id,
            session_id=closed.id,
            opened_at=closed.opened_at,
            closed_at=closed.closed_at,
            hours_billed=hours,
            parking_fee=round(parking_fee, 2),
            fines_fee=round(fines_fee, 2),
            total_fee=total_fee,
            violations_settled=settled,
        )
