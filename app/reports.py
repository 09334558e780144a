from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict

from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.billing import SECONDS_PER_HOUR


@dataclass
class Statistics:
    revenue_by_class: Dict[str, float] = field(default_factory=dict)
    vehicles_by_class: Dict[str, int] = field(default_factory=dict)
    # Only classes with at least one closed session appear here.
    average_duration_by_class: Dict[str, float] = field(default_factory=dict)


def summarize(history) -> Statistics:
    """Aggregate ``(vehicle, session)`` history rows per vehicle class.

    Every row counts towards the vehicle count, open sessions included. Revenue
    sums the fees that are set; durations average closed sessions only.
    """
    revenue = defaultdict(float)
    counts = defaultdict(int)
    durations = defaultdict(list)

    for vehicle, session in history:
        vehicle_class = vehicle.vehicle_class
        counts[vehicle_class] += 1
        if session.fee is not None:
            revenue[vehicle_class] += session.fee
        if session.opened_at is not None and session.closed_at is not None:
            hours = (session.closed_at - session.opened_at).total_seconds() / SECONDS_PER_HOUR
            durations[vehicle_class].append(hours)

    return Statistics(
        revenue_by_class={k: round(v, 2) for k, v in revenue.items()},
        vehicles_by_class=dict(counts),
        average_duration_by_class={
            k: round(sum(v) / len(v), 2) for k, v in durations.items() if v
        },
    )


async def occupancy(db: AsyncSession) -> int:
    return await crud.count_open_sessions(db)


async def statistics(db: AsyncSession) -> Statistics:
    return summarize(await crud.list_all_sessions(db))
