import uvicorn
import logging
from typing import List
from fastapi import FastAPI, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from app.billing import BillingEngine, RateTable
from app.config import PARKING_DEFAULT_RATE, PARKING_RATES
from app.database import init_db, get_db
from app.engine import ParkingEngine
from app.errors import ParkingError
from app.notifications import NotificationDispatcher
from app.schemas import (
    ErrorResponse,
    HistoryEntry,
    OccupancyResponse,
    ParkedVehicle,
    StatisticsResponse,
    VehicleEntryCreate,
    VehicleEntryResponse,
    VehicleExitCreate,
    VehicleExitResponse,
    ViolationCreate,
    ViolationOut,
)

logging.basicConfig(level=logging.INFO)

app = FastAPI(
    title="Parking Billing Service",
    version="1.0.0",
)

parking_engine = ParkingEngine(
    BillingEngine(RateTable.parse(PARKING_RATES, default_rate=PARKING_DEFAULT_RATE)),
    NotificationDispatcher(),
)


def get_engine() -> ParkingEngine:
    return parking_engine


@app.on_event("startup")
async def on_startup():
    await init_db()
    parking_engine.notifier.start()


@app.on_event("shutdown")
async def on_shutdown():
    await parking_engine.notifier.stop()


@app.exception_handler(ParkingError)
async def parking_error_handler(request: Request, exc: ParkingError):
    if exc.status_code >= 500:
        logging.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.code, detail=exc.message).model_dump(),
    )


def violation_out(violation) -> ViolationOut:
    return ViolationOut(
        id=violation.id,
        vehicle_id=violation.vehicle_id,
        kind=violation.kind,
        amount=violation.amount,
        occurred_at=violation.occurred_at,
        paid=violation.paid,
        paid_at=violation.paid_at,
        description=violation.description,
    )


@app.post("/api/v1/sessions/entry/", response_model=VehicleEntryResponse)
async def vehicle_entry(entry: VehicleEntryCreate, db: AsyncSession = Depends(get_db),
                        engine: ParkingEngine = Depends(get_engine)):
    vehicle, session = await engine.register_checkin(
        db, entry.plate_number, entry.vehicle_class, entry.contact
    )
    return VehicleEntryResponse(
        message="Vehicle checked in",
        vehicle_id=vehicle.id,
        session_id=session.id,
        plate_number=vehicle.plate,
        vehicle_class=vehicle.vehicle_class,
        entry_timestamp=session.opened_at
    )


@app.put("/api/v1/sessions/exit/", response_model=VehicleExitResponse)
async def vehicle_exit(entry: VehicleExitCreate, db: AsyncSession = Depends(get_db),
                       engine: ParkingEngine = Depends(get_engine)):
    receipt = await engine.checkout(db, entry.plate_number)
    return VehicleExitResponse(
        message="Checkout successful",
        plate_number=receipt.plate,
        session_id=receipt.session_id,
        entry_timestamp=receipt.opened_at,
        exit_timestamp=receipt.closed_at,
        hours_billed=receipt.hours_billed,
        parking_fee=receipt.parking_fee,
        fines_fee=receipt.fines_fee,
        total_fee=receipt.total_fee
    )


@app.get("/api/v1/sessions/active/", response_model=List[ParkedVehicle])
async def currently_parked(db: AsyncSession = Depends(get_db),
                           engine: ParkingEngine = Depends(get_engine)):
    rows = await engine.list_currently_parked(db)
    return [
        ParkedVehicle(
            vehicle_id=vehicle.id,
            plate_number=vehicle.plate,
            vehicle_class=vehicle.vehicle_class,
            entry_timestamp=session.opened_at
        )
        for vehicle, session in rows
    ]


@app.get("/api/v1/sessions/history/", response_model=List[HistoryEntry])
async def history(db: AsyncSession = Depends(get_db),
                  engine: ParkingEngine = Depends(get_engine)):
    rows = await engine.list_history(db)
    return [
        HistoryEntry(
            session_id=session.id,
            plate_number=vehicle.plate,
            vehicle_class=vehicle.vehicle_class,
            entry_timestamp=session.opened_at,
            exit_timestamp=session.closed_at,
            fee=session.fee
        )
        for vehicle, session in rows
    ]


@app.get("/api/v1/occupancy/", response_model=OccupancyResponse)
async def occupancy(db: AsyncSession = Depends(get_db),
                    engine: ParkingEngine = Depends(get_engine)):
    return OccupancyResponse(occupied=await engine.occupancy(db))


@app.post("/api/v1/violations/", response_model=ViolationOut)
async def report_violation(violation: ViolationCreate, db: AsyncSession = Depends(get_db),
                           engine: ParkingEngine = Depends(get_engine)):
    recorded = await engine.report_violation(
        db, violation.vehicle_id, violation.kind, violation.amount, violation.description
    )
    return violation_out(recorded)


@app.get("/api/v1/violations/{vehicle_id}", response_model=List[ViolationOut])
async def vehicle_violations(vehicle_id: int, include_paid: bool = False,
                             db: AsyncSession = Depends(get_db),
                             engine: ParkingEngine = Depends(get_engine)):
    violations = await engine.list_violations(db, vehicle_id, include_paid=include_paid)
    return [violation_out(v) for v in violations]


@app.get("/api/v1/statistics/", response_model=StatisticsResponse)
async def statistics(db: AsyncSession = Depends(get_db),
                     engine: ParkingEngine = Depends(get_engine)):
    stats = await engine.get_statistics(db)
    return StatisticsResponse(
        revenue_by_class=stats.revenue_by_class,
        vehicles_by_class=stats.vehicles_by_class,
        average_duration_hours_by_class=stats.average_duration_by_class
    )


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
