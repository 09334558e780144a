from pydantic import BaseModel, Field
from datetime import datetime
from typing import Dict, Optional

class VehicleEntryCreate(BaseModel):
    plate_number: str = Field(min_length=1, max_length=20)
    vehicle_class: str = Field(min_length=1, max_length=32)
    contact: str = Field(min_length=1, max_length=255)

class VehicleExitCreate(BaseModel):
    plate_number: str = Field(min_length=1, max_length=20)

class VehicleEntryResponse(BaseModel):
    message: str
    vehicle_id: int
    session_id: int
    plate_number: str
    vehicle_class: str
    entry_timestamp: datetime

class VehicleExitResponse(BaseModel):
    message: str
    plate_number: str
    session_id: int
    entry_timestamp: datetime
    exit_timestamp: datetime
    hours_billed: int
    parking_fee: float
    fines_fee: float
    total_fee: float

class ParkedVehicle(BaseModel):
    vehicle_id: int
    plate_number: str
    vehicle_class: str
    entry_timestamp: datetime

class HistoryEntry(BaseModel):
    session_id: int
    plate_number: str
    vehicle_class: str
    entry_timestamp: datetime
    exit_timestamp: Optional[datetime] = None
    fee: Optional[float] = None

class OccupancyResponse(BaseModel):
    occupied: int

class ViolationCreate(BaseModel):
    vehicle_id: int
    kind: str = Field(min_length=1, max_length=64)
    amount: float = Field(ge=0)
    description: Optional[str] = Field(default=None, max_length=255)

class ViolationOut(BaseModel):
    id: int
    vehicle_id: int
    kind: str
    amount: float
    occurred_at: datetime
    paid: bool
    paid_at: Optional[datetime] = None
    description: Optional[str] = None

class StatisticsResponse(BaseModel):
    revenue_by_class: Dict[str, float]
    vehicles_by_class: Dict[str, int]
    average_duration_hours_by_class: Dict[str, float]

class ErrorResponse(BaseModel):
    error: str
    detail: str