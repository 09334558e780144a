from sqlalchemy import Column, Integer, String, Boolean, Float, ForeignKey, Index, TIMESTAMP, text
from datetime import datetime
from app.database import Base

class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    plate = Column(String(20), nullable=False, unique=True)
    vehicle_class = Column(String(32), nullable=False)
    contact = Column(String(255), nullable=True)

class ParkingSession(Base):
    __tablename__ = "parking_sessions"
    __table_args__ = (
        # At most one open session per vehicle, enforced by the store.
        Index(
            "uq_parking_sessions_open_vehicle",
            "vehicle_id",
            unique=True,
            sqlite_where=text("closed_at IS NULL"),
            postgresql_where=text("closed_at IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    opened_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)
    closed_at = Column(TIMESTAMP, nullable=True)
    fee = Column(Float, nullable=True)

class Violation(Base):
    __tablename__ = "violations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    kind = Column(String(64), nullable=False)
    occurred_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)
    amount = Column(Float, nullable=False)
    paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(TIMESTAMP, nullable=True)
    description = Column(String(255), nullable=True)
