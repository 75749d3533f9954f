from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum
from typing import Any, Optional

from sqlalchemy import JSON, CheckConstraint, Enum, ForeignKey, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, Date, DateTime, Integer, String


class Base(DeclarativeBase):
    pass


class ReservationStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    BOOKED = "booked"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    WAITLIST = "waitlist"


class ActorRole(StrEnum):
    FACULTY = "faculty"
    ADMIN = "admin"
    # Only the allocation engine acts as system, for waitlist promotion.
    SYSTEM = "system"


TERMINAL_STATUSES = frozenset({ReservationStatus.REJECTED, ReservationStatus.CANCELLED})


class Hall(Base):
    __tablename__ = "halls"
    __table_args__ = (CheckConstraint("capacity >= 1", name="chk_halls_capacity"),)

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    features: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    reservations: Mapped[list["Reservation"]] = relationship(back_populates="hall")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("period >= 1", name="chk_res_period"),
        Index("idx_res_slot", "hall_id", "booking_date", "period"),
        Index("idx_res_requester_date", "requester_id", "booking_date"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    hall_id: Mapped[int] = mapped_column(ForeignKey("halls.id"), nullable=False)
    requester_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    period: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        Enum(
            ReservationStatus,
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
            native_enum=False,
        ),
        nullable=False,
        default=ReservationStatus.PENDING,
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    hall: Mapped["Hall"] = relationship(back_populates="reservations")

    def to_record(self) -> dict[str, Any]:
        """Plain snapshot of the row, used for event payloads."""
        return {
            "id": self.id,
            "hall_id": self.hall_id,
            "requester_id": self.requester_id,
            "booking_date": self.booking_date.isoformat(),
            "period": self.period,
            "reason": self.reason,
            "status": ReservationStatus(self.status).value,
            "rejection_reason": self.rejection_reason,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
