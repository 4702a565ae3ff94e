from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dtr.db import Base

JSONType = JSON().with_variant(JSONB, "postgresql")


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [str(item.value) for item in enum_cls]


class RecordStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class ConfirmationStatus(str, enum.Enum):
    UNCONFIRMED = "unconfirmed"
    CONFIRMED = "confirmed"


class ExcusedStatus(str, enum.Enum):
    NONE = "none"
    EXCUSED = "excused"


class EntryStatus(str, enum.Enum):
    UNSET = ""
    PRESENT = "Present"
    ABSENT = "Absent"
    LATE = "Late"
    ON_LEAVE = "On Leave"
    EXCUSED = "Excused"
    UNCONFIRMED = "Unconfirmed"


class ActorRole(str, enum.Enum):
    SCHOLAR = "scholar"
    TRAINEE = "trainee"
    OFFICE = "office"
    HR = "hr"


class AuditActorType(str, enum.Enum):
    OWNER = "OWNER"
    OFFICE = "OFFICE"
    SYSTEM = "SYSTEM"


class DtrRecord(Base):
    __tablename__ = "dtr_records"
    __table_args__ = (
        UniqueConstraint("user_id", "month", "year", name="uq_dtr_records_user_period"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    duty_hours: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[RecordStatus] = mapped_column(
        Enum(RecordStatus, name="dtr_record_status", values_callable=_enum_values),
        nullable=False,
        default=RecordStatus.DRAFT,
        server_default=text("'draft'"),
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    checked_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_monthly_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    entries: Mapped[list[DtrEntry]] = relationship(
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="DtrEntry.day",
    )

    def entry_for_day(self, day: int) -> DtrEntry | None:
        for entry in self.entries:
            if entry.day == day:
                return entry
        return None


class DtrEntry(Base):
    __tablename__ = "dtr_entries"
    __table_args__ = (
        UniqueConstraint("record_id", "day", name="uq_dtr_entries_record_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    record_id: Mapped[int] = mapped_column(
        ForeignKey("dtr_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day: Mapped[int] = mapped_column(Integer, nullable=False)
    shifts: Mapped[list[dict[str, str]]] = mapped_column(JSONType, nullable=False, default=list)
    total_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    late_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    undertime_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="", server_default=text("''"))
    status_override: Mapped[str | None] = mapped_column(String(32), nullable=True)
    confirmation_status: Mapped[ConfirmationStatus] = mapped_column(
        Enum(ConfirmationStatus, name="dtr_confirmation_status", values_callable=_enum_values),
        nullable=False,
        default=ConfirmationStatus.UNCONFIRMED,
        server_default=text("'unconfirmed'"),
    )
    confirmed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    confirmed_by_profile: Mapped[str | None] = mapped_column(String(255), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    excused_status: Mapped[ExcusedStatus] = mapped_column(
        Enum(ExcusedStatus, name="dtr_excused_status", values_callable=_enum_values),
        nullable=False,
        default=ExcusedStatus.NONE,
        server_default=text("'none'"),
    )
    excused_reason: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default=text("''"))
    edit_history: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    record: Mapped[DtrRecord] = relationship(back_populates="entries")

    @property
    def is_confirmed(self) -> bool:
        return self.confirmation_status == ConfirmationStatus.CONFIRMED

    @property
    def is_excused(self) -> bool:
        return self.excused_status == ExcusedStatus.EXCUSED


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
