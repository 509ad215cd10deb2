"""Report model: one row per paid expertise analysis."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, Numeric, String
from sqlalchemy.orm import relationship

from database import Base

PROCESSING = "PROCESSING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"

TERMINAL_STATUSES = (COMPLETED, FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Report(Base):
    """Expertise report. `status` is the durable workflow cursor."""

    __tablename__ = "reports"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    service_type = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=PROCESSING, index=True)
    # Price snapshot taken at reserve time.
    total_cost = Column(Numeric(12, 2), nullable=False)
    vehicle_json = Column(JSON, nullable=True)
    result_json = Column(JSON, nullable=True)
    failure_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="reports")
    attachments = relationship(
        "ReportAttachment",
        back_populates="report",
        cascade="all, delete-orphan",
        order_by="ReportAttachment.position",
    )


class ReportAttachment(Base):
    """Image or audio input handed to the analysis provider."""

    __tablename__ = "report_attachments"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    report_id = Column(String, ForeignKey("reports.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    kind = Column(String, nullable=False)  # image, audio
    uri = Column(String, nullable=False)
    mime_type = Column(String, nullable=True)
    size_bytes = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    report = relationship("Report", back_populates="attachments")
