"""SQLAlchemy database models for the correlation store."""

from sqlalchemy import CheckConstraint, Column, DateTime, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Correlation(Base):
    """One Asana task paired with one Google task."""

    __tablename__ = "correlations"

    correlation_id = Column(String(36), primary_key=True)

    # Unique on both sides: no task is ever paired twice
    asana_task_id = Column(String(64), unique=True, nullable=True, index=True)
    google_task_id = Column(String(128), unique=True, nullable=True, index=True)

    # Provider-local timestamps, stored as naive UTC
    last_known_asana_updated_at = Column(DateTime)
    last_known_google_updated_at = Column(DateTime)

    last_sync_status = Column(String(32), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "asana_task_id IS NOT NULL OR google_task_id IS NOT NULL",
            name="ck_correlations_has_task",
        ),
    )
