"""
Session and progress tables.

Rows keep the full wire document in a JSON payload column; the scalar
columns beside it exist for lookups and ordering only.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class VignetteSessionRow(Base):
    """One ended session. Append-only; the id makes saves idempotent."""

    __tablename__ = "vignette_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    vignette_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    decision_count: Mapped[int] = mapped_column(Integer, default=0)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)


class VignetteProgressRow(Base):
    """Aggregate progress, one row per vignette."""

    __tablename__ = "vignette_progress"

    vignette_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    overall_mastery: Mapped[str] = mapped_column(String(16), nullable=False)
    next_review: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )
