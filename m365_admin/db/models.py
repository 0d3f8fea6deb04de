"""SQLAlchemy ORM models for the purge ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class PurgeRun(Base):
    __tablename__ = "purge_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    search_name: Mapped[str] = mapped_column(String(200), index=True)
    content_query: Mapped[str] = mapped_column(Text)
    locations: Mapped[Optional[str]] = mapped_column(Text, default=None)
    purge_type: Mapped[str] = mapped_column(String(32))
    what_if: Mapped[bool] = mapped_column(default=False)
    outcome: Mapped[str] = mapped_column(String(32), default="running", server_default="running")
    error_message: Mapped[Optional[str]] = mapped_column(Text, default=None)
    total_items_purged: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), default=None)

    iterations: Mapped[list[PurgeIteration]] = relationship(
        "PurgeIteration",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="PurgeIteration.iteration",
    )


class PurgeIteration(Base):
    __tablename__ = "purge_iterations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("purge_runs.id"), index=True)
    iteration: Mapped[int] = mapped_column(Integer)
    search_status: Mapped[str] = mapped_column(String(32))
    items_matched: Mapped[int] = mapped_column(Integer, default=0)
    action_identity: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    action_status: Mapped[Optional[str]] = mapped_column(String(32), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    run: Mapped[PurgeRun] = relationship("PurgeRun", back_populates="iterations")
