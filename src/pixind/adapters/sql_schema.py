"""Declarative tables of the materialized view.

Logical layout: processed_sigs, sync_state, pixel_events, shards, users,
global_stats, plus location_cache for the geocoder.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import BigInteger, Boolean, CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


class ProcessedSignature(Base):
    __tablename__ = "processed_sigs"

    signature: Mapped[str] = mapped_column(String(128), primary_key=True)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class SyncState(Base):
    __tablename__ = "sync_state"

    label: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_signature: Mapped[str] = mapped_column(String(128), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class PixelEvent(Base):
    __tablename__ = "pixel_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    px: Mapped[int] = mapped_column(Integer, nullable=False)
    py: Mapped[int] = mapped_column(Integer, nullable=False)
    color: Mapped[int] = mapped_column(BigInteger, nullable=False)
    main_wallet: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    location_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index("ix_pixel_events_coords", "px", "py"),
        Index("ix_pixel_events_timestamp", "timestamp"),
    )


class Shard(Base):
    __tablename__ = "shards"

    shard_x: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    shard_y: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    main_wallet: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    location_name: Mapped[str | None] = mapped_column(String(255), nullable=True)


class User(Base):
    __tablename__ = "users"

    main_wallet: Mapped[str] = mapped_column(String(64), primary_key=True)
    pixels_placed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shards_owned_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    session_address: Mapped[str | None] = mapped_column(String(64), nullable=True)


class GlobalStats(Base):
    __tablename__ = "global_stats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    total_pixels_placed: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_shards_deployed: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    __table_args__ = (CheckConstraint("id = 1", name="ck_global_stats_singleton"),)


class LocationCache(Base):
    __tablename__ = "location_cache"

    grid_key: Mapped[str] = mapped_column(String(32), primary_key=True)
    location_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_water_body: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
