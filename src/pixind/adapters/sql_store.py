from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Sequence

from sqlalchemy import Engine, create_engine, delete, event, func, or_, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import sessionmaker

from ..domain.models import (
    GlobalStatsRow, PixelChanged, PixelRow, ShardInitialized, ShardRow, SyncStateRow, UserRow,
)
from ..domain.value_types import Signature
from ..logging_config import get_logger
from .sql_dedup import SqlDedupStore
from .sql_schema import (
    Base, GlobalStats, LocationCache, PixelEvent, ProcessedSignature, Shard, SyncState, User, utcnow,
)

log = get_logger(__name__)

_READ_ONLY = "pixind_read_only"


def _make_engine(db_url: str) -> Engine:
    if not db_url.startswith("sqlite"):
        return create_engine(db_url, pool_pre_ping=True)

    engine = create_engine(db_url, connect_args={"check_same_thread": False, "timeout": 30})

    # pysqlite's implicit BEGIN is deferred; take the write lock up front so the
    # dedup check and the mark of one apply cannot interleave with another apply.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _record) -> None:
        dbapi_conn.isolation_level = None
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL")
        cur.close()

    # Reads keep a deferred BEGIN: under WAL they see the last commit and never
    # queue behind an apply holding the write lock.
    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:
        if conn.get_execution_options().get(_READ_ONLY):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


class SqlProjectionUnit(SqlDedupStore):
    """Write statements of one apply transaction."""

    def insert_pixel(self, ev: PixelChanged) -> int:
        s = self.session
        res = s.execute(sqlite_insert(PixelEvent).values(
            px=ev.px, py=ev.py, color=ev.color, main_wallet=ev.main_wallet, timestamp=ev.timestamp,
        ))
        pixel_id = int(res.inserted_primary_key[0])
        s.execute(update(GlobalStats).where(GlobalStats.id == 1)
                  .values(total_pixels_placed=GlobalStats.total_pixels_placed + 1))
        s.execute(sqlite_insert(User)
                  .values(main_wallet=ev.main_wallet, pixels_placed_count=1, shards_owned_count=0)
                  .on_conflict_do_update(index_elements=[User.main_wallet],
                                         set_={"pixels_placed_count": User.pixels_placed_count + 1}))
        if ev.painter != ev.main_wallet:
            s.execute(update(User).where(User.main_wallet == ev.main_wallet)
                      .values(session_address=ev.painter))
        return pixel_id

    def insert_shard(self, ev: ShardInitialized) -> bool:
        s = self.session
        res = s.execute(sqlite_insert(Shard)
                        .values(shard_x=ev.shard_x, shard_y=ev.shard_y,
                                main_wallet=ev.main_wallet, timestamp=ev.timestamp)
                        .on_conflict_do_nothing(index_elements=[Shard.shard_x, Shard.shard_y]))
        if res.rowcount != 1:
            return False
        s.execute(update(GlobalStats).where(GlobalStats.id == 1)
                  .values(total_shards_deployed=GlobalStats.total_shards_deployed + 1))
        s.execute(sqlite_insert(User)
                  .values(main_wallet=ev.main_wallet, pixels_placed_count=0, shards_owned_count=1)
                  .on_conflict_do_update(index_elements=[User.main_wallet],
                                         set_={"shards_owned_count": User.shards_owned_count + 1}))
        return True


def _pixel_row(p: PixelEvent) -> PixelRow:
    return PixelRow(id=p.id, px=p.px, py=p.py, color=p.color, main_wallet=p.main_wallet,
                    timestamp=p.timestamp, location_name=p.location_name)

def _shard_row(s: Shard) -> ShardRow:
    return ShardRow(shard_x=s.shard_x, shard_y=s.shard_y, main_wallet=s.main_wallet,
                    timestamp=s.timestamp, location_name=s.location_name)


class SqlStore:
    """
    SQLAlchemy-backed materialized view. Implements ProjectionStore,
    SyncStateStore, EnrichmentStore and ViewReader. All methods are blocking;
    async callers go through asyncio.to_thread.
    """
    def __init__(self, db_url: str) -> None:
        self.db_url = db_url
        self.engine = _make_engine(db_url)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)
        self._reads = sessionmaker(self.engine.execution_options(**{_READ_ONLY: True}),
                                   expire_on_commit=False)

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)
        with self._sessions.begin() as s:
            s.execute(sqlite_insert(GlobalStats)
                      .values(id=1, total_pixels_placed=0, total_shards_deployed=0)
                      .on_conflict_do_nothing(index_elements=[GlobalStats.id]))
        log.info("schema_ready", db_url=self.db_url)

    def dispose(self) -> None:
        self.engine.dispose()

    # ---- projection -----------------------------------------------------------

    @contextmanager
    def unit_of_work(self) -> Iterator[SqlProjectionUnit]:
        with self._sessions.begin() as s:
            yield SqlProjectionUnit(s)

    def is_processed(self, signature: Signature) -> bool:
        with self._reads() as s:
            return SqlDedupStore(s).has(signature)

    # ---- sync state -----------------------------------------------------------

    def get_watermark(self, label: str) -> Signature | None:
        with self._reads() as s:
            row = s.get(SyncState, label)
            return Signature(row.last_signature) if row else None

    def set_watermark(self, label: str, signature: Signature) -> None:
        now = utcnow()
        with self._sessions.begin() as s:
            s.execute(sqlite_insert(SyncState)
                      .values(label=label, last_signature=signature, updated_at=now)
                      .on_conflict_do_update(index_elements=[SyncState.label],
                                             set_={"last_signature": signature, "updated_at": now}))

    def clear_watermark(self, label: str) -> None:
        with self._sessions.begin() as s:
            s.execute(delete(SyncState).where(SyncState.label == label))

    def sync_states(self) -> list[SyncStateRow]:
        with self._reads() as s:
            rows = s.scalars(select(SyncState).order_by(SyncState.label)).all()
            return [SyncStateRow(label=r.label, last_signature=Signature(r.last_signature),
                                 updated_at=r.updated_at) for r in rows]

    # ---- enrichment -----------------------------------------------------------

    def set_pixel_location(self, pixel_id: int, name: str) -> None:
        with self._sessions.begin() as s:
            s.execute(update(PixelEvent).where(PixelEvent.id == pixel_id).values(location_name=name))

    def set_shard_location(self, shard_x: int, shard_y: int, name: str) -> None:
        with self._sessions.begin() as s:
            s.execute(update(Shard)
                      .where(Shard.shard_x == shard_x, Shard.shard_y == shard_y)
                      .values(location_name=name))

    def unresolved_pixels(self, sentinel: str, limit: int) -> list[PixelRow]:
        stmt = (select(PixelEvent)
                .where(or_(PixelEvent.location_name.is_(None), PixelEvent.location_name == sentinel))
                .order_by(PixelEvent.timestamp.desc(), PixelEvent.id.desc())
                .limit(limit))
        with self._reads() as s:
            return [_pixel_row(p) for p in s.scalars(stmt)]

    def unresolved_shards(self, sentinel: str, limit: int) -> list[ShardRow]:
        stmt = (select(Shard)
                .where(or_(Shard.location_name.is_(None), Shard.location_name == sentinel))
                .order_by(Shard.timestamp.desc())
                .limit(limit))
        with self._reads() as s:
            return [_shard_row(r) for r in s.scalars(stmt)]

    # ---- location cache -------------------------------------------------------

    def cached_location(self, grid_keys: Sequence[str]) -> str | None:
        """First cached name among `grid_keys`, honouring their order."""
        if not grid_keys:
            return None
        with self._reads() as s:
            rows = s.execute(select(LocationCache.grid_key, LocationCache.location_name)
                             .where(LocationCache.grid_key.in_(list(grid_keys)))).all()
        found = {k: name for k, name in rows}
        for k in grid_keys:
            if k in found:
                return found[k]
        return None

    def cache_location(self, grid_key: str, name: str, is_water_body: bool) -> None:
        now = utcnow()
        with self._sessions.begin() as s:
            s.execute(sqlite_insert(LocationCache)
                      .values(grid_key=grid_key, location_name=name,
                              is_water_body=is_water_body, created_at=now)
                      .on_conflict_do_update(index_elements=[LocationCache.grid_key],
                                             set_={"location_name": name,
                                                   "is_water_body": is_water_body,
                                                   "created_at": now}))

    # ---- read path ------------------------------------------------------------

    def recent_pixels(self, limit: int, px: int | None = None, py: int | None = None) -> list[PixelRow]:
        stmt = select(PixelEvent)
        if px is not None:
            stmt = stmt.where(PixelEvent.px == px)
        if py is not None:
            stmt = stmt.where(PixelEvent.py == py)
        stmt = stmt.order_by(PixelEvent.timestamp.desc(), PixelEvent.id.desc()).limit(limit)
        with self._reads() as s:
            return [_pixel_row(p) for p in s.scalars(stmt)]

    def all_pixels(self) -> list[PixelRow]:
        with self._reads() as s:
            return [_pixel_row(p) for p in s.scalars(select(PixelEvent).order_by(PixelEvent.id))]

    def shard_at(self, shard_x: int, shard_y: int) -> ShardRow | None:
        with self._reads() as s:
            row = s.get(Shard, (shard_x, shard_y))
            return _shard_row(row) if row else None

    def shards_by_owner(self, wallet: str) -> list[ShardRow]:
        stmt = select(Shard).where(Shard.main_wallet == wallet).order_by(Shard.timestamp.desc())
        with self._reads() as s:
            return [_shard_row(r) for r in s.scalars(stmt)]

    def all_shards(self) -> list[ShardRow]:
        with self._reads() as s:
            return [_shard_row(r) for r in s.scalars(select(Shard).order_by(Shard.shard_x, Shard.shard_y))]

    def user(self, wallet: str) -> UserRow | None:
        with self._reads() as s:
            u = s.get(User, wallet)
            if u is None:
                return None
            return UserRow(main_wallet=u.main_wallet, pixels_placed_count=u.pixels_placed_count,
                           shards_owned_count=u.shards_owned_count, session_address=u.session_address)

    def global_stats(self) -> GlobalStatsRow:
        with self._reads() as s:
            g = s.get(GlobalStats, 1)
            if g is None:
                return GlobalStatsRow(total_pixels_placed=0, total_shards_deployed=0)
            return GlobalStatsRow(total_pixels_placed=g.total_pixels_placed,
                                  total_shards_deployed=g.total_shards_deployed)

    def count_pixels(self) -> int:
        with self._reads() as s:
            return int(s.scalar(select(func.count()).select_from(PixelEvent)) or 0)

    def count_shards(self) -> int:
        with self._reads() as s:
            return int(s.scalar(select(func.count()).select_from(Shard)) or 0)

    def count_processed(self) -> int:
        with self._reads() as s:
            return int(s.scalar(select(func.count()).select_from(ProcessedSignature)) or 0)
