"""
SQLite state store built on SQLAlchemy's async ORM and aiosqlite.

Schema:
- ``resources``: one row per record, primary key ``(id, scope_chain)``,
  the serialized record in a JSON column
- ``scopes``: every scope chain that has been initialized

Creating the database file and its tables happens under an advisory lock
file and only once per database per process. Writes to one database are
serialized with a lock shared by every store pointing at it.
"""

import asyncio
import fcntl
import json
import logging
import weakref
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, delete, func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .base import State, StateStore, StateStoreFactory, deserialize_state, serialize_state

if TYPE_CHECKING:
    from ..scope import Scope

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class ResourceRow(Base):
    __tablename__ = "resources"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    scope_chain: Mapped[str] = mapped_column(String, primary_key=True)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    state: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (Index("idx_resources_scope_chain", "scope_chain"),)


class ScopeRow(Base):
    __tablename__ = "scopes"

    chain: Mapped[str] = mapped_column(String, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


# Databases whose schema has been created by this process
_MIGRATED: set[str] = set()

# Per event loop, per database write locks
_WRITE_LOCKS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[str, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def _write_lock(database: str) -> asyncio.Lock:
    locks = _WRITE_LOCKS.setdefault(asyncio.get_running_loop(), {})
    return locks.setdefault(database, asyncio.Lock())


@asynccontextmanager
async def _file_lock(path: Path):
    """Hold an exclusive advisory lock on ``path`` for the block."""
    with open(path, "a+") as handle:
        await asyncio.to_thread(fcntl.flock, handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class SQLiteStateStore(StateStore):
    """State store keeping every scope's records in one SQLite database."""

    def __init__(self, scope: "Scope", path: Path | str | None = None):
        super().__init__(scope)
        if path is None:
            from ..settings import get_settings

            path = get_settings().sqlite_path
        self.path = Path(path).resolve()
        self.chain = json.dumps(list(scope.chain))
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None
        self._init_lock = asyncio.Lock()

    @classmethod
    def factory(cls, path: Path | str | None = None) -> StateStoreFactory:
        return lambda scope: cls(scope, path)

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    @property
    def _database(self) -> str:
        return str(self.path)

    async def _migrate(self, engine: AsyncEngine) -> None:
        if self._database in _MIGRATED and self.path.exists():
            return

        def _prepare() -> None:
            self.path.parent.mkdir(parents=True, exist_ok=True)

        await asyncio.to_thread(_prepare)
        async with _write_lock(self._database):
            async with _file_lock(self.lock_path):
                async with engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
        _MIGRATED.add(self._database)
        logger.debug(f"Created state tables in {self.path}")

    async def _ensure(self) -> async_sessionmaker[AsyncSession]:
        if self._sessions is not None:
            return self._sessions
        async with self._init_lock:
            if self._sessions is not None:
                return self._sessions
            engine = create_async_engine(f"sqlite+aiosqlite:///{self.path}")
            await self._migrate(engine)
            sessions = async_sessionmaker(engine, expire_on_commit=False)
            async with _write_lock(self._database):
                async with sessions() as session:
                    await session.execute(
                        insert(ScopeRow).values(chain=self.chain).on_conflict_do_nothing()
                    )
                    await session.commit()
            self._engine = engine
            self._sessions = sessions
            return sessions

    async def _session(self) -> AsyncSession:
        sessions = await self._ensure()
        return sessions()

    async def init(self) -> None:
        await self._ensure()

    async def deinit(self) -> None:
        if self._engine is None:
            return

        async with _write_lock(self._database):
            async with await self._session() as session:
                own = await session.scalar(
                    select(func.count()).select_from(ResourceRow).where(
                        ResourceRow.scope_chain == self.chain
                    )
                )
                if own == 0:
                    await session.execute(delete(ScopeRow).where(ScopeRow.chain == self.chain))
                    await session.commit()
                total = await session.scalar(select(func.count()).select_from(ResourceRow))

        await self._engine.dispose()
        self._engine = None
        self._sessions = None

        # only the root scope removes the database, after every child is done
        if total == 0 and self.scope.parent is None:
            self.path.unlink(missing_ok=True)
            self.lock_path.unlink(missing_ok=True)
            _MIGRATED.discard(self._database)
            logger.debug(f"Removed empty state database {self.path}")

    async def list(self) -> list[str]:
        async with await self._session() as session:
            result = await session.scalars(
                select(ResourceRow.id)
                .where(ResourceRow.scope_chain == self.chain)
                .order_by(ResourceRow.seq)
            )
            return list(result)

    async def count(self) -> int:
        async with await self._session() as session:
            return await session.scalar(
                select(func.count()).select_from(ResourceRow).where(
                    ResourceRow.scope_chain == self.chain
                )
            )

    async def get(self, key: str) -> State | None:
        async with await self._session() as session:
            row = await session.get(ResourceRow, (key, self.chain))
            if row is None:
                return None
            record = row.state
        return await deserialize_state(self.scope, record)

    async def get_batch(self, ids) -> dict[str, State]:
        ids = list(ids)
        if not ids:
            return {}
        async with await self._session() as session:
            rows = await session.scalars(
                select(ResourceRow).where(
                    ResourceRow.scope_chain == self.chain, ResourceRow.id.in_(ids)
                )
            )
            records = [(row.id, row.state) for row in rows]
        return {key: await deserialize_state(self.scope, record) for key, record in records}

    async def all(self) -> dict[str, State]:
        async with await self._session() as session:
            rows = await session.scalars(
                select(ResourceRow).where(ResourceRow.scope_chain == self.chain)
            )
            records = [(row.id, row.state) for row in rows]
        return {key: await deserialize_state(self.scope, record) for key, record in records}

    async def set(self, key: str, value: State) -> None:
        record = await serialize_state(self.scope, value)
        values = {
            "kind": value.kind,
            "status": value.status.value,
            "seq": value.seq,
            "state": record,
            "updated_at": _utcnow(),
        }
        stmt = insert(ResourceRow).values(id=key, scope_chain=self.chain, **values)
        stmt = stmt.on_conflict_do_update(index_elements=["id", "scope_chain"], set_=values)
        sessions = await self._ensure()
        async with _write_lock(self._database):
            async with sessions() as session:
                await session.execute(stmt)
                await session.commit()

    async def delete(self, key: str) -> None:
        sessions = await self._ensure()
        async with _write_lock(self._database):
            async with sessions() as session:
                await session.execute(
                    delete(ResourceRow).where(
                        ResourceRow.id == key, ResourceRow.scope_chain == self.chain
                    )
                )
                await session.commit()
