"""
db.py — Motor SQLAlchemy async y tablas del backend.

Solo existe una tabla: `app_snapshots`, donde se guarda el estado persistente
del MemoryStore serializado como JSON (una fila por nombre de snapshot).

Uso:
    import db as db_module
    db_module.init_db("sqlite+aiosqlite:///./memorylens.db")
    await db_module.create_all_tables()
    async with db_module.AsyncSessionLocal() as session:
        ...
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class SnapshotRow(Base):
    __tablename__ = "app_snapshots"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now
    )


# ── Inicialización ────────────────────────────────────────────────────────────


def init_db(database_url: str) -> None:
    """Crea el engine y la fábrica de sesiones globales."""
    global engine, AsyncSessionLocal
    engine = create_async_engine(database_url, future=True)
    AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def create_all_tables() -> None:
    assert engine is not None, "init_db() debe ejecutarse antes"
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all_tables() -> None:
    assert engine is not None, "init_db() debe ejecutarse antes"
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
