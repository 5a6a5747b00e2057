"""
SnapshotRepository — lectura/escritura async de la tabla `app_snapshots`.

Uso:
    async with AsyncSessionLocal() as session:
        repo = SnapshotRepository(session)
        await repo.save("memorylens-storage", {"photos": [...]})
        await session.commit()
        payload = await repo.get("memorylens-storage")
"""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db import SnapshotRow


class SnapshotRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, name: str) -> dict | None:
        """Devuelve el payload guardado bajo `name`, o None si no existe."""
        result = await self._session.execute(
            select(SnapshotRow).where(SnapshotRow.name == name)
        )
        row = result.scalar_one_or_none()
        return row.payload if row is not None else None

    async def save(self, name: str, payload: dict) -> None:
        """Inserta o sustituye el snapshot completo (no hace merge)."""
        row = await self._session.get(SnapshotRow, name)
        if row is None:
            self._session.add(SnapshotRow(name=name, payload=payload))
        else:
            row.payload = payload
            row.updated_at = datetime.now(timezone.utc)
        await self._session.flush()

    async def delete(self, name: str) -> bool:
        """Elimina el snapshot. Devuelve True si existía."""
        row = await self._session.get(SnapshotRow, name)
        if row is None:
            return False
        await self._session.delete(row)
        await self._session.flush()
        return True
