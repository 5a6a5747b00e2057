"""
services/persistence.py — Destinos de persistencia del MemoryStore.

El store llama a `sink.write(snapshot)` de forma síncrona tras cada mutación.
La escritura real es "fire-and-forget": si falla, se registra en el log y el
store sigue funcionando con el estado en memoria.

  - InMemorySnapshotSink: guarda el último snapshot en memoria (tests, modo
    sin base de datos).
  - DatabaseSnapshotSink: lanza una tarea asyncio en background que escribe el
    snapshot en la tabla `app_snapshots`. Las escrituras se encadenan: mientras
    una está en curso, los snapshots nuevos sustituyen al pendiente, de forma
    que el último estado siempre es el último en escribirse.

Uso:
    sink = DatabaseSnapshotSink("memorylens-storage")
    state = await sink.load()
    store = MemoryStore.from_snapshot(state, sink=sink)
    ...
    await sink.drain()   # al apagar
"""

import asyncio
import logging
from typing import Protocol

import db as db_module
from repositories.snapshot import SnapshotRepository

logger = logging.getLogger(__name__)


class SnapshotSink(Protocol):
    def write(self, snapshot: dict) -> None: ...


class InMemorySnapshotSink:
    """Doble de test: conserva el último snapshot y cuenta las escrituras."""

    def __init__(self, initial: dict | None = None) -> None:
        self.snapshot: dict | None = initial
        self.writes = 0

    def write(self, snapshot: dict) -> None:
        self.snapshot = snapshot
        self.writes += 1

    async def load(self) -> dict | None:
        return self.snapshot


class DatabaseSnapshotSink:
    def __init__(self, name: str) -> None:
        self._name = name
        self._pending: dict | None = None
        self._task: asyncio.Task | None = None

    # ── API pública ───────────────────────────────────────────────────────────

    def write(self, snapshot: dict) -> None:
        """
        Programa la escritura del snapshot sin bloquear al llamante.
        Sin event loop en marcha no hay dónde programarla: se descarta con warning.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "[PERSIST] Sin event loop activo; snapshot '%s' no guardado",
                self._name,
            )
            return

        self._pending = snapshot
        if self._task is None or self._task.done():
            self._task = loop.create_task(
                self._flush_pending(), name=f"persist-{self._name}"
            )

    async def load(self) -> dict | None:
        """Lee el snapshot guardado. Devuelve None si no existe o no se puede leer."""
        assert db_module.AsyncSessionLocal is not None, "DB no inicializada"
        try:
            async with db_module.AsyncSessionLocal() as session:
                return await SnapshotRepository(session).get(self._name)
        except Exception:
            logger.exception("[PERSIST] Error leyendo snapshot '%s'", self._name)
            return None

    async def drain(self) -> None:
        """Espera a que terminen las escrituras pendientes (apagado y tests)."""
        while self._task is not None and not self._task.done():
            await asyncio.shield(self._task)

    # ── Implementación interna ────────────────────────────────────────────────

    async def _flush_pending(self) -> None:
        while self._pending is not None:
            snapshot, self._pending = self._pending, None
            try:
                await self._save(snapshot)
            except Exception:
                logger.exception(
                    "[PERSIST] Error guardando snapshot '%s'", self._name
                )

    async def _save(self, snapshot: dict) -> None:
        assert db_module.AsyncSessionLocal is not None, "DB no inicializada"
        async with db_module.AsyncSessionLocal() as session:
            async with session.begin():
                await SnapshotRepository(session).save(self._name, snapshot)
