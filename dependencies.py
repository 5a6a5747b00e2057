"""
Dependencias FastAPI compartidas por todos los routers.

Uso:
    @router.get("/photos")
    async def list_photos(store: MemoryStore = Depends(get_store)):
        ...
"""

from fastapi import Request

from services.memory_store import MemoryStore


def get_store(request: Request) -> MemoryStore:
    """
    Devuelve el MemoryStore del proceso, creado en el lifespan de la app.
    Los tests pueden sustituirlo asignando `app.state.store`.
    """
    store = getattr(request.app.state, "store", None)
    assert store is not None, "El lifespan debe crear app.state.store antes del primer request"
    return store
