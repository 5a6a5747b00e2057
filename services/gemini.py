"""
services/gemini.py — Modelos Gemini por API key.

Cada petición trae la clave del usuario, así que en lugar de un singleton hay
una instancia de ChatGoogleGenerativeAI por clave, creada en el primer uso y
reutilizada después. La caché es LRU y acotada por GEMINI_MODEL_CACHE_SIZE:
las claves menos usadas se descartan.

Uso:
    from services.gemini import get_model
    model = get_model(api_key)
"""

from functools import lru_cache

from langchain_google_genai import ChatGoogleGenerativeAI

from config import settings


@lru_cache(maxsize=settings.GEMINI_MODEL_CACHE_SIZE)
def get_model(api_key: str) -> ChatGoogleGenerativeAI:
    """Devuelve el modelo asociado a `api_key`, creándolo si no está en caché."""
    return ChatGoogleGenerativeAI(
        model=settings.GEMINI_MODEL,
        google_api_key=api_key,
        max_output_tokens=settings.GEMINI_MAX_OUTPUT_TOKENS,
        temperature=settings.GEMINI_TEMPERATURE,
    )


def reset_models() -> None:
    """Descarta todas las instancias cacheadas. Útil en tests."""
    get_model.cache_clear()
