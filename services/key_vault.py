"""
services/key_vault.py — Enmascarado, validación y codificación de API keys.

IMPORTANTE: `encrypt_api_key` / `decrypt_api_key` son una codificación
reversible (base64), NO cifrado. Las claves guardadas en el snapshot no son
confidenciales para quien tenga acceso a la base de datos.

Uso:
    from services.key_vault import obfuscate_api_key, validate_api_key

    obfuscate_api_key("sk_1234567890abcd")       # "••••••••abcd"
    validate_api_key("AIzaSy...", "gemini")      # True / False
"""

import base64
import binascii

MASK = "••••••••"

# Longitudes mínimas (estrictamente mayores que estos valores)
_GEMINI_PREFIX = "AIza"
_GEMINI_MIN_LENGTH = 30
_ELEVENLABS_MIN_LENGTH = 20


def obfuscate_api_key(key: str | None) -> str:
    """
    Versión para mostrar en pantalla: máscara fija + últimos 4 caracteres.
    Claves de menos de 8 caracteres se enmascaran por completo.
    """
    if not key or len(key) < 8:
        return MASK
    return MASK + key[-4:]


def validate_api_key(key: str | None, provider: str) -> bool:
    """
    Comprobación sintáctica por proveedor (no verifica la clave contra la API).

      - gemini:     empieza por "AIza" y tiene más de 30 caracteres
      - elevenlabs: más de 20 caracteres
    """
    if not key:
        return False

    if provider == "gemini":
        return key.startswith(_GEMINI_PREFIX) and len(key) > _GEMINI_MIN_LENGTH
    if provider == "elevenlabs":
        return len(key) > _ELEVENLABS_MIN_LENGTH
    return False


def encrypt_api_key(key: str) -> str:
    """Codifica la clave para guardarla en el snapshot (base64, no es cifrado)."""
    return base64.b64encode(key.encode("utf-8")).decode("ascii")


def decrypt_api_key(encoded: str | None) -> str:
    """Inversa de encrypt_api_key. Devuelve "" si el valor no es decodificable."""
    if not encoded:
        return ""
    try:
        return base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return ""
