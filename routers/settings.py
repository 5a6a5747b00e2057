"""
Router de ajustes: API keys, preferencias, agente de voz y estado de operaciones.

Endpoints:
  GET    /api/settings                    → ajustes (claves enmascaradas)
  PUT    /api/settings/api-keys           → guarda una API key validada
  PATCH  /api/settings/preferences        → merge parcial de preferencias
  GET    /api/settings/voice-agent        → agente de voz actual
  PATCH  /api/settings/voice-agent        → merge parcial del agente de voz
  PUT    /api/settings/active-tab         → pestaña activa de la UI
  GET    /api/settings/operations         → mapas de carga y errores
  DELETE /api/settings/errors             → borra todos los errores
  DELETE /api/settings/errors/{key}       → borra un error
"""

import logging

from fastapi import APIRouter, Depends

from dependencies import get_store
from middleware.error_handler import ValidationError
from models.requests import (
    ActiveTabRequest,
    ApiKeyUpdateRequest,
    PreferencesUpdateRequest,
    VoiceAgentUpdateRequest,
)
from models.responses import ApiKeyStatus, OperationsData, SettingsData, ok
from services.key_vault import obfuscate_api_key, validate_api_key
from services.memory_store import MemoryStore
from services.personality import default_voice_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


def _settings_data(store: MemoryStore) -> SettingsData:
    keys = store.get_api_keys()
    return SettingsData(
        api_keys={
            provider: ApiKeyStatus(
                configured=bool(value),
                display=obfuscate_api_key(value) if value else None,
            )
            for provider, value in keys.items()
        },
        preferences=store.settings.preferences,
        has_valid_api_keys=store.has_valid_api_keys(),
    )


@router.get("")
async def get_settings(store: MemoryStore = Depends(get_store)):
    return ok(_settings_data(store))


@router.put("/api-keys")
async def set_api_key(body: ApiKeyUpdateRequest, store: MemoryStore = Depends(get_store)):
    key = body.key.strip()
    if not validate_api_key(key, body.provider):
        raise ValidationError(f"Invalid {body.provider} API key format")
    store.set_api_key(body.provider, key)
    return ok(_settings_data(store), "API key saved")


@router.patch("/preferences")
async def update_preferences(
    body: PreferencesUpdateRequest, store: MemoryStore = Depends(get_store)
):
    store.update_settings(**dict(body))
    return ok(_settings_data(store), "Preferences updated")


@router.get("/voice-agent")
async def get_voice_agent(store: MemoryStore = Depends(get_store)):
    return ok(store.voice_agent)


@router.patch("/voice-agent")
async def update_voice_agent(
    body: VoiceAgentUpdateRequest, store: MemoryStore = Depends(get_store)
):
    changes = dict(body)
    # Al cambiar de personalidad sin ajustes de voz explícitos se aplican los
    # recomendados, conservando la voz elegida
    if body.personality is not None and body.voice_settings is None:
        changes["voice_settings"] = default_voice_settings(body.personality).model_copy(
            update={"voice_id": store.voice_agent.voice_settings.voice_id}
        )
    store.update_voice_agent(**changes)
    return ok(store.voice_agent, "Voice agent updated")


@router.put("/active-tab")
async def set_active_tab(body: ActiveTabRequest, store: MemoryStore = Depends(get_store)):
    store.set_active_tab(body.tab)
    return ok({"activeTab": store.active_tab})


@router.get("/operations")
async def operations(store: MemoryStore = Depends(get_store)):
    return ok(OperationsData(loading_states=store.loading_states, errors=store.errors))


@router.delete("/errors")
async def clear_all_errors(store: MemoryStore = Depends(get_store)):
    store.clear_all_errors()
    return ok(message="Errors cleared")


@router.delete("/errors/{key:path}")
async def clear_error(key: str, store: MemoryStore = Depends(get_store)):
    store.clear_error(key)
    return ok(message="Error cleared")
