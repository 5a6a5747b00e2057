"""
services/personality.py — Texto conversacional según la personalidad del agente.

Funciones puras: a partir del análisis de la foto, el historial y el agente de
voz generan el texto que después se sintetiza con ElevenLabs. No hay LLM de
por medio: las respuestas salen de plantillas y de las preguntas sugeridas
por el análisis.

Uso:
    from services.personality import generate_response_text

    text = generate_response_text(analysis, history, store.voice_agent)
    # "Hello there! What a wonderful photo! I can see cake and balloons here. ..."
"""

import random
import re

from models.entities import (
    ConversationMessage,
    PhotoAnalysis,
    Personality,
    VoiceAgent,
    VoiceSettings,
)

# ── Tonos por personalidad ────────────────────────────────────────────────────

TONES: dict[str, dict[str, str]] = {
    "warm": {
        "greeting": "Hello there!",
        "acknowledgment": "That sounds wonderful.",
        "excitement": "How lovely!",
        "curiosity": "I'm curious,",
    },
    "nostalgic": {
        "greeting": "What a treasure this is.",
        "acknowledgment": "Those were special times.",
        "excitement": "What beautiful memories!",
        "curiosity": "I wonder,",
    },
    "excited": {
        "greeting": "Oh wow, this is amazing!",
        "acknowledgment": "That sounds incredible!",
        "excitement": "How exciting!",
        "curiosity": "I have to know,",
    },
    "gentle": {
        "greeting": "This is such a lovely photo.",
        "acknowledgment": "Thank you for sharing that.",
        "excitement": "How special.",
        "curiosity": "If you don't mind me asking,",
    },
}

_DEFAULT_TONE = {
    "greeting": "Hello!",
    "acknowledgment": "I see.",
    "excitement": "That's wonderful!",
    "curiosity": "Tell me,",
}

# (stability, style) por personalidad; similarity_boost fijo en 0.5
_VOICE_PRESETS: dict[str, tuple[float, float]] = {
    "warm": (0.7, 0.3),
    "nostalgic": (0.8, 0.6),
    "excited": (0.4, 0.8),
    "gentle": (0.9, 0.2),
}

# Palabras clave del último mensaje del usuario
_FAMILY_WORDS = ("family", "relative")
_CELEBRATION_WORDS = ("celebration", "party", "birthday")
_PLACE_WORDS = ("place", "location", "where")

# Sustitutos cuando el análisis viene incompleto
_FALLBACK_QUESTION = "What memories does this bring back?"
_FALLBACK_OBJECTS = "so many details"
_FALLBACK_THEME = "memory"
_FALLBACK_TONE = "heartfelt"

_NARRATION_STORY_CHARS = 200


def get_personality_tone(personality: str) -> dict[str, str]:
    return TONES.get(personality, _DEFAULT_TONE)


def default_voice_settings(personality: Personality) -> VoiceSettings:
    """Ajustes de voz recomendados para cada personalidad."""
    stability, style = _VOICE_PRESETS.get(personality, (0.5, 0.5))
    return VoiceSettings(stability=stability, similarity_boost=0.5, style=style)


def narration_voice_settings(voice: VoiceSettings) -> VoiceSettings:
    """Variante más expresiva para narraciones: +0.2 estabilidad, +0.3 estilo (máx. 1.0)."""
    return voice.model_copy(
        update={
            "stability": min(voice.stability + 0.2, 1.0),
            "style": min(voice.style + 0.3, 1.0),
        }
    )


# ── Respuestas ────────────────────────────────────────────────────────────────


def _question(questions: list[str], index: int) -> str:
    if index < len(questions):
        return questions[index]
    return questions[0] if questions else _FALLBACK_QUESTION


def generate_opening_response(
    analysis: PhotoAnalysis, agent: VoiceAgent, rng: random.Random | None = None
) -> str:
    visual = analysis.visual_content
    story = analysis.story
    tone = get_personality_tone(agent.personality)

    objects = " and ".join(visual.objects[:2]) or _FALLBACK_OBJECTS
    emotional_tone = story.emotional_tone or _FALLBACK_TONE
    theme = story.themes[0] if story.themes else _FALLBACK_THEME
    questions = story.suggested_questions

    candidates = [
        f"{tone['greeting']} What a wonderful photo! I can see {objects} here. "
        f"The {emotional_tone} feeling really comes through. {_question(questions, 0)}",
        f"{tone['greeting']} This image has such a {emotional_tone} atmosphere. "
        f"I notice it was taken during the {visual.time_of_day}. {_question(questions, 1)}",
        f"{tone['greeting']} There's something really special about this photo. "
        f"The {theme} theme is so evident. {_question(questions, 0)}",
    ]
    return (rng or random).choice(candidates)


def generate_follow_up_response(
    analysis: PhotoAnalysis,
    history: list[ConversationMessage],
    agent: VoiceAgent,
) -> str:
    tone = get_personality_tone(agent.personality)
    questions = analysis.story.suggested_questions
    last = history[-1].content.casefold() if history else ""

    if any(word in last for word in _FAMILY_WORDS):
        who = next((q for q in questions if "who" in q.casefold()), None)
        return (
            f"{tone['acknowledgment']} Family moments are so precious. "
            f"{who or 'Tell me more about the people in this photo.'}"
        )

    if any(word in last for word in _CELEBRATION_WORDS):
        return (
            f"{tone['excitement']} Celebrations create the most wonderful memories! "
            "What made this occasion so special?"
        )

    if any(word in last for word in _PLACE_WORDS):
        return (
            f"{tone['curiosity']} Places hold such powerful memories. "
            "What do you remember most about being there?"
        )

    # Primera pregunta sugerida que aún no aparece en el historial
    remaining = [
        q for q in questions if not any(q[:10] in m.content for m in history)
    ]
    if remaining:
        return f"{tone['acknowledgment']} {remaining[0]}"

    return (
        f"{tone['acknowledgment']} That's a beautiful memory. "
        "What other details about this moment stand out to you?"
    )


def generate_response_text(
    analysis: PhotoAnalysis,
    history: list[ConversationMessage],
    agent: VoiceAgent,
    rng: random.Random | None = None,
) -> str:
    """
    Respuesta del agente: saludo de apertura si el historial tiene 0 o 1
    mensajes, seguimiento basado en palabras clave en otro caso.
    """
    if len(history) <= 1:
        return generate_opening_response(analysis, agent, rng)
    return generate_follow_up_response(analysis, history, agent)


def create_story_narration(
    analysis: PhotoAnalysis,
    history: list[ConversationMessage],
    agent: VoiceAgent,
) -> str:
    """Narración de cierre que mezcla el análisis con lo que ha contado el usuario."""
    visual = analysis.visual_content
    story = analysis.story

    shared = " ".join(m.content for m in history if m.role == "user")
    shared_part = (
        f"From what you've shared, {shared[:_NARRATION_STORY_CHARS]}..." if shared else ""
    )
    objects = ", ".join(visual.objects[:3]) or _FALLBACK_OBJECTS
    themes = " and ".join(story.themes) or _FALLBACK_THEME

    text = (
        f"This photograph captures a moment of {story.emotional_tone or _FALLBACK_TONE}. "
        f"{visual.setting} during the {visual.time_of_day}, we see {objects}. "
        f"{shared_part} "
        f"The {themes} in this image remind us that every photograph is more than "
        "just a picture - it's a doorway to our memories, a keeper of moments that "
        "shaped who we are. "
        "This memory, like all precious memories, deserves to be cherished and shared."
    )
    return re.sub(r"\s+", " ", text).strip()
