import json
import logging
import math
import os
import re
import sqlite3
import time
from datetime import timedelta
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from openai import OpenAI

from app.config import get_settings
from app.models import AISettings, AskResponse, FeedbackRecord
from app.services.directory_store import DirectoryStore, directory_store
from app.services.feedback_store import FeedbackStore, feedback_store, utc_now
from app.services.provider_search import available_cities

logger = logging.getLogger(__name__)

FAQ_RESPONSES = {
    "hola": (
        "¡Hola! 👋 Bienvenido a Charlitron Eventos 360. Puedo ayudarte a encontrar proveedores de eventos. "
        "¿Qué tipo de servicio necesitas?"
    ),
    "ayuda": (
        "Puedo ayudarte con: 🔍 Buscar proveedores, 💰 Comparar precios, 📍 Encontrar proveedores por ubicación. "
        "¿Qué necesitas?"
    ),
    "horarios": (
        "Nuestro directorio está disponible 24/7. Los proveedores tienen sus propios horarios de atención "
        "que puedes consultar en sus perfiles."
    ),
    "costo": (
        "El directorio de Charlitron Eventos 360 es completamente gratuito para usuarios. "
        "Los precios de servicios varían por proveedor."
    ),
    "como funciona": (
        "Charlitron Eventos 360 es un directorio de proveedores de eventos verificados. Puedes buscar por categoría "
        "y ubicación, y contactar directamente a los proveedores."
    ),
}

CACHE_TTL_SECONDS = 30 * 60
CACHE_KEY_LENGTH = 50
MAX_CONTEXT_PROVIDERS = 40

INPUT_COST_PER_1K = 0.00015
OUTPUT_COST_PER_1K = 0.0006

DISABLED_MESSAGE = "El asistente virtual está temporalmente no disponible. Inténtalo más tarde."
TOO_LONG_MESSAGE = "Tu pregunta es muy larga. Por favor, hazla más específica."
FALLBACK_MESSAGE = (
    "Lo siento, no pude procesar tu pregunta en este momento. 🙏 Inténtalo de nuevo en unos segundos "
    "o explora las categorías del directorio."
)

RATE_LIMITED_SOURCE = "rate_limited"

SYSTEM_PROMPT = (
    "Eres el asistente virtual de Charlitron Eventos 360, un directorio de proveedores de eventos. "
    "Responde en español de México, en 3 a 4 líneas, con un tono amable y usando emojis con moderación. "
    "Recomienda únicamente proveedores, ciudades, servicios y precios que aparezcan en directory_context. "
    "Si no hay un proveedor adecuado, dilo y sugiere explorar las categorías."
)

_NON_KEY_CHARS = re.compile(r"[^a-z0-9\s]")


class AssistantError(ValueError):
    pass


class AssistantValidationError(AssistantError):
    pass


def cache_key(question: str) -> str:
    return _NON_KEY_CHARS.sub("", question.lower().strip())[:CACHE_KEY_LENGTH]


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def estimate_cost(tokens_input: int, tokens_output: int) -> float:
    return (tokens_input / 1000) * INPUT_COST_PER_1K + (tokens_output / 1000) * OUTPUT_COST_PER_1K


def format_wait(minutes: int) -> str:
    minutes = max(1, minutes)
    if minutes <= 60:
        return f"{minutes} minuto{'s' if minutes > 1 else ''}"
    hours = math.ceil(minutes / 60)
    return f"{hours} hora{'s' if hours > 1 else ''}"


class AIAssistant:
    """Answers visitor questions about the directory and records every exchange."""

    def __init__(self, directory: DirectoryStore, feedback: FeedbackStore) -> None:
        self.directory = directory
        self.feedback = feedback
        self.model = get_settings().openai_model
        api_key = self._load_openai_api_key()
        self.client = OpenAI(api_key=api_key) if api_key else None
        self.llm_available = self.client is not None
        if not self.llm_available:
            logger.warning("LLM disabled: set OPENAI_API_KEY (or OPENAI_API_KEY_FILE).")
        self._cache_lock = Lock()
        self._cache: Dict[str, Tuple[str, List[str], float]] = {}

    @staticmethod
    def _normalize_env_value(value: str) -> str:
        normalized = value.strip()
        if len(normalized) >= 2 and normalized[0] == normalized[-1] and normalized[0] in {"'", '"'}:
            normalized = normalized[1:-1].strip()
        return normalized

    def _load_openai_api_key(self) -> str:
        api_key = self._normalize_env_value(os.getenv("OPENAI_API_KEY", ""))
        if not api_key:
            key_file = self._normalize_env_value(os.getenv("OPENAI_API_KEY_FILE", ""))
            if key_file:
                try:
                    api_key = self._normalize_env_value(Path(key_file).read_text(encoding="utf-8"))
                except OSError:
                    logger.warning("OPENAI_API_KEY_FILE is set but unreadable.")
        if api_key.lower() in {"replace-with-openai-key", "your-openai-api-key"}:
            return ""
        return api_key

    def welcome_message(self) -> str:
        return self._load_settings().welcome_message

    def _load_settings(self) -> AISettings:
        try:
            return self.feedback.load_settings()
        except sqlite3.Error:
            logger.exception("Failed to load assistant settings, using defaults")
            return AISettings()

    def ask_question(
        self,
        question: str,
        session_id: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> AskResponse:
        started = time.monotonic()
        question = self._safe_text(question, max_len=20000)
        if not question:
            raise AssistantValidationError("La pregunta no puede estar vacía")
        session_id = self._safe_text(session_id, default="", max_len=128) or str(uuid4())
        client_id = self._safe_text(client_id, default="anonymous", max_len=128)
        settings = self._load_settings()

        def finish(answer: str, sources: List[str], ok: bool, tokens: Tuple[int, int] = (0, 0)) -> AskResponse:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            record_id = self._log_usage(
                session_id=session_id,
                client_id=client_id,
                question=question,
                response=answer if ok else f"Error: {answer}",
                sources_used=sources,
                tokens=tokens,
                processing_time_ms=elapsed_ms,
            )
            return AskResponse(
                answer=answer,
                ok=ok,
                record_id=record_id,
                session_id=session_id,
                sources_used=sources,
            )

        if not settings.is_enabled:
            return finish(DISABLED_MESSAGE, [], ok=False)

        wait_minutes = self._rate_limit_wait(client_id, settings)
        if wait_minutes is not None:
            message = f"Has alcanzado el límite de preguntas. Inténtalo nuevamente en {format_wait(wait_minutes)}."
            return finish(message, [RATE_LIMITED_SOURCE], ok=False)

        cached = self._cache_get(question)
        if cached:
            return finish(cached[0], ["cache"], ok=True)

        faq = self._faq_answer(question)
        if faq:
            key, answer = faq
            sources = [f"faq:{key}"]
            self._cache_put(question, answer, sources)
            return finish(answer, sources, ok=True)

        if len(question) > settings.max_question_chars:
            return finish(TOO_LONG_MESSAGE, [], ok=False)

        if not self.llm_available:
            return finish(FALLBACK_MESSAGE, [], ok=False)

        try:
            context, sources = self._build_context()
            answer, tokens = self._call_model(question, context)
        except Exception:
            logger.exception("Assistant model call failed")
            return finish(FALLBACK_MESSAGE, [], ok=False)

        self._cache_put(question, answer, sources)
        return finish(answer, sources, ok=True, tokens=tokens)

    def submit_feedback(self, record_id: int, useful: bool, comment: Optional[str] = None) -> FeedbackRecord:
        comment = self._safe_text(comment, default="", max_len=1000) or None
        record = self.feedback.vote(record_id=record_id, useful=useful, comment=comment)
        logger.info("assistant_feedback=%s", json.dumps({"record_id": record_id, "useful": useful}))
        return record

    def _rate_limit_wait(self, client_id: str, settings: AISettings) -> Optional[int]:
        now = utc_now()
        windows = (
            (24 * 60, settings.rate_limit_per_day),
            (60, settings.rate_limit_per_hour),
            (1, settings.rate_limit_per_minute),
        )
        for minutes, limit in windows:
            if limit <= 0:
                continue
            try:
                used = self.feedback.count_since(
                    client_id,
                    now - timedelta(minutes=minutes),
                    exclude_sources=[RATE_LIMITED_SOURCE],
                )
            except sqlite3.Error:
                logger.exception("Rate limit lookup failed, allowing request")
                return None
            if used >= limit:
                return minutes
        return None

    def _faq_answer(self, question: str) -> Optional[Tuple[str, str]]:
        lowered = question.lower()
        for key, answer in FAQ_RESPONSES.items():
            if key in lowered:
                return key, answer
        return None

    def _cache_get(self, question: str) -> Optional[Tuple[str, List[str]]]:
        key = cache_key(question)
        if not key:
            return None
        with self._cache_lock:
            entry = self._cache.get(key)
            if not entry:
                return None
            answer, sources, stored_at = entry
            if time.monotonic() - stored_at >= CACHE_TTL_SECONDS:
                del self._cache[key]
                return None
            return answer, sources

    def _cache_put(self, question: str, answer: str, sources: List[str]) -> None:
        key = cache_key(question)
        if not key:
            return
        with self._cache_lock:
            self._cache[key] = (answer, list(sources), time.monotonic())

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def _build_context(self) -> Tuple[Dict[str, Any], List[str]]:
        providers = self.directory.list_providers()[:MAX_CONTEXT_PROVIDERS]
        categories = {category.id: category.name for category in self.directory.list_categories()}
        context = {
            "categories": sorted(categories.values()),
            "cities": available_cities(providers),
            "providers": [
                {
                    "name": provider.name,
                    "city": provider.city,
                    "category": categories.get(provider.category_id or "", ""),
                    "description": self._safe_text(provider.description, max_len=240),
                    "whatsapp": provider.whatsapp,
                    "featured": provider.featured,
                    "services": [
                        {"name": service.name, "price": service.price} for service in provider.services or []
                    ],
                }
                for provider in providers
            ],
        }
        return context, [provider.id for provider in providers]

    def _call_model(self, question: str, context: Dict[str, Any]) -> Tuple[str, Tuple[int, int]]:
        assert self.client is not None
        payload = json.dumps({"question": question, "directory_context": context}, ensure_ascii=False)
        response = self.client.responses.create(
            model=self.model,
            input=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": payload},
            ],
            temperature=0.4,
        )
        text = (getattr(response, "output_text", "") or "").strip()
        if not text:
            raise RuntimeError("Empty model response")
        usage = getattr(response, "usage", None)
        tokens_input = self._safe_int(getattr(usage, "input_tokens", None), estimate_tokens(SYSTEM_PROMPT + payload))
        tokens_output = self._safe_int(getattr(usage, "output_tokens", None), estimate_tokens(text))
        return text, (tokens_input, tokens_output)

    def _log_usage(
        self,
        *,
        session_id: str,
        client_id: str,
        question: str,
        response: str,
        sources_used: List[str],
        tokens: Tuple[int, int],
        processing_time_ms: int,
    ) -> Optional[int]:
        tokens_input, tokens_output = tokens
        try:
            record_id = self.feedback.log_usage(
                session_id=session_id,
                client_id=client_id,
                question=question,
                response=response,
                sources_used=sources_used,
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                cost_usd=estimate_cost(tokens_input, tokens_output),
                processing_time_ms=processing_time_ms,
            )
        except sqlite3.Error:
            logger.exception("Failed to log assistant usage")
            return None
        logger.info(
            "assistant_usage=%s",
            json.dumps(
                {
                    "record_id": record_id,
                    "session_id": session_id,
                    "sources_used": sources_used,
                    "processing_time_ms": processing_time_ms,
                },
                sort_keys=True,
            ),
        )
        return record_id

    def _safe_text(self, value: Any, default: str = "", max_len: int = 512) -> str:
        if value is None:
            return default
        text = str(value).strip()
        if not text:
            return default
        if len(text) > max_len:
            return text[:max_len]
        return text

    def _safe_int(self, value: Any, default: int) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return default


ai_assistant = AIAssistant(directory=directory_store, feedback=feedback_store)


def get_ai_assistant() -> AIAssistant:
    return ai_assistant
