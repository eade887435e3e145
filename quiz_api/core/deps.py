import random
from typing import Optional

from fastapi import Request

from quiz_api.core.config import Settings, get_settings
from quiz_api.services.kv import KeyValueBackend, MemoryBackend, RedisBackend
from quiz_api.services.question_gen import QuestionGenerator
from quiz_api.services.question_source import OpenAIQuestionSource, QuestionSource
from quiz_api.services.quiz_engine import QuizEngine
from quiz_api.services.reaper import SessionReaper
from quiz_api.services.retrieval import EmbeddingRetriever, OpenAIEmbedder
from quiz_api.services.session_store import SessionStore


def build_backend(settings: Settings) -> KeyValueBackend:
    if settings.STORE_BACKEND.lower() == "memory":
        return MemoryBackend()
    return RedisBackend.from_url(settings.REDIS_URL, settings.REDIS_TIMEOUT_SECONDS)


def build_store(settings: Settings, backend: Optional[KeyValueBackend] = None) -> SessionStore:
    return SessionStore(
        backend or build_backend(settings),
        key_prefix=settings.SESSION_KEY_PREFIX,
        timeout_minutes=settings.SESSION_TIMEOUT_MINUTES,
        completed_ttl_minutes=settings.COMPLETED_TTL_MINUTES,
    )


def build_generator(settings: Settings, source: Optional[QuestionSource] = None) -> QuestionGenerator:
    return QuestionGenerator(
        source or OpenAIQuestionSource(
            settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
            timeout_seconds=settings.GENERATION_TIMEOUT_SECONDS,
        ),
        retriever=EmbeddingRetriever(
            settings.REFERENCE_PATH,
            OpenAIEmbedder(
                settings.OPENAI_API_KEY,
                model=settings.EMBEDDING_MODEL,
                timeout_seconds=settings.GENERATION_TIMEOUT_SECONDS,
            ),
        ),
        rng=random.Random(),
        top_k=settings.RETRIEVAL_TOP_K,
        threshold=settings.RETRIEVAL_THRESHOLD,
        context_max_chars=settings.CONTEXT_MAX_CHARS,
    )


def get_settings_dep() -> Settings:
    return get_settings()


def get_session_store(request: Request) -> SessionStore:
    """
    Fournit le store de sessions en dépendance (DI), construit dans create_app().
    """
    return request.app.state.session_store


def get_quiz_engine(request: Request) -> QuizEngine:
    return request.app.state.quiz_engine


def get_reaper(request: Request) -> SessionReaper:
    return request.app.state.reaper
