import json
import random
from datetime import datetime, timedelta, timezone

import pytest
import redis
from fastapi.testclient import TestClient

from quiz_api.core.config import get_settings
from quiz_api.core.errors import GenerationFailedError
from quiz_api.main import create_app
from quiz_api.services.kv import MemoryBackend
from quiz_api.services.question_gen import QuestionGenerator
from quiz_api.services.quiz_engine import QuizEngine
from quiz_api.services.session_store import SessionStore


class FakeClock:
    """Horloge manipulable : appelable (datetime UTC) + timestamp() pour le backend."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def timestamp(self) -> float:
        return self.current.timestamp()

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class BrokenBackend:
    """Backend dont chaque appel échoue comme un Redis injoignable."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise redis.ConnectionError("connection refused")
        return fail


class ScriptedSource:
    """
    Source de questions factice : renvoie un JSON valide dont la bonne réponse
    est `correct`, ou lève GenerationFailedError si `fail` est vrai.
    """

    def __init__(self, correct: str = "A", fail: bool = False):
        self.correct = correct
        self.fail = fail
        self.calls = []

    def generate_question(self, language, topic, difficulty, want_code, context=""):
        self.calls.append(
            {"language": language, "topic": topic, "difficulty": difficulty, "want_code": want_code, "context": context}
        )
        if self.fail:
            raise GenerationFailedError("scripted failure")
        return json.dumps(
            {
                "question": f"[{len(self.calls)}] Question about {topic} in {language}?",
                "codeSnippet": "print('hi')" if want_code else "",
                "options": {"A": "first", "B": "second", "C": "third", "D": "fourth"},
                "correctAnswer": self.correct,
                "explanation": f"The answer is {self.correct}.",
            }
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend(clock):
    return MemoryBackend(clock=clock.timestamp)


@pytest.fixture
def store(backend, clock):
    return SessionStore(backend, key_prefix="quiz:session:", timeout_minutes=30, completed_ttl_minutes=120, clock=clock)


@pytest.fixture
def source():
    return ScriptedSource()


@pytest.fixture
def generator(source):
    return QuestionGenerator(source, rng=random.Random(7))


@pytest.fixture
def engine(store, generator):
    return QuizEngine(store, generator)


@pytest.fixture
def test_client(monkeypatch, tmp_path, store, generator):
    """
    TestClient isolé : store mémoire, source factice, pas de tâches de fond.
    """
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("APP_NAME", "QUIZ SESSION API (tests)")
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("REAPER_ENABLED", "false")
    monkeypatch.setenv("REFERENCE_PATH", str(tmp_path / "reference"))
    monkeypatch.setenv("CORS_ORIGINS", "http://localhost")
    monkeypatch.setenv("API_KEY", "change_me")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    # vider le cache des settings pour prendre en compte les env
    get_settings.cache_clear()

    app = create_app(store=store, generator=generator)
    yield TestClient(app)

    get_settings.cache_clear()
