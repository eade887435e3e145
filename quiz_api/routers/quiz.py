from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from starlette.status import HTTP_400_BAD_REQUEST

from quiz_api.core.config import Settings
from quiz_api.core.deps import get_quiz_engine, get_reaper, get_session_store, get_settings_dep
from quiz_api.core.security import get_api_key
from quiz_api.models.quiz import (
    TOTAL_QUESTIONS,
    AnswerRequest,
    AnswerResponse,
    Difficulty,
    QuizSummary,
    SessionStats,
    SessionStatusResponse,
    StartQuizRequest,
    StartQuizResponse,
    SweepResponse,
)
from quiz_api.services.question_gen import SUPPORTED_LANGUAGES
from quiz_api.services.quiz_engine import QuizEngine
from quiz_api.services.reaper import SessionReaper
from quiz_api.services.session_store import SessionStore

router = APIRouter(prefix="/v1/quiz", tags=["quiz"])

DIFFICULTIES = [d.value for d in Difficulty]


@router.post("/start", response_model=StartQuizResponse)
def start_quiz(body: StartQuizRequest, engine: QuizEngine = Depends(get_quiz_engine)):
    return engine.start(body.difficulty, body.language)


@router.get("/start", response_model=StartQuizResponse)
def start_quiz_get(
    language: Optional[str] = None,
    difficulty: str = "beginner",
    engine: QuizEngine = Depends(get_quiz_engine),
):
    # Sans langage : défaut configuré (DEFAULT_LANGUAGE), comme pour POST
    if language is not None and language.strip().lower() not in SUPPORTED_LANGUAGES:
        raise HTTPException(
            status_code=HTTP_400_BAD_REQUEST,
            detail="Unsupported language. Supported: " + ", ".join(SUPPORTED_LANGUAGES),
        )
    if difficulty not in DIFFICULTIES:
        raise HTTPException(
            status_code=HTTP_400_BAD_REQUEST,
            detail="Difficulty must be: beginner, intermediate, or advanced",
        )
    return engine.start(Difficulty(difficulty), language)


@router.get("/stats", response_model=SessionStats)
def quiz_stats(store: SessionStore = Depends(get_session_store)):
    return store.stats()


@router.get("/info")
def quiz_info(settings: Settings = Depends(get_settings_dep)):
    return {
        "name": f"Multi-Language Programming Quiz - {TOTAL_QUESTIONS} Questions Challenge",
        "description": "Test your programming knowledge across multiple languages with AI-generated questions.",
        "difficulties": DIFFICULTIES,
        "supportedLanguages": SUPPORTED_LANGUAGES,
        "defaultLanguage": settings.DEFAULT_LANGUAGE,
        "totalQuestions": TOTAL_QUESTIONS,
        "sessionTimeoutMinutes": settings.SESSION_TIMEOUT_MINUTES,
        "instructions": (
            f"Answer {TOTAL_QUESTIONS} multiple-choice questions to complete a quiz session. "
            "Get immediate feedback and explanations!"
        ),
    }


@router.get("/languages")
def supported_languages(settings: Settings = Depends(get_settings_dep)):
    return {
        "languages": SUPPORTED_LANGUAGES,
        "defaultLanguage": settings.DEFAULT_LANGUAGE,
        "description": "The quiz supports programming questions in these languages",
    }


@router.post("/admin/sweep", response_model=SweepResponse)
def sweep_sessions(
    reaper: SessionReaper = Depends(get_reaper),
    _: str = Depends(get_api_key),
):
    return reaper.sweep()


@router.post("/{session_id}/answer", response_model=AnswerResponse)
def answer_quiz(session_id: str, body: AnswerRequest, engine: QuizEngine = Depends(get_quiz_engine)):
    return engine.submit_answer(session_id, body.answer)


@router.get("/{session_id}", response_model=SessionStatusResponse)
def quiz_status(session_id: str, engine: QuizEngine = Depends(get_quiz_engine)):
    return engine.status(session_id)


@router.post("/{session_id}/extend")
def extend_session(session_id: str, engine: QuizEngine = Depends(get_quiz_engine)):
    # Sans effet si la session n'existe plus
    return {"ok": True, "extended": engine.keep_alive(session_id)}


@router.get("/{session_id}/summary", response_model=QuizSummary)
def quiz_summary(session_id: str, engine: QuizEngine = Depends(get_quiz_engine)):
    return engine.summary(session_id)
