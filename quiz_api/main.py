import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from quiz_api.core.config import get_settings
from quiz_api.core.deps import build_generator, build_store
from quiz_api.core.errors import QuizError
from quiz_api.core.logging import setup_logging
from quiz_api.routers import quiz, system
from quiz_api.services.question_gen import QuestionGenerator
from quiz_api.services.quiz_engine import QuizEngine
from quiz_api.services.reaper import SessionReaper
from quiz_api.services.session_store import SessionStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    tasks = []
    if settings.REAPER_ENABLED:
        reaper: SessionReaper = app.state.reaper
        tasks.append(asyncio.create_task(reaper.run_periodic()))
        tasks.append(asyncio.create_task(reaper.run_daily()))
        logger.info("Session reaper started (every %ss)", reaper.interval_seconds)

    yield

    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("Application shutdown")


async def quiz_error_handler(request: Request, exc: QuizError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s", type(exc).__name__, request.method, request.url.path)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def create_app(
    store: Optional[SessionStore] = None,
    generator: Optional[QuestionGenerator] = None,
) -> FastAPI:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="API de quiz de programmation en 5 questions (sessions Redis, questions générées par IA)",
        lifespan=lifespan,
    )

    # Services partagés (aucun état de session en mémoire du processus)
    store = store or build_store(settings)
    generator = generator or build_generator(settings)
    app.state.session_store = store
    app.state.quiz_engine = QuizEngine(store, generator, default_language=settings.DEFAULT_LANGUAGE)
    app.state.reaper = SessionReaper(
        store,
        interval_seconds=settings.REAPER_INTERVAL_SECONDS,
        stats_hour_utc=settings.STATS_HOUR_UTC,
    )

    # Middleware CORS
    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],  # fallback si mal configuré
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(QuizError, quiz_error_handler)

    # Routers
    app.include_router(system.router)
    app.include_router(quiz.router)

    # Redirect root → docs
    @app.get("/", include_in_schema=False)
    async def root():
        return RedirectResponse(url="/docs")

    return app


app = create_app()
