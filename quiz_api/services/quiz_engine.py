import logging
from typing import Optional, Tuple

from quiz_api.core.errors import CorruptedSessionError, InvalidAnswerError
from quiz_api.models.quiz import (
    ANSWER_LETTERS,
    TOTAL_QUESTIONS,
    AnswerResponse,
    Difficulty,
    QuizSession,
    QuizSummary,
    SessionStatusResponse,
    StartQuizResponse,
)
from quiz_api.services.question_gen import QuestionGenerator, display_name, normalize_language
from quiz_api.services.session_store import SessionStore

logger = logging.getLogger(__name__)

# (pourcentage minimal, niveau, message)
PERFORMANCE_BANDS: Tuple[Tuple[int, str, str], ...] = (
    (80, "Excellent", "Outstanding! You have a strong grasp of {language} concepts!"),
    (60, "Good", "Well done! You're making good progress with {language}!"),
    (40, "Fair", "Keep practicing! You're on the right track!"),
    (0, "Needs Improvement", "Don't give up! Practice makes perfect in {language}!"),
)


def performance_for(percentage: int) -> Tuple[str, str]:
    for floor, tier, message in PERFORMANCE_BANDS:
        if percentage >= floor:
            return tier, message
    return PERFORMANCE_BANDS[-1][1], PERFORMANCE_BANDS[-1][2]


def build_summary(session: QuizSession, now) -> QuizSummary:
    percentage = round(session.score * 100 / TOTAL_QUESTIONS)
    tier, message = performance_for(percentage)
    return QuizSummary(
        sessionId=session.sessionId,
        language=session.language,
        difficulty=session.difficulty,
        correctAnswers=session.score,
        score=percentage,
        performance=tier,
        message=message.format(language=display_name(session.language)),
        completionTimeMs=session.duration_ms(now),
    )


class QuizEngine:
    """
    Moteur de quiz sans état : chaque opération relit la session dans le store
    et y réécrit toute mutation avant de répondre.
    """

    def __init__(self, store: SessionStore, generator: QuestionGenerator, default_language: str = "python") -> None:
        self.store = store
        self.generator = generator
        self.default_language = default_language

    # ---------- public API ----------

    def start(self, difficulty: Difficulty, language: Optional[str] = None) -> StartQuizResponse:
        """
        Crée une session et retourne la 1ère question (sans réponse ni explication).
        """
        lang = normalize_language(language, self.default_language)
        session = self.store.create(lang, difficulty)

        first = self.generator.generate(lang, difficulty, 1)
        session.add_question(first)
        self.store.update(session)

        logger.info("Started quiz session %s - language=%s difficulty=%s", session.sessionId, lang, difficulty.value)
        return StartQuizResponse(
            sessionId=session.sessionId,
            language=lang,
            difficulty=difficulty,
            currentQuestionNumber=1,
            score=0,
            isComplete=False,
            question=first.to_public(),
        )

    def submit_answer(self, session_id: str, letter: str) -> AnswerResponse:
        letter = (letter or "").strip().upper()
        if letter not in ANSWER_LETTERS:
            raise InvalidAnswerError()

        session = self.store.get(session_id)
        current = session.current_question()
        if current is None or session.completed:
            raise CorruptedSessionError()

        is_correct = session.submit_answer(letter)
        prefix = "Correct!" if is_correct else "Incorrect."
        message = f"{prefix} {current.explanation}"

        if not session.has_next_question():
            self.store.update(session)
            summary = build_summary(session, self.store.now())
            logger.info(
                "Quiz session %s completed: %s/%s (%s)",
                session.sessionId, session.score, TOTAL_QUESTIONS, summary.performance,
            )
            return AnswerResponse(
                correct=is_correct,
                message=message,
                correctAnswer=current.correctAnswer,
                explanation=current.explanation,
                score=session.score,
                hasNext=False,
                summary=summary,
            )

        next_q = self.generator.generate(session.language, session.difficulty, session.current_question_number())
        session.add_question(next_q)
        self.store.update(session)

        return AnswerResponse(
            correct=is_correct,
            message=message,
            correctAnswer=current.correctAnswer,
            explanation=current.explanation,
            score=session.score,
            hasNext=True,
            nextQuestion=next_q.to_public(),
        )

    def status(self, session_id: str) -> SessionStatusResponse:
        session = self.store.get(session_id)
        now = self.store.now()
        return SessionStatusResponse(
            sessionId=session.sessionId,
            language=session.language,
            difficulty=session.difficulty,
            currentQuestion=session.current_question_number(),
            score=session.score,
            completionPercentage=session.completion_percentage(),
            status=session.state(now, self.store.timeout_minutes),
            sessionDurationMinutes=session.duration_ms(now) // 60000,
            completed=session.completed,
        )

    def summary(self, session_id: str) -> QuizSummary:
        session = self.store.get(session_id)
        if not session.completed:
            raise CorruptedSessionError("Quiz is not completed yet.")
        return build_summary(session, self.store.now())

    def keep_alive(self, session_id: str) -> bool:
        return self.store.extend_ttl(session_id)
