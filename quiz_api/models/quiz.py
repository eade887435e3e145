from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

TOTAL_QUESTIONS = 5
SESSION_TIMEOUT_MINUTES = 30
ANSWER_LETTERS = ("A", "B", "C", "D")


class Difficulty(str, Enum):
    beginner = "beginner"
    intermediate = "intermediate"
    advanced = "advanced"


class SessionState(str, Enum):
    active = "ACTIVE"
    completed = "COMPLETED"
    expired = "EXPIRED"


class QuizOption(BaseModel):
    letter: str
    text: str


class Question(BaseModel):
    questionNumber: int = Field(..., ge=1, le=TOTAL_QUESTIONS)
    question: str
    codeSnippet: str = ""
    options: List[QuizOption] = Field(..., min_length=4, max_length=4)
    correctAnswer: str = Field(..., pattern="^[ABCD]$")
    explanation: str

    def to_public(self) -> "PublicQuestion":
        # correctAnswer / explanation ne sont révélés qu'après la réponse
        return PublicQuestion(
            questionNumber=self.questionNumber,
            question=self.question,
            codeSnippet=self.codeSnippet,
            options=self.options,
        )


class PublicQuestion(BaseModel):
    questionNumber: int
    question: str
    codeSnippet: str = ""
    options: List[QuizOption]


class QuestionDraft(BaseModel):
    """
    Forme stricte attendue de la sortie du modèle.
    Toute divergence lève une ValidationError (→ question de secours).
    """
    question: str = Field(..., min_length=1)
    codeSnippet: str = ""
    options: Dict[str, str]
    correctAnswer: str
    explanation: str = Field(..., min_length=1)

    @field_validator("codeSnippet", mode="before")
    @classmethod
    def _none_snippet(cls, v):
        return "" if v is None else v

    @field_validator("options")
    @classmethod
    def _four_letters(cls, v: Dict[str, str]) -> Dict[str, str]:
        keys = {k.strip().upper() for k in v}
        if keys != set(ANSWER_LETTERS) or len(v) != 4:
            raise ValueError("options must be exactly A, B, C, D")
        if any(not str(text).strip() for text in v.values()):
            raise ValueError("option text cannot be empty")
        return {k.strip().upper(): str(text) for k, text in v.items()}

    @field_validator("correctAnswer")
    @classmethod
    def _letter(cls, v: str) -> str:
        letter = v.strip().upper()
        if letter not in ANSWER_LETTERS:
            raise ValueError("correctAnswer must be one of A-D")
        return letter

    def to_question(self, question_number: int) -> Question:
        return Question(
            questionNumber=question_number,
            question=self.question,
            codeSnippet=self.codeSnippet,
            options=[QuizOption(letter=k, text=self.options[k]) for k in ANSWER_LETTERS],
            correctAnswer=self.correctAnswer,
            explanation=self.explanation,
        )


class QuizSession(BaseModel):
    """
    Instantané persisté d'une partie. Seul le store en détient la version durable.
    """
    sessionId: str
    language: str
    difficulty: Difficulty
    questions: List[Question] = Field(default_factory=list)
    userAnswers: List[str] = Field(default_factory=list)
    currentQuestionIndex: int = 0
    score: int = 0
    startTime: datetime
    lastActivity: datetime
    completed: bool = False
    version: int = 0

    def current_question(self) -> Optional[Question]:
        if self.currentQuestionIndex < len(self.questions):
            return self.questions[self.currentQuestionIndex]
        return None

    def add_question(self, question: Question) -> None:
        self.questions.append(question)

    def submit_answer(self, letter: str) -> bool:
        current = self.current_question()
        if current is None:
            raise ValueError("no pending question")

        letter = letter.strip().upper()
        is_correct = letter == current.correctAnswer.upper()
        if is_correct:
            self.score += 1
        self.userAnswers.append(letter)
        self.currentQuestionIndex += 1

        if self.currentQuestionIndex >= TOTAL_QUESTIONS:
            self.completed = True
        return is_correct

    def has_next_question(self) -> bool:
        return self.currentQuestionIndex < TOTAL_QUESTIONS and not self.completed

    def current_question_number(self) -> int:
        return min(self.currentQuestionIndex + 1, TOTAL_QUESTIONS)

    def completion_percentage(self) -> int:
        return (self.currentQuestionIndex * 100) // TOTAL_QUESTIONS

    def idle_seconds(self, now: datetime) -> float:
        return (now - self.lastActivity).total_seconds()

    def is_expired(self, now: datetime, timeout_minutes: int = SESSION_TIMEOUT_MINUTES) -> bool:
        return self.idle_seconds(now) > timeout_minutes * 60

    def state(self, now: datetime, timeout_minutes: int = SESSION_TIMEOUT_MINUTES) -> SessionState:
        if self.completed:
            return SessionState.completed
        if self.is_expired(now, timeout_minutes):
            return SessionState.expired
        return SessionState.active

    def duration_ms(self, now: datetime) -> int:
        end = self.lastActivity if self.completed else now
        return max(0, int((end - self.startTime).total_seconds() * 1000))


# ---------- API ----------


class StartQuizRequest(BaseModel):
    language: Optional[str] = Field(None, description="Langage du quiz (défaut configuré si absent)")
    difficulty: Difficulty = Field(default=Difficulty.beginner)


class StartQuizResponse(BaseModel):
    sessionId: str
    language: str
    difficulty: Difficulty
    totalQuestions: int = TOTAL_QUESTIONS
    currentQuestionNumber: int
    score: int
    isComplete: bool
    question: PublicQuestion


class AnswerRequest(BaseModel):
    answer: str = Field(..., pattern="^[ABCDabcd]$", description="Lettre A-D (casse indifférente)")


class QuizSummary(BaseModel):
    sessionId: str
    language: str
    difficulty: Difficulty
    totalQuestions: int = TOTAL_QUESTIONS
    correctAnswers: int
    score: int = Field(..., description="Pourcentage de bonnes réponses")
    performance: str
    message: str
    completionTimeMs: int


class AnswerResponse(BaseModel):
    correct: bool
    message: str
    correctAnswer: str
    explanation: str
    score: int
    hasNext: bool
    nextQuestion: Optional[PublicQuestion] = None
    summary: Optional[QuizSummary] = None


class SessionStatusResponse(BaseModel):
    sessionId: str
    language: str
    difficulty: Difficulty
    currentQuestion: int
    totalQuestions: int = TOTAL_QUESTIONS
    score: int
    completionPercentage: int
    status: SessionState
    sessionDurationMinutes: int
    completed: bool


class SessionStats(BaseModel):
    totalSessions: int
    activeSessions: int
    completedSessions: int


class SweepResponse(BaseModel):
    removed: int
    before: int
    after: int
