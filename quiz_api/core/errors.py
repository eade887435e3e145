"""
Erreurs typées du moteur de quiz.

Chaque erreur porte le code HTTP et un message générique destiné au client.
Le détail interne (clé, exception d'origine) reste dans les logs.
"""
from typing import Optional

from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_503_SERVICE_UNAVAILABLE,
)


class QuizError(Exception):
    status_code: int = HTTP_500_INTERNAL_SERVER_ERROR
    public_message: str = "Something went wrong. Please try again."

    def __init__(self, detail: Optional[str] = None) -> None:
        self.detail = detail or self.public_message
        super().__init__(self.detail)


class SessionNotFoundError(QuizError):
    status_code = HTTP_404_NOT_FOUND
    public_message = "Quiz session not found or expired. Please start a new quiz."


class CorruptedSessionError(QuizError):
    status_code = HTTP_409_CONFLICT
    public_message = "No current question found. Please start a new quiz."


class InvalidAnswerError(QuizError):
    status_code = HTTP_400_BAD_REQUEST
    public_message = "Answer must be A, B, C, or D."


class StoreUnavailableError(QuizError):
    status_code = HTTP_503_SERVICE_UNAVAILABLE
    public_message = "Quiz service is temporarily unavailable. Please try again."


class PersistFailedError(StoreUnavailableError):
    public_message = "Failed to save quiz progress. Please try again."


class ConflictError(QuizError):
    status_code = HTTP_409_CONFLICT
    public_message = "This answer was already processed. Please refresh and try again."


class GenerationFailedError(QuizError):
    """Ne sort jamais du générateur : absorbée par la question de secours."""
