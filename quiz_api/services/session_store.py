import logging
import secrets
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

import redis
from pydantic import ValidationError

from quiz_api.core.errors import (
    ConflictError,
    CorruptedSessionError,
    PersistFailedError,
    SessionNotFoundError,
    StoreUnavailableError,
)
from quiz_api.models.quiz import Difficulty, QuizSession, SessionStats, SESSION_TIMEOUT_MINUTES
from quiz_api.services.kv import KeyValueBackend

logger = logging.getLogger(__name__)

# Le TTL du backend dépasse la limite applicative : is_stale() tranche seul
TTL_MARGIN_SECONDS = 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """
    Persistance des sessions de quiz dans un backend clé-valeur à TTL.

    - une clé par session : <prefix><sessionId>, valeur = JSON de QuizSession
    - TTL court tant que la session est active, long une fois terminée
    - l'expiration est aussi évaluée ici, sur lastActivity : le TTL du backend
      et lastActivity peuvent diverger
    - update() est un compare-and-swap sur `version` : une écriture basée sur
      un instantané périmé est rejetée (ConflictError)
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        key_prefix: str = "quiz:session:",
        timeout_minutes: int = SESSION_TIMEOUT_MINUTES,
        completed_ttl_minutes: int = 120,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._backend = backend
        self._prefix = key_prefix
        self.timeout_minutes = timeout_minutes
        self.completed_ttl_minutes = completed_ttl_minutes
        self._clock = clock

    # ---------- public API ----------

    def now(self) -> datetime:
        return self._clock()

    def create(self, language: str, difficulty: Difficulty) -> QuizSession:
        now = self._clock()
        session = QuizSession(
            sessionId=self._new_session_id(),
            language=language,
            difficulty=difficulty,
            startTime=now,
            lastActivity=now,
        )
        try:
            self._backend.set(self._key(session.sessionId), session.model_dump_json(), self._ttl_for(session))
        except redis.RedisError as e:
            logger.error("Create session failed: %s", e)
            raise StoreUnavailableError() from e

        logger.info("Created quiz session %s (%s, %s)", session.sessionId, language, difficulty.value)
        return session

    def get(self, session_id: str) -> QuizSession:
        """
        Lit une session. Inconnue ou expirée → SessionNotFoundError
        (l'entrée expirée est supprimée au passage).
        """
        try:
            raw = self._backend.get(self._key(session_id))
        except redis.RedisError as e:
            logger.error("Read session %s failed: %s", session_id, e)
            raise StoreUnavailableError() from e

        if raw is None:
            logger.debug("Session %s not found", session_id)
            raise SessionNotFoundError()

        session = self._decode(raw)
        if session is None:
            raise CorruptedSessionError()

        if self.is_stale(session):
            logger.info("Session %s has expired, removing it", session_id)
            self.delete(session_id)
            raise SessionNotFoundError()

        return session

    def update(self, session: QuizSession) -> None:
        """
        Horodate lastActivity puis écrit l'instantané complet si la version
        stockée est celle qui a été lue.
        """
        key = self._key(session.sessionId)
        expected = session.version
        state = {"missing": False}

        def same_version(current: Optional[str]) -> bool:
            if current is None:
                state["missing"] = True
                return False
            stored = self._decode(current)
            return stored is not None and stored.version == expected

        session.lastActivity = self._clock()
        session.version = expected + 1
        try:
            ok = self._backend.check_and_set(key, same_version, session.model_dump_json(), self._ttl_for(session))
        except redis.RedisError as e:
            session.version = expected
            logger.error("Persist session %s failed: %s", session.sessionId, e)
            raise PersistFailedError() from e

        if not ok:
            session.version = expected
            if state["missing"]:
                logger.warning("Update on vanished session %s rejected", session.sessionId)
                raise SessionNotFoundError()
            logger.warning("Stale write on session %s (version %s) rejected", session.sessionId, expected)
            raise ConflictError()

        logger.debug("Updated session %s (version %s)", session.sessionId, session.version)

    def delete(self, session_id: str) -> bool:
        try:
            deleted = self._backend.delete(self._key(session_id))
        except redis.RedisError as e:
            logger.error("Delete session %s failed: %s", session_id, e)
            raise StoreUnavailableError() from e

        if deleted:
            logger.info("Deleted session %s", session_id)
        else:
            logger.debug("Session %s already absent", session_id)
        return deleted

    def extend_ttl(self, session_id: str) -> bool:
        """
        Repousse l'expiration (TTL du backend et lastActivity) sans toucher à
        la version. Sans effet si la session n'existe pas ou a expiré.
        """
        key = self._key(session_id)
        try:
            session = self.get(session_id)
        except (SessionNotFoundError, CorruptedSessionError):
            return False

        version = session.version

        def untouched(current: Optional[str]) -> bool:
            stored = self._decode(current) if current is not None else None
            return stored is not None and stored.version == version

        session.lastActivity = self._clock()
        try:
            ok = self._backend.check_and_set(key, untouched, session.model_dump_json(), self._ttl_for(session))
        except redis.RedisError as e:
            logger.error("Extend session %s failed: %s", session_id, e)
            raise StoreUnavailableError() from e

        # Écriture concurrente : elle a déjà rafraîchi lastActivity
        if ok:
            logger.debug("Extended TTL for session %s", session_id)
        return ok

    def scan_active(self) -> Iterator[QuizSession]:
        """
        Parcourt toutes les sessions stockées (instantané non atomique).
        """
        try:
            keys = list(self._backend.scan(self._prefix))
        except redis.RedisError as e:
            logger.error("Scan sessions failed: %s", e)
            raise StoreUnavailableError() from e

        for key in keys:
            try:
                raw = self._backend.get(key)
            except redis.RedisError as e:
                logger.error("Read %s during scan failed: %s", key, e)
                raise StoreUnavailableError() from e
            if raw is None:
                continue  # supprimée entre le scan et la lecture
            session = self._decode(raw)
            if session is not None:
                yield session

    def count(self) -> int:
        try:
            return sum(1 for _ in self._backend.scan(self._prefix))
        except redis.RedisError as e:
            logger.error("Count sessions failed: %s", e)
            raise StoreUnavailableError() from e

    def stats(self) -> SessionStats:
        now = self._clock()
        total = active = completed = 0
        for session in self.scan_active():
            total += 1
            if session.completed:
                completed += 1
            elif not session.is_expired(now, self.timeout_minutes):
                active += 1
        return SessionStats(totalSessions=total, activeSessions=active, completedSessions=completed)

    def is_stale(self, session: QuizSession, now: Optional[datetime] = None) -> bool:
        """
        Active : inactive depuis plus de timeout_minutes.
        Terminée : conservée pendant completed_ttl_minutes (résumé consultable).
        """
        now = now or self._clock()
        limit = self.completed_ttl_minutes if session.completed else self.timeout_minutes
        return session.is_expired(now, limit)

    def ping(self) -> bool:
        try:
            return self._backend.ping()
        except redis.RedisError as e:
            logger.warning("Store ping failed: %s", e)
            return False

    # ---------- internals ----------

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}{session_id}"

    def _ttl_for(self, session: QuizSession) -> int:
        minutes = self.completed_ttl_minutes if session.completed else self.timeout_minutes
        return minutes * 60 + TTL_MARGIN_SECONDS

    def _new_session_id(self) -> str:
        return secrets.token_hex(12)  # 96 bits

    def _decode(self, raw: str) -> Optional[QuizSession]:
        try:
            return QuizSession.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Undecodable session snapshot: %s", e)
            return None
