import json
import threading
import time
import uuid
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import redis

from app.config.settings import get_settings
from app.engine.assignment_session import pending_check
from app.models.entities import AssignmentSession, CandidateAssignment, TutorCheck


def new_session_id() -> str:
    return uuid.uuid4().hex


class SessionStore(ABC):
    """Assignment sessions, alive for the duration of one assignment dialog."""

    @abstractmethod
    def create(self, candidate: CandidateAssignment) -> AssignmentSession:
        pass

    @abstractmethod
    def get(self, session_id: str) -> Optional[AssignmentSession]:
        pass

    @abstractmethod
    def begin_selection(self, session_id: str, tutor_id: str, tutor_name: str) -> Optional[int]:
        """Allocate the next sequence number and mark its check pending.

        Returns None when the session does not exist.
        """

    @abstractmethod
    def record(self, session_id: str, check: TutorCheck) -> bool:
        """Store a check if its sequence is still the latest one."""

    @abstractmethod
    def claim(self, session_id: str, sequence: int) -> Optional[AssignmentSession]:
        """Remove and return the session if no selection newer than `sequence` started.

        Selections started after the claim find no session.
        """

    @abstractmethod
    def restore(self, session: AssignmentSession) -> None:
        """Put back a claimed session whose submission failed."""

    @abstractmethod
    def delete(self, session_id: str) -> None:
        pass

    def health_check(self) -> bool:
        return True


class MemorySessionStore(SessionStore):
    def __init__(self, ttl_seconds: int = 1800):
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._sessions: Dict[str, Tuple[float, AssignmentSession]] = {}

    def _live(self, session_id: str) -> Optional[AssignmentSession]:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        expires_at, session = entry
        if expires_at <= time.monotonic():
            del self._sessions[session_id]
            return None
        self._sessions[session_id] = (time.monotonic() + self.ttl_seconds, session)
        return session

    def _purge_expired(self) -> int:
        now = time.monotonic()
        expired = [sid for sid, (expires_at, _) in self._sessions.items() if expires_at <= now]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    def purge_expired(self) -> int:
        """Drop sessions of dialogs abandoned without being closed."""
        with self._lock:
            return self._purge_expired()

    @staticmethod
    def _copy(session: AssignmentSession) -> AssignmentSession:
        return AssignmentSession(
            session_id=session.session_id,
            candidate=session.candidate,
            sequence=session.sequence,
            check=session.check,
        )

    def create(self, candidate: CandidateAssignment) -> AssignmentSession:
        session = AssignmentSession(session_id=new_session_id(), candidate=candidate)
        with self._lock:
            self._purge_expired()
            self._sessions[session.session_id] = (time.monotonic() + self.ttl_seconds, session)
        return self._copy(session)

    def get(self, session_id: str) -> Optional[AssignmentSession]:
        with self._lock:
            session = self._live(session_id)
            return self._copy(session) if session else None

    def begin_selection(self, session_id: str, tutor_id: str, tutor_name: str) -> Optional[int]:
        with self._lock:
            session = self._live(session_id)
            if session is None:
                return None
            session.sequence += 1
            session.check = pending_check(session.sequence, tutor_id, tutor_name)
            return session.sequence

    def record(self, session_id: str, check: TutorCheck) -> bool:
        with self._lock:
            session = self._live(session_id)
            if session is None or check.sequence != session.sequence:
                return False
            session.check = check
            return True

    def claim(self, session_id: str, sequence: int) -> Optional[AssignmentSession]:
        with self._lock:
            session = self._live(session_id)
            if session is None or session.sequence != sequence:
                return None
            del self._sessions[session_id]
            return self._copy(session)

    def restore(self, session: AssignmentSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = (time.monotonic() + self.ttl_seconds, self._copy(session))

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


class RedisSessionStore(SessionStore):
    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: int = 1800, client=None):
        self.redis_client = client or redis.from_url(redis_url or get_settings().redis_url, decode_responses=True)
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _keys(session_id: str) -> Tuple[str, str, str]:
        prefix = f"assignment:{session_id}"
        return f"{prefix}:candidate", f"{prefix}:sequence", f"{prefix}:check"

    def _touch(self, pipe, session_id: str) -> None:
        for key in self._keys(session_id):
            pipe.expire(key, self.ttl_seconds)

    @staticmethod
    def _decode(session_id: str, raw_candidate, raw_sequence, raw_check) -> AssignmentSession:
        return AssignmentSession(
            session_id=session_id,
            candidate=CandidateAssignment.from_dict(json.loads(raw_candidate)),
            sequence=int(raw_sequence or 0),
            check=TutorCheck.from_dict(json.loads(raw_check)) if raw_check else None,
        )

    def _write(self, session: AssignmentSession) -> None:
        candidate_key, sequence_key, check_key = self._keys(session.session_id)
        with self.redis_client.pipeline() as pipe:
            pipe.setex(candidate_key, self.ttl_seconds, json.dumps(session.candidate.to_dict()))
            pipe.setex(sequence_key, self.ttl_seconds, session.sequence)
            if session.check is not None:
                pipe.setex(check_key, self.ttl_seconds, json.dumps(session.check.to_dict()))
            pipe.execute()

    def create(self, candidate: CandidateAssignment) -> AssignmentSession:
        session = AssignmentSession(session_id=new_session_id(), candidate=candidate)
        self._write(session)
        return session

    def get(self, session_id: str) -> Optional[AssignmentSession]:
        raw_candidate, raw_sequence, raw_check = self.redis_client.mget(self._keys(session_id))
        if raw_candidate is None:
            return None
        return self._decode(session_id, raw_candidate, raw_sequence, raw_check)

    def begin_selection(self, session_id: str, tutor_id: str, tutor_name: str) -> Optional[int]:
        candidate_key, sequence_key, _ = self._keys(session_id)
        with self.redis_client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(candidate_key)
                    if not pipe.exists(candidate_key):
                        pipe.unwatch()
                        return None
                    pipe.multi()
                    pipe.incr(sequence_key)
                    self._touch(pipe, session_id)
                    sequence = int(pipe.execute()[0])
                    break
                except redis.WatchError:
                    continue
        # a newer selection may already have claimed the next number
        self.record(session_id, pending_check(sequence, tutor_id, tutor_name))
        return sequence

    def record(self, session_id: str, check: TutorCheck) -> bool:
        _, sequence_key, check_key = self._keys(session_id)
        payload = json.dumps(check.to_dict())
        with self.redis_client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(sequence_key)
                    current = pipe.get(sequence_key)
                    if current is None or int(current) != check.sequence:
                        pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.setex(check_key, self.ttl_seconds, payload)
                    self._touch(pipe, session_id)
                    pipe.execute()
                    return True
                except redis.WatchError:
                    continue

    def claim(self, session_id: str, sequence: int) -> Optional[AssignmentSession]:
        keys = self._keys(session_id)
        with self.redis_client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(*keys)
                    raw_candidate, raw_sequence, raw_check = pipe.mget(keys)
                    if raw_candidate is None or int(raw_sequence or 0) != sequence:
                        pipe.unwatch()
                        return None
                    pipe.multi()
                    pipe.delete(*keys)
                    pipe.execute()
                    return self._decode(session_id, raw_candidate, raw_sequence, raw_check)
                except redis.WatchError:
                    continue

    def restore(self, session: AssignmentSession) -> None:
        self._write(session)

    def delete(self, session_id: str) -> None:
        self.redis_client.delete(*self._keys(session_id))

    def health_check(self) -> bool:
        """Check Redis connection."""
        try:
            self.redis_client.ping()
            return True
        except redis.RedisError:
            return False


_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    global _store
    if _store is None:
        settings = get_settings()
        if settings.session_backend == "redis":
            _store = RedisSessionStore(settings.redis_url, ttl_seconds=settings.session_ttl_seconds)
        else:
            _store = MemorySessionStore(ttl_seconds=settings.session_ttl_seconds)
    return _store
