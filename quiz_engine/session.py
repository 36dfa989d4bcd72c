"""
Quiz Session State Machine

Drives a player through one play-through of a tier:

    selection -> loading -> active -> completed
                        \\-> error

Every successful ``start`` creates a brand-new ``QuizSession`` with a fresh
random identifier. That identifier is the idempotency key for both score
settlement and the on-chain reward claim, so it is never reused.
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from .errors import (
    GenerationError,
    InvalidAnswer,
    NetworkError,
    QuestionAlreadyAnswered,
    QuestionNotAnswered,
    ServerError,
    SessionBusy,
    SessionCompleted,
    SessionNotActive,
    SessionNotFound,
)
from .models import (
    ClaimAttempt,
    ClaimState,
    DifficultyTier,
    OPTIONS_PER_QUESTION,
    Question,
    QuizMode,
    SessionState,
    SettlementResult,
    UserContext,
    calculate_percentage,
    get_tier,
    question_count_for,
)

logger = logging.getLogger(__name__)

SESSION_TTL = timedelta(hours=1)
# passed sessions stay claimable this long after completion
CLAIM_TTL = timedelta(hours=24)


def new_session_id() -> str:
    # uuid4 draws from os.urandom
    return str(uuid.uuid4())


class QuizSession:
    """One play-through of a quiz"""

    def __init__(self, user_id: str, tier: DifficultyTier, requested_count: int,
                 questions: List[Question], mode: QuizMode = QuizMode.FULL):
        self.session_id = new_session_id()
        self.user_id = user_id
        self.tier = tier
        self.mode = mode
        self.requested_count = requested_count
        self.questions = list(questions)
        self.current_index = 0
        self.score = 0
        self.selections: List[Optional[int]] = [None] * len(self.questions)
        self.state = SessionState.ACTIVE
        self.created_at = datetime.now(timezone.utc)
        self.completed_at: Optional[datetime] = None

        self.settlement_started = False
        self.settlement: Optional[SettlementResult] = None
        self.settlement_note: Optional[str] = None

        self.claim_state = ClaimState.IDLE
        self.last_claim: Optional[ClaimAttempt] = None

        # transient per-question UI state
        self.hint: Optional[str] = None
        self.audio_url: Optional[str] = None

    @property
    def max_score(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> Optional[Question]:
        if self.current_index >= len(self.questions):
            return None
        return self.questions[self.current_index]

    def is_answered(self, index: Optional[int] = None) -> bool:
        index = self.current_index if index is None else index
        return 0 <= index < len(self.selections) and self.selections[index] is not None

    @property
    def is_last_question(self) -> bool:
        return self.current_index >= len(self.questions) - 1

    def percentage(self) -> int:
        return calculate_percentage(self.score, self.max_score)

    def passed(self) -> bool:
        return self.percentage() >= self.tier.pass_threshold

    def clear_transient(self):
        self.hint = None
        self.audio_url = None

    @property
    def awaiting_claim(self) -> bool:
        return self.state == SessionState.COMPLETED and self.passed() and self.claim_state != ClaimState.CLAIMED

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        if self.state == SessionState.COMPLETED:
            return now - (self.completed_at or self.created_at) > CLAIM_TTL
        return now - self.created_at > SESSION_TTL

    def current_question_payload(self) -> Optional[dict]:
        question = self.current_question
        if question is None:
            return None
        payload = question.to_public()
        payload.update({
            'question_number': self.current_index + 1,
            'total_questions': self.max_score,
        })
        return payload

    def summary(self) -> dict:
        return {
            'session_id': self.session_id,
            'difficulty': self.tier.name,
            'mode': self.mode.value,
            'state': self.state.value,
            'score': self.score,
            'max_score': self.max_score,
            'requested_count': self.requested_count,
            'percentage': self.percentage(),
            'pass_threshold': self.tier.pass_threshold,
            'passed': self.passed() if self.state == SessionState.COMPLETED else None,
            'settlement': {
                'accepted': self.settlement.accepted if self.settlement else False,
                'duplicate': self.settlement.duplicate if self.settlement else False,
                'message': self.settlement_note,
            },
            'claim_state': self.claim_state.value,
        }


class SessionStore:
    """Owns live sessions, keyed by session identifier.

    A user has at most one live session; registering a new one discards the
    previous session for that user unless it passed and still awaits its
    reward claim. Those are kept until ``CLAIM_TTL`` runs out.
    """

    def __init__(self):
        self._sessions: Dict[str, QuizSession] = {}
        self._by_user: Dict[str, str] = {}
        self._loading: set = set()
        self._lock = threading.RLock()

    @property
    def lock(self):
        return self._lock

    def begin_loading(self, user_id: str) -> bool:
        """Mark a start in flight for this user; False if one already is"""
        with self._lock:
            if user_id in self._loading:
                return False
            self._loading.add(user_id)
            return True

    def end_loading(self, user_id: str) -> None:
        with self._lock:
            self._loading.discard(user_id)

    def add(self, session: QuizSession) -> QuizSession:
        with self._lock:
            previous_id = self._by_user.get(session.user_id)
            previous = self._sessions.get(previous_id) if previous_id else None
            if previous is not None and previous is not session and not previous.awaiting_claim:
                del self._sessions[previous_id]
                logger.info(f"🧹 Discarded previous quiz session {previous_id} for {session.user_id}")
            self._sessions[session.session_id] = session
            self._by_user[session.user_id] = session.session_id
        return session

    def get(self, session_id: str, user_id: Optional[str] = None) -> QuizSession:
        with self._lock:
            session = self._sessions.get(str(session_id))
        if session is None or (user_id is not None and session.user_id != user_id):
            raise SessionNotFound()
        return session

    def discard(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(str(session_id), None)
            if session and self._by_user.get(session.user_id) == session.session_id:
                del self._by_user[session.user_id]

    def cleanup(self, now: Optional[datetime] = None) -> int:
        """Drop abandoned sessions older than the TTL, return count removed"""
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
        for sid in expired:
            self.discard(sid)
        return len(expired)

    def __len__(self):
        return len(self._sessions)


class QuizSessionManager:
    """Runs the state machine for one user over a ``SessionStore``"""

    def __init__(self, provider, settlement, user: UserContext, store: Optional[SessionStore] = None):
        self.provider = provider
        self.settlement = settlement
        self.user = user
        self.store = store if store is not None else SessionStore()
        self.state = SessionState.SELECTION
        self.error_message: Optional[str] = None
        self.session: Optional[QuizSession] = None

    def resume(self, session_id: str) -> QuizSession:
        """Attach to an existing session owned by this user"""
        self.session = self.store.get(session_id, user_id=self.user.user_id)
        self.state = self.session.state
        return self.session

    def select_mode(self, tier) -> dict:
        tier = get_tier(tier)
        self.state = SessionState.SELECTION
        return {
            'difficulty': tier.name,
            'quick': question_count_for(tier, QuizMode.QUICK),
            'full': question_count_for(tier, QuizMode.FULL),
            'pass_threshold': tier.pass_threshold,
        }

    async def start(self, tier, question_count: Optional[int] = None, mode='full') -> QuizSession:
        tier = get_tier(tier)
        mode = QuizMode(mode)
        count = question_count or question_count_for(tier, mode)

        if not self.store.begin_loading(self.user.user_id):
            raise SessionBusy()

        self.state = SessionState.LOADING
        self.error_message = None
        try:
            questions = await self.provider.fetch_questions(tier, count)
            if not questions:
                raise GenerationError("AI failed to generate questions.")
        except Exception as e:
            self.state = SessionState.ERROR
            self.session = None
            if isinstance(e, GenerationError):
                self.error_message = e.message
            else:
                self.error_message = "Could not fetch quiz questions. Please try again later."
            logger.error(f"❌ Failed to start {tier.name} quiz for {self.user.user_id}: {e}")
            if isinstance(e, GenerationError):
                raise
            raise GenerationError(self.error_message) from e
        finally:
            self.store.end_loading(self.user.user_id)

        if len(questions) < count:
            logger.warning(f"⚠️ Provider returned {len(questions)} of {count} questions - scoring against {len(questions)}")

        session = QuizSession(self.user.user_id, tier, count, questions[:count], mode)
        self.store.add(session)
        self.session = session
        self.state = SessionState.ACTIVE
        logger.info(f"🎯 Started {tier.name} quiz {session.session_id} for {self.user.user_id} ({session.max_score} questions)")
        return session

    def _require_active(self) -> QuizSession:
        session = self.session
        if session is None:
            raise SessionNotActive()
        if session.state == SessionState.COMPLETED:
            raise SessionCompleted()
        if session.state != SessionState.ACTIVE:
            raise SessionNotActive()
        return session

    def answer(self, option_index: int) -> bool:
        """Record the answer to the current question, return whether it was correct"""
        if isinstance(option_index, bool) or not isinstance(option_index, int) \
                or not 0 <= option_index < OPTIONS_PER_QUESTION:
            raise InvalidAnswer(f"Answer option must be between 0 and {OPTIONS_PER_QUESTION - 1}")

        with self.store.lock:
            session = self._require_active()
            if session.is_answered():
                raise QuestionAlreadyAnswered()

            session.selections[session.current_index] = option_index
            correct = option_index == session.current_question.correct_option_index
            if correct:
                session.score += 1
        return correct

    async def advance(self) -> QuizSession:
        with self.store.lock:
            session = self._require_active()
            if not session.is_answered():
                raise QuestionNotAnswered()

            session.clear_transient()
            if not session.is_last_question:
                session.current_index += 1
                return session

            session.current_index = len(session.questions)
            session.state = SessionState.COMPLETED
            session.completed_at = datetime.now(timezone.utc)
            self.state = SessionState.COMPLETED

        logger.info(f"🏁 Quiz {session.session_id} completed: {session.score}/{session.max_score} ({session.percentage()}%)")
        await self._settle(session)
        return session

    async def _settle(self, session: QuizSession) -> None:
        """Report the result once. Failures only degrade the leaderboard sync."""
        with self.store.lock:
            if session.settlement_started:
                return
            session.settlement_started = True

        try:
            result = await self.settlement.submit(
                self.user.user_id,
                session.session_id,
                session.score,
                session.max_score,
                session.tier,
            )
        except (NetworkError, ServerError) as e:
            note = f"Score not synced: {e.message}"
            if session.passed():
                note += " Your reward is still claimable."
            session.settlement_note = note
            logger.warning(f"⚠️ Settlement failed for {session.session_id}: {e}")
            return

        session.settlement = result
        session.settlement_note = result.message
        if result.duplicate:
            logger.info(f"🔁 Settlement for {session.session_id} was already recorded")

    def percentage(self) -> int:
        return self.session.percentage() if self.session else 0

    def passed(self) -> bool:
        return bool(self.session and self.session.state == SessionState.COMPLETED and self.session.passed())

    def abandon(self) -> None:
        if self.session is not None:
            self.store.discard(self.session.session_id)
            logger.info(f"🚪 Quiz {self.session.session_id} abandoned by {self.user.user_id}")
        self.session = None
        self.state = SessionState.SELECTION

    def summary(self) -> dict:
        if self.session is None:
            return {'state': self.state.value, 'error': self.error_message}
        return self.session.summary()
