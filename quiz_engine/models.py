import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from config import DIFFICULTY_CONFIG, QUICK_QUESTION_COUNT
from .errors import GenerationError, InvalidTier

logger = logging.getLogger(__name__)

OPTIONS_PER_QUESTION = 4


class SessionState(str, Enum):
    SELECTION = 'selection'
    LOADING = 'loading'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    ERROR = 'error'


class ClaimState(str, Enum):
    IDLE = 'idle'
    CLAIMING = 'claiming'
    CLAIMED = 'claimed'
    FAILED = 'failed'


class QuizMode(str, Enum):
    QUICK = 'quick'
    FULL = 'full'


@dataclass(frozen=True)
class DifficultyTier:
    name: str
    contract_id: int
    question_count: int
    pass_threshold: int
    topic: str
    description: str = ''

    @property
    def key(self) -> str:
        return self.name.lower()


TIERS: Tuple[DifficultyTier, ...] = tuple(
    DifficultyTier(
        name=key.capitalize(),
        contract_id=cfg['id'],
        question_count=cfg['question_count'],
        pass_threshold=cfg['pass_percentage'],
        topic=cfg['topic'],
        description=cfg.get('description', ''),
    )
    for key, cfg in sorted(DIFFICULTY_CONFIG.items(), key=lambda item: item[1]['id'])
)

_TIERS_BY_KEY = {tier.key: tier for tier in TIERS}


def get_tier(name) -> DifficultyTier:
    """Look up a tier by name, case-insensitively"""
    if isinstance(name, DifficultyTier):
        return name
    tier = _TIERS_BY_KEY.get(str(name or '').strip().lower())
    if tier is None:
        raise InvalidTier(f"Invalid difficulty level: {name}")
    return tier


def question_count_for(tier, mode='full') -> int:
    tier = get_tier(tier)
    if QuizMode(mode) == QuizMode.QUICK:
        return min(QUICK_QUESTION_COUNT, tier.question_count)
    return tier.question_count


@dataclass(frozen=True)
class Question:
    prompt: str
    options: Tuple[str, ...]
    correct_option_index: int

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'Question':
        """Build a question from generator output, rejecting malformed entries"""
        if not isinstance(payload, dict):
            raise GenerationError("Question payload must be an object")

        prompt = str(payload.get('question') or payload.get('prompt') or '').strip()
        options = payload.get('answers', payload.get('options'))
        index = payload.get('correctAnswerIndex', payload.get('correct_option_index'))

        if not prompt:
            raise GenerationError("Question text is empty")
        if not isinstance(options, (list, tuple)) or len(options) != OPTIONS_PER_QUESTION:
            raise GenerationError(f"Question must have exactly {OPTIONS_PER_QUESTION} answers")
        options = tuple(str(o).strip() for o in options)
        if not all(options):
            raise GenerationError("Question has an empty answer")
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < OPTIONS_PER_QUESTION:
            raise GenerationError(f"Invalid correct answer index: {index!r}")

        return cls(prompt=prompt, options=options, correct_option_index=index)

    def to_public(self) -> Dict[str, Any]:
        """Question as shown to the player (without the answer)"""
        return {'question': self.prompt, 'answers': list(self.options)}


@dataclass
class UserContext:
    """Identity and signing capability of the current player"""
    user_id: str
    wallet_address: Optional[str] = None
    signer: Any = None

    @property
    def can_sign(self) -> bool:
        return self.signer is not None


FRACTION_PATTERN = re.compile(r'\.(\d+)')


def parse_timestamp(value) -> datetime:
    """Parse a stored timestamp as an aware UTC datetime.

    Accepts datetimes, epoch milliseconds, and ISO strings with ``Z``,
    an explicit offset, or no zone at all (treated as UTC).
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        # fromisoformat before 3.11 only takes 3 or 6 fractional digits
        text = FRACTION_PATTERN.sub(lambda m: '.' + (m.group(1) + '000000')[:6], text, count=1)
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported timestamp: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def calculate_percentage(score: int, total: int) -> int:
    if total <= 0:
        return 0
    # round half up, matching Math.round on the client
    return int(score * 100 / total + 0.5)


@dataclass(frozen=True)
class AttemptRecord:
    user_id: str
    tier: str
    session_id: str
    score: int
    max_score: int
    percentage: int
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AttemptRecord':
        """Accepts both the camelCase wire format and snake_case table rows"""
        score = int(data.get('score', 0))
        max_score = int(data.get('maxScore', data.get('max_score', 0)))
        percentage = data.get('percentage')
        if percentage is None:
            percentage = calculate_percentage(score, max_score)
        return cls(
            user_id=str(data.get('userId', data.get('user_id', ''))),
            tier=str(data.get('difficulty', data.get('tier', ''))).lower(),
            session_id=str(data.get('quizId', data.get('session_id', ''))),
            score=score,
            max_score=max_score,
            percentage=int(percentage),
            created_at=parse_timestamp(data.get('createdAt', data.get('created_at'))),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'userId': self.user_id,
            'difficulty': self.tier,
            'quizId': self.session_id,
            'score': self.score,
            'maxScore': self.max_score,
            'percentage': self.percentage,
            'createdAt': format_timestamp(self.created_at),
        }

    def to_row(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'tier': self.tier,
            'session_id': self.session_id,
            'score': self.score,
            'max_score': self.max_score,
            'percentage': self.percentage,
            'created_at': format_timestamp(self.created_at),
        }


@dataclass
class SettlementResult:
    accepted: bool
    duplicate: bool = False
    message: str = ''


@dataclass
class ClaimAttempt:
    state: ClaimState
    claim_id: Optional[str] = None
    tx_hash: Optional[str] = None
    explorer_url: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    # unsigned claimReward call for the player's wallet
    transaction: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'claim_state': self.state.value,
            'claim_id': self.claim_id,
            'tx_hash': self.tx_hash,
            'explorer_url': self.explorer_url,
            'error': self.error,
            'error_code': self.error_code,
            'transaction': self.transaction,
        }


def mask_wallet_address(wallet_address: Optional[str]) -> Optional[str]:
    """Mask wallet address for logging"""
    if not wallet_address or not wallet_address.startswith('0x') or len(wallet_address) < 10:
        return wallet_address
    return wallet_address[:6] + "..." + wallet_address[-4:]


def questions_from_payloads(payloads: List[Dict[str, Any]]) -> List[Question]:
    questions = []
    for i, payload in enumerate(payloads or []):
        try:
            questions.append(Question.from_payload(payload))
        except GenerationError as e:
            logger.warning(f"⚠️ Skipping malformed question {i + 1}: {e}")
    if not questions:
        raise GenerationError("AI failed to generate questions.")
    return questions
