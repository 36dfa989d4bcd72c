import logging

from .claims import RewardClaimService
from .contract_service import LocalAccountSigner, RewardContractService, hash_claim_id
from .cooldown import CooldownGate, TierLock
from .errors import QuizEngineError
from .models import TIERS, DifficultyTier, Question, UserContext, get_tier
from .question_provider import GeminiQuestionProvider, StaticQuestionProvider
from .routes import QuizEngine, quiz_bp
from .session import QuizSession, QuizSessionManager, SessionStore
from .settlement import ScoreSettlementClient

logger = logging.getLogger(__name__)


def init_quiz_engine(app, engine=None):
    """Initialize the quiz engine with a Flask app"""
    try:
        logger.info("🎓 Initializing quiz engine...")
        app.extensions['quiz_engine'] = engine or QuizEngine()
        app.register_blueprint(quiz_bp)

        logger.info("✅ Quiz engine initialized successfully")
        logger.info("📚 Available endpoints:")
        logger.info("   GET  /quiz/cooldowns - Per-tier cooldowns")
        logger.info("   POST /quiz/start - Start new quiz")
        logger.info("   POST /quiz/answer - Answer current question")
        logger.info("   POST /quiz/advance - Next question or results")
        logger.info("   POST /quiz/claim - Claim on-chain reward")
        logger.info("   POST /quiz/claim/confirm - Record the wallet's claim transaction")
        return True

    except Exception as e:
        logger.error(f"❌ Failed to initialize quiz engine: {e}")
        return False


__all__ = [
    'CooldownGate',
    'DifficultyTier',
    'GeminiQuestionProvider',
    'LocalAccountSigner',
    'Question',
    'QuizEngine',
    'QuizEngineError',
    'QuizSession',
    'QuizSessionManager',
    'RewardClaimService',
    'RewardContractService',
    'ScoreSettlementClient',
    'SessionStore',
    'StaticQuestionProvider',
    'TIERS',
    'TierLock',
    'UserContext',
    'get_tier',
    'hash_claim_id',
    'init_quiz_engine',
    'quiz_bp',
]
