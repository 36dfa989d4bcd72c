import logging

from .repository import AttemptRepository, DuplicateAttempt
from .routes import score_store_bp

logger = logging.getLogger(__name__)


def init_score_store(app):
    """Register the score store endpoints"""
    try:
        app.register_blueprint(score_store_bp)
        logger.info("✅ Score store registered")
        return True
    except Exception as e:
        logger.error(f"❌ Score store initialization failed: {e}")
        return False


__all__ = ['AttemptRepository', 'DuplicateAttempt', 'score_store_bp', 'init_score_store']
