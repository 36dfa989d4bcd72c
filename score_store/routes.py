import logging
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from supabase_client import get_supabase_client, safe_supabase_operation
from quiz_engine.errors import InvalidTier
from quiz_engine.models import AttemptRecord, calculate_percentage, get_tier
from .repository import AttemptRepository, DuplicateAttempt

logger = logging.getLogger(__name__)

score_store_bp = Blueprint('score_store', __name__)


def get_repository():
    repository = current_app.config.get('ATTEMPT_REPOSITORY')
    if repository is not None:
        return repository
    client = get_supabase_client()
    if client is None:
        return None
    return AttemptRepository(client)


def _unavailable():
    return jsonify({'success': False, 'error': 'Score store not available'}), 503


def _duplicate_response():
    return jsonify({
        'success': True,
        'accepted': False,
        'duplicate': True,
        'message': 'Score for this quiz was already recorded'
    }), 409


def _parse_int(data, key):
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' must be an integer")
    return value


def parse_submission(data) -> AttemptRecord:
    if not isinstance(data, dict):
        raise ValueError("JSON body required")

    user_id = str(data.get('userId') or '').strip()
    quiz_id = str(data.get('quizId') or '').strip()
    if not user_id:
        raise ValueError("'userId' is required")
    if not quiz_id:
        raise ValueError("'quizId' is required")

    score = _parse_int(data, 'score')
    max_score = _parse_int(data, 'maxScore')
    if max_score <= 0:
        raise ValueError("'maxScore' must be positive")
    if not 0 <= score <= max_score:
        raise ValueError("'score' must be between 0 and maxScore")

    tier = get_tier(data.get('difficulty'))
    return AttemptRecord(
        user_id=user_id,
        tier=tier.key,
        session_id=quiz_id,
        score=score,
        max_score=max_score,
        percentage=calculate_percentage(score, max_score),
        created_at=datetime.now(timezone.utc),
    )


@score_store_bp.route('/scores', methods=['POST'])
def submit_score():
    """Record one attempt per quiz id; repeats answer 409"""
    try:
        record = parse_submission(request.get_json(silent=True))
    except (ValueError, InvalidTier) as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    repository = get_repository()
    if repository is None:
        return _unavailable()

    try:
        if repository.find_by_session(record.session_id):
            logger.info(f"🔁 Duplicate score submission for quiz {record.session_id}")
            return _duplicate_response()
        row = repository.insert(record)
    except DuplicateAttempt:
        logger.info(f"🔁 Concurrent duplicate score submission for quiz {record.session_id}")
        return _duplicate_response()
    except Exception as e:
        logger.error(f"❌ Error saving score for quiz {record.session_id}: {e}")
        return jsonify({'success': False, 'error': 'Failed to save score'}), 500

    return jsonify({
        'success': True,
        'accepted': True,
        'duplicate': False,
        'record': AttemptRecord.from_dict(row).to_dict()
    }), 201


@score_store_bp.route('/users/<user_id>/history', methods=['GET'])
def get_user_history(user_id):
    repository = get_repository()
    if repository is None:
        return _unavailable()

    try:
        rows = repository.history(user_id)
    except Exception as e:
        logger.error(f"❌ Failed to get quiz history for {user_id}: {e}")
        return jsonify({'success': False, 'error': 'Failed to load history'}), 500

    if not rows:
        return jsonify({'success': False, 'error': 'No history found'}), 404

    history = [AttemptRecord.from_dict(row).to_dict() for row in rows]
    return jsonify({'success': True, 'data': {'history': history}}), 200


@score_store_bp.route('/leaderboard', methods=['GET'])
def get_leaderboard():
    limit = request.args.get('limit', 10, type=int)
    limit = max(1, min(limit, 100))

    repository = get_repository()
    if repository is None:
        return _unavailable()

    leaders = safe_supabase_operation(
        lambda: repository.leaderboard(limit),
        fallback_result=[],
        operation_name="build leaderboard"
    )

    return jsonify({'success': True, 'data': {'leaderboard': leaders}}), 200
