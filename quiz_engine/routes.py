import asyncio
import logging
from functools import wraps

from flask import Blueprint, current_app, jsonify, request, session

from .assist import HintService, SpeechService
from .claims import RewardClaimService
from .contract_service import RewardContractService
from .cooldown import CooldownGate
from .errors import (
    AssistError,
    ClaimError,
    GenerationError,
    InvalidTier,
    QuizEngineError,
    SessionBusy,
    SessionNotFound,
)
from .models import TIERS, ClaimState, SessionState, UserContext, get_tier, mask_wallet_address
from .question_provider import GeminiQuestionProvider
from .session import QuizSessionManager, SessionStore
from .settlement import ScoreSettlementClient

logger = logging.getLogger(__name__)

quiz_bp = Blueprint('quiz', __name__, url_prefix='/quiz')

ERROR_STATUS = {
    InvalidTier: 400,
    SessionNotFound: 404,
    SessionBusy: 409,
    GenerationError: 502,
}


def browser_wallet_signer(user_id, wallet_address):
    """The player signs in their own wallet, so the server holds no signer"""
    return None


class QuizEngine:
    """Services shared by every request"""

    def __init__(self, provider=None, settlement=None, gate=None, store=None, contract_service=None,
                 claims=None, hints=None, speech=None, signer_factory=None):
        self.provider = provider or GeminiQuestionProvider()
        self.settlement = settlement or ScoreSettlementClient()
        self.gate = gate or CooldownGate()
        self.store = store if store is not None else SessionStore()
        self.contract_service = contract_service or RewardContractService()
        self.claims = claims or RewardClaimService(self.contract_service)
        self.hints = hints or HintService()
        self.speech = speech or SpeechService()
        self.signer_factory = signer_factory or browser_wallet_signer

    def manager_for(self, user: UserContext) -> QuizSessionManager:
        return QuizSessionManager(self.provider, self.settlement, user, store=self.store)


def get_engine() -> QuizEngine:
    return current_app.extensions['quiz_engine']


def run_async(coro):
    """Run a coroutine to completion from a sync Flask view"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def error_response(error: QuizEngineError):
    status = 400
    for error_type, error_status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            status = error_status
            break
    if isinstance(error, ClaimError) and status == 400:
        status = 409 if error.code in ('claim_in_progress', 'already_claimed') else 403
    return jsonify({'success': False, 'error': error.message, 'error_code': error.code}), status


def quiz_login_required(f):
    """Resolve the player from the Flask session into a UserContext"""
    @wraps(f)
    def decorated(*args, **kwargs):
        wallet_address = session.get('wallet')
        user_id = session.get('user_id') or wallet_address

        if not user_id:
            logger.warning("❌ No user in session")
            return jsonify({
                'success': False,
                'error': 'Please connect your wallet to play.',
                'auth_required': True
            }), 401

        engine = get_engine()
        user = UserContext(
            user_id=str(user_id),
            wallet_address=wallet_address,
            signer=engine.signer_factory(user_id, wallet_address),
        )
        return f(user, *args, **kwargs)
    return decorated


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _resume(engine: QuizEngine, user: UserContext, data) -> QuizSessionManager:
    manager = engine.manager_for(user)
    manager.resume(str(data.get('session_id') or ''))
    return manager


@quiz_bp.route('/tiers', methods=['GET'])
def list_tiers():
    return jsonify({
        'success': True,
        'tiers': [
            {
                'name': tier.name,
                'id': tier.contract_id,
                'question_count': tier.question_count,
                'pass_threshold': tier.pass_threshold,
                'topic': tier.topic,
                'description': tier.description,
            }
            for tier in TIERS
        ]
    })


@quiz_bp.route('/cooldowns', methods=['GET'])
@quiz_login_required
def get_cooldowns(user):
    engine = get_engine()
    locks = run_async(engine.gate.check(engine.settlement, user.user_id))
    return jsonify({
        'success': True,
        'cooldowns': {key: lock.to_dict() for key, lock in locks.items()}
    })


@quiz_bp.route('/modes', methods=['POST'])
@quiz_login_required
def select_mode(user):
    data = _json_body()
    try:
        options = get_engine().manager_for(user).select_mode(data.get('difficulty'))
    except QuizEngineError as e:
        return error_response(e)
    return jsonify({'success': True, 'modes': options})


@quiz_bp.route('/start', methods=['POST'])
@quiz_login_required
def start_quiz(user):
    """Start a new quiz session for the chosen tier and mode"""
    data = _json_body()
    engine = get_engine()

    try:
        tier = get_tier(data.get('difficulty'))
    except InvalidTier as e:
        return error_response(e)

    locks = run_async(engine.gate.check(engine.settlement, user.user_id))
    if engine.gate.is_locked(locks, tier):
        lock = locks[tier.key]
        logger.info(f"🕐 {user.user_id} tried {tier.name} during cooldown")
        return jsonify({
            'success': False,
            'blocked': True,
            'error': f"{tier.name} is on cooldown. Try again in {lock.remaining_clock()}.",
            'error_code': 'cooldown_active',
            'cooldown': lock.to_dict(),
        }), 403

    expired = engine.store.cleanup()
    if expired:
        logger.info(f"🧹 Dropped {expired} abandoned quiz sessions")
    manager = engine.manager_for(user)
    try:
        quiz = run_async(manager.start(tier, mode=data.get('mode') or 'full'))
    except ValueError:
        return jsonify({'success': False, 'error': 'Unknown quiz mode', 'error_code': 'invalid_mode'}), 400
    except QuizEngineError as e:
        return error_response(e)

    return jsonify({
        'success': True,
        'quiz': quiz.summary(),
        'question': quiz.current_question_payload(),
    })


@quiz_bp.route('/answer', methods=['POST'])
@quiz_login_required
def answer_question(user):
    data = _json_body()
    engine = get_engine()
    try:
        manager = _resume(engine, user, data)
        correct = manager.answer(data.get('option_index'))
    except QuizEngineError as e:
        return error_response(e)

    quiz = manager.session
    return jsonify({
        'success': True,
        'correct': correct,
        'correct_option_index': quiz.questions[quiz.current_index].correct_option_index,
        'score': quiz.score,
        'is_last_question': quiz.is_last_question,
    })


@quiz_bp.route('/advance', methods=['POST'])
@quiz_login_required
def advance_question(user):
    data = _json_body()
    engine = get_engine()
    try:
        manager = _resume(engine, user, data)
        quiz = run_async(manager.advance())
    except QuizEngineError as e:
        return error_response(e)

    if quiz.state == SessionState.COMPLETED:
        summary = quiz.summary()
        summary['claim_eligible'] = engine.claims.is_eligible(quiz, user)
        return jsonify({'success': True, 'completed': True, 'quiz': summary})

    return jsonify({
        'success': True,
        'completed': False,
        'question': quiz.current_question_payload(),
        'score': quiz.score,
    })


@quiz_bp.route('/abandon', methods=['POST'])
@quiz_login_required
def abandon_quiz(user):
    data = _json_body()
    try:
        manager = _resume(get_engine(), user, data)
    except QuizEngineError as e:
        return error_response(e)
    manager.abandon()
    return jsonify({'success': True})


@quiz_bp.route('/claim', methods=['POST'])
@quiz_login_required
def claim_reward(user):
    """Claim the on-chain reward for a passed session"""
    data = _json_body()
    engine = get_engine()
    try:
        manager = _resume(engine, user, data)
        if user.can_sign:
            attempt = run_async(engine.claims.claim(manager.session, user))
        else:
            attempt = engine.claims.prepare(manager.session, user)
    except QuizEngineError as e:
        return error_response(e)

    result = attempt.to_dict()
    if attempt.state == ClaimState.CLAIMING:
        return jsonify({'success': True, 'requires_signature': True, **result})
    if attempt.error:
        logger.warning(f"⚠️ Claim for {mask_wallet_address(user.wallet_address)} failed: {attempt.error}")
        return jsonify({'success': False, 'toast': attempt.error, **result})
    return jsonify({'success': True, **result})


@quiz_bp.route('/claim/confirm', methods=['POST'])
@quiz_login_required
def confirm_claim(user):
    """Record the tx hash (or wallet error) for a prepared claim"""
    data = _json_body()
    engine = get_engine()
    try:
        manager = _resume(engine, user, data)
        attempt = engine.claims.finalize(manager.session, tx_hash=data.get('tx_hash'), error=data.get('error'))
    except QuizEngineError as e:
        return error_response(e)

    result = attempt.to_dict()
    if attempt.error:
        logger.warning(f"⚠️ Claim for {mask_wallet_address(user.wallet_address)} failed: {attempt.error}")
        return jsonify({'success': False, 'toast': attempt.error, **result})
    return jsonify({'success': True, **result})


@quiz_bp.route('/hint', methods=['POST'])
@quiz_login_required
def get_hint(user):
    data = _json_body()
    engine = get_engine()
    try:
        manager = _resume(engine, user, data)
    except QuizEngineError as e:
        return error_response(e)

    quiz = manager.session
    if quiz.current_question is None:
        return jsonify({'success': False, 'toast': 'No question to explain.'})
    try:
        quiz.hint = run_async(engine.hints.explain_question(quiz.current_question))
    except AssistError as e:
        return jsonify({'success': False, 'toast': e.message})
    return jsonify({'success': True, 'hint': quiz.hint})


@quiz_bp.route('/speech', methods=['POST'])
@quiz_login_required
def get_speech(user):
    data = _json_body()
    try:
        audio_url = run_async(get_engine().speech.synthesize_speech(str(data.get('text') or '')))
    except AssistError as e:
        return jsonify({'success': False, 'toast': e.message})
    return jsonify({'success': True, 'audio_url': audio_url})


@quiz_bp.route('/token-info', methods=['GET'])
@quiz_login_required
def get_token_info(user):
    return jsonify({'success': True, 'token': get_engine().contract_service.get_token_info(user.wallet_address)})


@quiz_bp.route('/reward-pool', methods=['GET'])
def get_reward_pool():
    return jsonify({'success': True, 'pool': get_engine().contract_service.get_reward_pool()})
