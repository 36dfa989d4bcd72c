"""
Reward Claim Protocol

    idle -> claiming -> claimed
                    \\-> failed -> claiming (manual retry)

A passed session is converted into one ``claimReward`` transaction keyed by
the keccak hash of its session id. The contract pays ``msg.sender``, so the
transaction is always sent from the player's own wallet:

* ``prepare`` moves the claim to ``claiming`` and returns the unsigned
  transaction for the player's wallet to sign;
* ``finalize`` records the wallet's outcome (a tx hash or an error);
* ``claim`` runs both around a signer held by the caller.

Transaction failures never escape: they land in the ``failed`` state with a
clipped error message. Claims are never retried automatically.
"""

import logging
import re
import threading
from typing import Optional

from config import CLAIM_ERROR_MAX_LENGTH, QUICK_MODE_CLAIMS_ENABLED, get_explorer_url
from .contract_service import RewardContractService, hash_claim_id, to_hex
from .errors import AlreadyClaimed, ClaimInProgress, ClaimTransactionError, DuplicateClaim, NotEligible
from .models import ClaimAttempt, ClaimState, QuizMode, SessionState, UserContext, mask_wallet_address
from .session import QuizSession

logger = logging.getLogger(__name__)

DUPLICATE_CLAIM_MARKERS = ('already claimed', 'already processed', 'reward claimed', 'quiz already')
TX_HASH_PATTERN = re.compile(r'^0x[0-9a-fA-F]{64}$')


def truncate_error(message, limit: int = CLAIM_ERROR_MAX_LENGTH) -> str:
    text = str(message or '') or "An unknown error occurred during claim."
    if len(text) > limit:
        return text[:limit] + '...'
    return text


def is_duplicate_claim_error(error) -> bool:
    if isinstance(error, DuplicateClaim):
        return True
    text = str(error).lower()
    return any(marker in text for marker in DUPLICATE_CLAIM_MARKERS)


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a and b) and a.lower() == b.lower()


class RewardClaimService:

    def __init__(self, contract_service: RewardContractService, quick_mode_claims: Optional[bool] = None):
        self.contract_service = contract_service
        self.quick_mode_claims = QUICK_MODE_CLAIMS_ENABLED if quick_mode_claims is None else quick_mode_claims
        self._lock = threading.Lock()

    def check_eligibility(self, session: QuizSession, user: UserContext) -> None:
        if session.state != SessionState.COMPLETED:
            raise NotEligible("Finish the quiz before claiming rewards.")
        if not session.passed():
            raise NotEligible(f"You needed {session.tier.pass_threshold}% to pass.")
        if session.mode == QuizMode.QUICK and not self.quick_mode_claims:
            raise NotEligible("Quick quizzes are not eligible for rewards.")
        if not user.wallet_address:
            raise NotEligible("Wallet not connected.")

    def is_eligible(self, session: QuizSession, user: UserContext) -> bool:
        try:
            self.check_eligibility(session, user)
        except NotEligible:
            return False
        return session.claim_state in (ClaimState.IDLE, ClaimState.FAILED)

    def prepare(self, session: QuizSession, user: UserContext) -> ClaimAttempt:
        """Move the claim to ``claiming`` and build the player's claim transaction"""
        self.check_eligibility(session, user)
        with self._lock:
            if session.claim_state == ClaimState.CLAIMING:
                raise ClaimInProgress()
            if session.claim_state == ClaimState.CLAIMED:
                raise AlreadyClaimed()
            session.claim_state = ClaimState.CLAIMING

        claim_id = hash_claim_id(session.session_id)
        attempt = ClaimAttempt(state=ClaimState.CLAIMING, claim_id=to_hex(claim_id))
        session.last_claim = attempt

        logger.info(f"💰 Claiming {session.tier.name} reward ({session.percentage()}%) "
                    f"for {mask_wallet_address(user.wallet_address)} - quiz {session.session_id}")
        try:
            tx = self.contract_service.build_claim_transaction(claim_id, session.tier, session.percentage())
        except Exception as e:
            return self._fail(session, attempt, e)

        attempt.transaction = {**tx, 'from': user.wallet_address}
        return attempt

    def finalize(self, session: QuizSession, tx_hash: Optional[str] = None, error=None) -> ClaimAttempt:
        """Record what the player's wallet did with the prepared transaction"""
        if error is None and not (isinstance(tx_hash, str) and TX_HASH_PATTERN.match(tx_hash)):
            error = ClaimTransactionError(f"Invalid transaction hash: {tx_hash!r}")

        attempt = session.last_claim
        with self._lock:
            if session.claim_state == ClaimState.CLAIMED:
                raise AlreadyClaimed()
            if session.claim_state != ClaimState.CLAIMING or attempt is None:
                raise NotEligible("No claim is waiting for a wallet signature.")
            if error is not None:
                return self._fail(session, attempt, error)

            attempt.state = ClaimState.CLAIMED
            attempt.tx_hash = tx_hash
            attempt.explorer_url = get_explorer_url(tx_hash)
            attempt.transaction = None
            session.claim_state = ClaimState.CLAIMED
        logger.info(f"✅ Reward claim submitted for quiz {session.session_id} - TX: {tx_hash}")
        return attempt

    def _fail(self, session: QuizSession, attempt: ClaimAttempt, error) -> ClaimAttempt:
        duplicate = is_duplicate_claim_error(error)
        attempt.state = ClaimState.FAILED
        attempt.error = truncate_error(error)
        attempt.error_code = DuplicateClaim.code if duplicate else getattr(error, 'code', 'claim_transaction_failed')
        attempt.transaction = None
        session.claim_state = ClaimState.FAILED
        if duplicate:
            logger.warning(f"⚠️ Reward for quiz {session.session_id} was already claimed on-chain")
        else:
            logger.error(f"❌ Claim failed for quiz {session.session_id}: {error}")
        return attempt

    async def claim(self, session: QuizSession, user: UserContext) -> ClaimAttempt:
        """Prepare, sign with ``user.signer`` and finalize in one call"""
        if not user.can_sign:
            raise NotEligible("Wallet not connected.")
        signer_address = getattr(user.signer, 'address', None)
        if signer_address and not same_address(signer_address, user.wallet_address):
            raise NotEligible("The signing wallet is not the connected wallet.")

        attempt = self.prepare(session, user)
        if attempt.state == ClaimState.FAILED:
            return attempt

        try:
            tx_hash = await user.signer.send_transaction(attempt.transaction)
        except Exception as e:
            return self.finalize(session, error=e)
        except BaseException:
            # cancelled mid-send; leave the claim retryable
            self.finalize(session, error="Claim was interrupted before it finished.")
            raise
        return self.finalize(session, tx_hash=tx_hash)
