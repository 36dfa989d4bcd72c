import asyncio

import pytest
from web3 import Web3

from conftest import TX_HASH, WALLET, FakeSigner, play
from quiz_engine.claims import RewardClaimService, is_duplicate_claim_error, truncate_error
from quiz_engine.errors import AlreadyClaimed, ClaimInProgress, ClaimTransactionError, NotEligible
from quiz_engine.models import ClaimState, UserContext
from quiz_engine.contract_service import LocalAccountSigner, RewardContractService


def finished(manager, tier='beginner', count=10, correct=10, mode='full'):
    asyncio.run(manager.start(tier, question_count=count, mode=mode))
    return play(manager, correct=correct)


def test_successful_claim(manager, claims, user):
    session = finished(manager)
    attempt = asyncio.run(claims.claim(session, user))

    assert attempt.state == ClaimState.CLAIMED
    assert attempt.tx_hash == TX_HASH
    assert attempt.explorer_url == f"https://basescan.org/tx/{TX_HASH}"
    assert attempt.claim_id == '0x' + bytes(Web3.keccak(text=session.session_id)).hex()
    assert session.claim_state == ClaimState.CLAIMED


def test_claim_transaction_targets_contract(manager, claims, user, contract_service):
    session = finished(manager, tier='advanced', count=5, correct=4)
    asyncio.run(claims.claim(session, user))

    tx = user.signer.sent[0]
    assert tx['to'] == contract_service.contract_address
    assert tx['chainId'] == 8453
    _, tier_id, percentage, denominator = Web3().codec.decode(
        ['bytes32', 'uint256', 'uint256', 'uint256'], bytes.fromhex(tx['data'][10:]))
    assert (tier_id, percentage, denominator) == (2, 80, 100)


def test_failed_claim_can_be_retried(manager, claims):
    long_error = ClaimTransactionError("execution reverted: " + "x" * 200)
    user = UserContext(user_id='player-1', wallet_address='0x' + 'ab' * 20,
                       signer=FakeSigner(long_error, TX_HASH))
    session = finished(manager)

    first = asyncio.run(claims.claim(session, user))
    assert first.state == ClaimState.FAILED
    assert len(first.error) == 103
    assert first.error.endswith('...')
    assert first.error_code == 'claim_transaction_failed'
    assert session.claim_state == ClaimState.FAILED

    second = asyncio.run(claims.claim(session, user))
    assert second.state == ClaimState.CLAIMED
    assert len(user.signer.sent) == 2


def test_user_rejection_is_captured(manager, claims):
    user = UserContext(user_id='player-1', wallet_address=WALLET,
                       signer=FakeSigner(RuntimeError("User rejected the request.")))
    session = finished(manager)
    attempt = asyncio.run(claims.claim(session, user))
    assert attempt.state == ClaimState.FAILED
    assert attempt.error == "User rejected the request."


def test_duplicate_claim_is_flagged(manager, claims):
    user = UserContext(user_id='player-1', wallet_address=WALLET,
                       signer=FakeSigner(ValueError("execution reverted: Reward already claimed")))
    session = finished(manager)
    attempt = asyncio.run(claims.claim(session, user))
    assert attempt.error_code == 'duplicate_claim'


def test_claimed_session_cannot_claim_again(manager, claims, user):
    session = finished(manager)
    asyncio.run(claims.claim(session, user))
    with pytest.raises(AlreadyClaimed):
        asyncio.run(claims.claim(session, user))
    assert len(user.signer.sent) == 1


def test_claim_in_progress_is_rejected(manager, claims, user):
    session = finished(manager)
    session.claim_state = ClaimState.CLAIMING
    with pytest.raises(ClaimInProgress):
        asyncio.run(claims.claim(session, user))


def test_failed_quiz_is_not_eligible(manager, claims, user):
    session = finished(manager, correct=6)
    with pytest.raises(NotEligible):
        asyncio.run(claims.claim(session, user))
    assert not claims.is_eligible(session, user)
    assert session.claim_state == ClaimState.IDLE


def test_unfinished_quiz_is_not_eligible(manager, claims, user):
    asyncio.run(manager.start('beginner', question_count=3))
    with pytest.raises(NotEligible):
        asyncio.run(claims.claim(manager.session, user))


def test_wallet_required(manager, claims):
    session = finished(manager)
    with pytest.raises(NotEligible):
        asyncio.run(claims.claim(session, UserContext(user_id='player-1')))


def test_quick_mode_claims_can_be_disabled(manager, contract_service, user):
    claims = RewardClaimService(contract_service, quick_mode_claims=False)
    session = finished(manager, mode='quick', count=None)
    assert session.max_score == 10
    assert not claims.is_eligible(session, user)
    with pytest.raises(NotEligible):
        asyncio.run(claims.claim(session, user))


def test_unconfigured_contract_fails_the_claim(manager, user):
    claims = RewardClaimService(RewardContractService(w3=Web3(), contract_address=None), quick_mode_claims=True)
    session = finished(manager)
    attempt = asyncio.run(claims.claim(session, user))
    assert attempt.state == ClaimState.FAILED
    assert attempt.error_code == 'contract_not_configured'
    assert user.signer.sent == []


def test_truncate_error():
    assert truncate_error("short") == "short"
    assert truncate_error("") == "An unknown error occurred during claim."
    assert truncate_error("y" * 150) == "y" * 100 + "..."


def test_is_duplicate_claim_error():
    assert is_duplicate_claim_error(Exception("Quiz already claimed"))
    assert not is_duplicate_claim_error(Exception("insufficient funds"))


def test_claim_is_sent_from_the_players_wallet(manager, claims, user):
    session = finished(manager)
    asyncio.run(claims.claim(session, user))
    assert user.signer.sent[0]['from'] == WALLET


def test_signer_for_another_wallet_is_refused(manager, claims):
    other = LocalAccountSigner('0x' + '01' * 32, w3=Web3())
    user = UserContext(user_id='player-1', wallet_address=WALLET, signer=other)
    session = finished(manager)
    with pytest.raises(NotEligible):
        asyncio.run(claims.claim(session, user))
    assert session.claim_state == ClaimState.IDLE


def test_prepare_then_finalize(manager, claims):
    user = UserContext(user_id='player-1', wallet_address=WALLET)
    session = finished(manager)

    prepared = claims.prepare(session, user)
    assert prepared.state == ClaimState.CLAIMING
    assert prepared.transaction['from'] == WALLET
    assert prepared.transaction['data'].startswith('0x')
    with pytest.raises(ClaimInProgress):
        claims.prepare(session, user)

    done = claims.finalize(session, tx_hash=TX_HASH)
    assert done.state == ClaimState.CLAIMED
    assert done.transaction is None
    assert session.claim_state == ClaimState.CLAIMED
    with pytest.raises(AlreadyClaimed):
        claims.finalize(session, tx_hash=TX_HASH)


def test_finalize_with_wallet_error_allows_retry(manager, claims):
    user = UserContext(user_id='player-1', wallet_address=WALLET)
    session = finished(manager)
    claims.prepare(session, user)

    failed = claims.finalize(session, error="User rejected the request.")
    assert failed.state == ClaimState.FAILED
    assert failed.error == "User rejected the request."
    assert claims.prepare(session, user).state == ClaimState.CLAIMING


def test_finalize_rejects_malformed_hash(manager, claims):
    user = UserContext(user_id='player-1', wallet_address=WALLET)
    session = finished(manager)
    claims.prepare(session, user)
    attempt = claims.finalize(session, tx_hash='0x1234')
    assert attempt.state == ClaimState.FAILED
    assert attempt.error_code == 'claim_transaction_failed'


def test_finalize_needs_a_prepared_claim(manager, claims):
    session = finished(manager)
    with pytest.raises(NotEligible):
        claims.finalize(session, tx_hash=TX_HASH)


def test_cancelled_claim_can_be_retried(manager, claims):
    session = finished(manager)
    cancelled = UserContext(user_id='player-1', wallet_address=WALLET, signer=FakeSigner(asyncio.CancelledError()))
    with pytest.raises(asyncio.CancelledError):
        asyncio.run(claims.claim(session, cancelled))
    assert session.claim_state == ClaimState.FAILED

    retry = UserContext(user_id='player-1', wallet_address=WALLET, signer=FakeSigner())
    assert asyncio.run(claims.claim(session, retry)).state == ClaimState.CLAIMED
