from datetime import datetime, timedelta, timezone

from conftest import TX_HASH, WALLET, FakeHints
from quiz_engine.errors import NetworkError
from quiz_engine.question_provider import StaticQuestionProvider
from quiz_engine.routes import browser_wallet_signer


def start(client, difficulty='Beginner', mode='quick'):
    return client.post('/quiz/start', json={'difficulty': difficulty, 'mode': mode})


def finish(client, session_id, total, correct, right_index=0):
    body = None
    for i in range(total):
        choice = right_index if i < correct else (right_index + 1) % 4
        client.post('/quiz/answer', json={'session_id': session_id, 'option_index': choice})
        body = client.post('/quiz/advance', json={'session_id': session_id}).get_json()
    return body


def test_requires_login(client):
    resp = client.post('/quiz/start', json={'difficulty': 'Beginner'})
    assert resp.status_code == 401
    assert resp.get_json()['auth_required'] is True


def test_tiers_are_public(client):
    tiers = client.get('/quiz/tiers').get_json()['tiers']
    assert [t['name'] for t in tiers][0] == 'Beginner'
    assert tiers[-1]['pass_threshold'] == 90


def test_start_hides_answers(logged_in):
    resp = start(logged_in)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['quiz']['max_score'] == 10
    assert body['question']['question_number'] == 1
    assert 'correctAnswerIndex' not in body['question']
    assert 'correct_option_index' not in body['question']


def test_full_quiz_then_claim(logged_in, settlement):
    session_id = start(logged_in).get_json()['quiz']['session_id']
    summary = finish(logged_in, session_id, total=10, correct=8)

    assert summary['completed'] is True
    assert summary['quiz']['percentage'] == 80
    assert summary['quiz']['passed'] is True
    assert summary['quiz']['claim_eligible'] is True
    assert settlement.submissions[0]['session_id'] == session_id

    claim = logged_in.post('/quiz/claim', json={'session_id': session_id}).get_json()
    assert claim['success'] is True
    assert claim['claim_state'] == 'claimed'
    assert claim['explorer_url'] == f"https://basescan.org/tx/{TX_HASH}"

    again = logged_in.post('/quiz/claim', json={'session_id': session_id})
    assert again.status_code == 409
    assert again.get_json()['error_code'] == 'already_claimed'


def login(client, user_id, wallet):
    with client.session_transaction() as sess:
        sess['user_id'] = user_id
        sess['wallet'] = wallet


def test_claim_is_signed_by_each_players_wallet(client, engine):
    engine.signer_factory = browser_wallet_signer
    wallets = {'alice': '0x' + 'aa' * 20, 'bob': '0x' + 'bb' * 20}

    for user_id, wallet in wallets.items():
        login(client, user_id, wallet)
        session_id = start(client).get_json()['quiz']['session_id']
        finish(client, session_id, total=10, correct=10)

        prepared = client.post('/quiz/claim', json={'session_id': session_id}).get_json()
        assert prepared['requires_signature'] is True
        assert prepared['claim_state'] == 'claiming'
        assert prepared['transaction']['from'] == wallet
        assert prepared['transaction']['to'] == engine.contract_service.contract_address

        confirmed = client.post('/quiz/claim/confirm', json={'session_id': session_id, 'tx_hash': TX_HASH})
        assert confirmed.get_json()['claim_state'] == 'claimed'


def test_wallet_rejection_is_reported_and_retryable(logged_in, engine):
    engine.signer_factory = browser_wallet_signer
    session_id = start(logged_in).get_json()['quiz']['session_id']
    finish(logged_in, session_id, total=10, correct=10)

    logged_in.post('/quiz/claim', json={'session_id': session_id})
    rejected = logged_in.post('/quiz/claim/confirm',
                              json={'session_id': session_id, 'error': 'User rejected the request.'})
    body = rejected.get_json()
    assert body['success'] is False
    assert body['toast'] == 'User rejected the request.'
    assert body['claim_state'] == 'failed'

    retry = logged_in.post('/quiz/claim', json={'session_id': session_id}).get_json()
    assert retry['transaction']['from'] == WALLET


def test_claim_without_wallet_is_not_eligible(client, engine):
    engine.signer_factory = browser_wallet_signer
    with client.session_transaction() as sess:
        sess['user_id'] = 'guest'
    session_id = start(client).get_json()['quiz']['session_id']
    summary = finish(client, session_id, total=10, correct=10)
    assert summary['quiz']['claim_eligible'] is False

    resp = client.post('/quiz/claim', json={'session_id': session_id})
    assert resp.status_code == 403
    assert resp.get_json()['error_code'] == 'not_eligible'


def test_passed_quiz_stays_claimable_after_next_start(logged_in):
    session_id = start(logged_in).get_json()['quiz']['session_id']
    finish(logged_in, session_id, total=10, correct=10)
    assert start(logged_in, difficulty='Master').status_code == 200

    claim = logged_in.post('/quiz/claim', json={'session_id': session_id}).get_json()
    assert claim['success'] is True
    assert claim['claim_state'] == 'claimed'


def test_failed_quiz_cannot_claim(logged_in):
    session_id = start(logged_in).get_json()['quiz']['session_id']
    summary = finish(logged_in, session_id, total=10, correct=5)
    assert summary['quiz']['passed'] is False

    resp = logged_in.post('/quiz/claim', json={'session_id': session_id})
    assert resp.status_code == 403
    assert resp.get_json()['error_code'] == 'not_eligible'


def test_answer_twice_conflicts(logged_in):
    session_id = start(logged_in).get_json()['quiz']['session_id']
    first = logged_in.post('/quiz/answer', json={'session_id': session_id, 'option_index': 0})
    assert first.get_json()['correct'] is True
    second = logged_in.post('/quiz/answer', json={'session_id': session_id, 'option_index': 1})
    assert second.status_code == 400
    assert second.get_json()['error_code'] == 'already_answered'


def test_unknown_session(logged_in):
    resp = logged_in.post('/quiz/answer', json={'session_id': 'missing', 'option_index': 0})
    assert resp.status_code == 404
    assert resp.get_json()['error_code'] == 'session_not_found'


def test_invalid_difficulty(logged_in):
    resp = start(logged_in, difficulty='Legendary')
    assert resp.status_code == 400
    assert resp.get_json()['error_code'] == 'invalid_tier'


def test_locked_tier_is_rejected(logged_in, settlement):
    recent = datetime.now(timezone.utc) - timedelta(hours=1)
    settlement.history = [{'difficulty': 'beginner', 'createdAt': recent.isoformat()}]

    resp = start(logged_in)
    assert resp.status_code == 403
    assert resp.get_json()['error_code'] == 'cooldown_active'
    assert start(logged_in, difficulty='Master').status_code == 200


def test_cooldowns_fail_open(logged_in, settlement):
    settlement.history_error = NetworkError()
    cooldowns = logged_in.get('/quiz/cooldowns').get_json()['cooldowns']
    assert set(cooldowns) == {'beginner', 'intermediate', 'advanced', 'expert', 'master'}
    assert not any(c['locked'] for c in cooldowns.values())


def test_generation_failure_is_bad_gateway(logged_in, engine):
    engine.provider = StaticQuestionProvider({})
    resp = start(logged_in)
    assert resp.status_code == 502
    assert resp.get_json()['error_code'] == 'generation_failed'


def test_unknown_mode(logged_in):
    assert start(logged_in, mode='turbo').status_code == 400


def test_hint_and_speech(logged_in, engine):
    session_id = start(logged_in).get_json()['quiz']['session_id']
    hint = logged_in.post('/quiz/hint', json={'session_id': session_id}).get_json()
    assert hint['success'] is True
    assert engine.store.get(session_id).hint == hint['hint']

    speech = logged_in.post('/quiz/speech', json={'text': hint['hint']}).get_json()
    assert speech['audio_url'].startswith('data:audio/wav;base64,')


def test_assist_failures_are_toasts(logged_in, engine):
    engine.hints = FakeHints(None)
    session_id = start(logged_in).get_json()['quiz']['session_id']

    resp = logged_in.post('/quiz/hint', json={'session_id': session_id})
    assert resp.status_code == 200
    assert resp.get_json() == {'success': False, 'toast': 'Could not get a hint for this question.'}

    resp = logged_in.post('/quiz/speech', json={'text': ''})
    assert resp.status_code == 200
    assert resp.get_json()['toast'] == 'Nothing to read aloud.'


def test_modes_for_tier(logged_in):
    modes = logged_in.post('/quiz/modes', json={'difficulty': 'Advanced'}).get_json()['modes']
    assert modes == {'difficulty': 'Advanced', 'quick': 10, 'full': 30, 'pass_threshold': 80}


def test_reward_pool(client, engine):
    engine.contract_service.get_reward_pool = lambda: {'balance': '0', 'symbol': 'Tokens'}
    assert client.get('/quiz/reward-pool').get_json()['pool']['symbol'] == 'Tokens'


def test_health_and_connect_wallet(client):
    assert client.get('/').get_json()['status'] == 'healthy'
    resp = client.post('/connect-wallet', json={'wallet': '0x' + 'ab' * 20})
    assert resp.get_json()['success'] is True
    assert client.post('/connect-wallet', json={'wallet': 'nope'}).status_code == 400
