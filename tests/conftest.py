import asyncio
from types import SimpleNamespace

import pytest
from web3 import Web3

from main import create_app
from quiz_engine.claims import RewardClaimService
from quiz_engine.contract_service import RewardContractService
from quiz_engine.cooldown import CooldownGate
from quiz_engine.errors import AssistError
from quiz_engine.models import SettlementResult, UserContext
from quiz_engine.question_provider import StaticQuestionProvider
from quiz_engine.routes import QuizEngine
from quiz_engine.session import QuizSessionManager, SessionStore
from score_store.repository import AttemptRepository

CONTRACT_ADDRESS = Web3.to_checksum_address('0x' + '11' * 20)
WALLET = Web3.to_checksum_address('0x' + 'ab' * 20)
TX_HASH = '0x' + '12' * 32


def make_bank(count, correct_index=0, prefix='Q'):
    return [
        {
            'question': f"{prefix}{i + 1}: What does a block contain?",
            'answers': ['Transactions', 'Emails', 'Images', 'Nothing'],
            'correctAnswerIndex': correct_index,
        }
        for i in range(count)
    ]


def play(manager, correct):
    """Answer every question, the first ``correct`` of them correctly"""
    session = manager.session
    for i in range(session.max_score):
        right = session.questions[i].correct_option_index
        manager.answer(right if i < correct else (right + 1) % 4)
        asyncio.run(manager.advance())
    return session


class FakeSettlement:
    def __init__(self, history=None, error=None, history_error=None, result=None):
        self.history = history or []
        self.error = error
        self.history_error = history_error
        self.result = result
        self.submissions = []

    async def submit(self, user_id, session_id, score, max_score, tier):
        self.submissions.append({
            'user_id': user_id,
            'session_id': session_id,
            'score': score,
            'max_score': max_score,
            'tier': tier,
        })
        if self.error:
            raise self.error
        return self.result or SettlementResult(accepted=True, message="Your score has been saved to the leaderboard.")

    async def fetch_history(self, user_id):
        if self.history_error:
            raise self.history_error
        return list(self.history)


class FakeSigner:
    """Returns queued outcomes; exceptions are raised"""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or [TX_HASH]
        self.sent = []

    async def send_transaction(self, tx):
        self.sent.append(tx)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeHints:
    def __init__(self, explanation=None):
        self.explanation = explanation

    async def explain_question(self, question):
        if self.explanation is None:
            raise AssistError("Could not get a hint for this question.")
        return self.explanation


class FakeSpeech:
    async def synthesize_speech(self, text):
        if not text:
            raise AssistError("Nothing to read aloud.")
        return "data:audio/wav;base64,AAAA"


class FakeAPIError(Exception):
    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


class FakeQuery:
    def __init__(self, rows, max_rows=None):
        self.rows = rows
        self.max_rows = max_rows
        self.filters = []
        self.ordering = None
        self.row_limit = None
        self.row_range = None
        self.new_row = None

    def select(self, *columns):
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.ordering = (column, desc)
        return self

    def limit(self, count):
        self.row_limit = count
        return self

    def range(self, start, end):
        self.row_range = (start, end)
        return self

    def insert(self, row):
        self.new_row = dict(row)
        return self

    def execute(self):
        if self.new_row is not None:
            if any(r['session_id'] == self.new_row['session_id'] for r in self.rows):
                raise FakeAPIError('duplicate key value violates unique constraint "quiz_attempts_session_id_key"',
                                   code='23505')
            row = {'id': len(self.rows) + 1, **self.new_row}
            self.rows.append(row)
            return SimpleNamespace(data=[dict(row)])

        rows = [r for r in self.rows if all(r.get(c) == v for c, v in self.filters)]
        if self.ordering:
            column, desc = self.ordering
            rows = sorted(rows, key=lambda r: r[column], reverse=desc)
        if self.row_range is not None:
            start, end = self.row_range
            rows = rows[start:end + 1]
        if self.row_limit is not None:
            rows = rows[:self.row_limit]
        if self.max_rows is not None:
            rows = rows[:self.max_rows]
        return SimpleNamespace(data=[dict(r) for r in rows])


class FakeSupabase:
    """Just enough of the supabase query builder for the attempt log"""

    def __init__(self, max_rows=None):
        self.tables = {}
        self.max_rows = max_rows

    def table(self, name):
        return FakeQuery(self.tables.setdefault(name, []), self.max_rows)


@pytest.fixture
def user():
    return UserContext(user_id='player-1', wallet_address=WALLET, signer=FakeSigner())


@pytest.fixture
def settlement():
    return FakeSettlement()


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def provider():
    return StaticQuestionProvider({
        'beginner': make_bank(20),
        'intermediate': make_bank(25, correct_index=1),
        'advanced': make_bank(30, correct_index=2),
        'expert': make_bank(25, correct_index=3),
        'master': make_bank(20),
    })


@pytest.fixture
def manager(provider, settlement, user, store):
    return QuizSessionManager(provider, settlement, user, store=store)


@pytest.fixture
def contract_service():
    return RewardContractService(w3=Web3(), contract_address=CONTRACT_ADDRESS, chain_id=8453)


@pytest.fixture
def claims(contract_service):
    return RewardClaimService(contract_service, quick_mode_claims=True)


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def repository(fake_supabase):
    return AttemptRepository(fake_supabase)


@pytest.fixture
def engine(provider, settlement, store, contract_service, claims):
    return QuizEngine(
        provider=provider,
        settlement=settlement,
        gate=CooldownGate(),
        store=store,
        contract_service=contract_service,
        claims=claims,
        hints=FakeHints("A block groups transactions together."),
        speech=FakeSpeech(),
        signer_factory=lambda user_id, wallet: FakeSigner() if wallet else None,
    )


@pytest.fixture
def app(engine, repository):
    app = create_app({'TESTING': True, 'ATTEMPT_REPOSITORY': repository}, engine=engine)
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def logged_in(client):
    with client.session_transaction() as sess:
        sess['user_id'] = 'player-1'
        sess['wallet'] = WALLET
    return client
