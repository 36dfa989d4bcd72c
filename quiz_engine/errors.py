"""Error taxonomy for the quiz engine."""


class QuizEngineError(Exception):
    code = 'quiz_error'

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = str(self)


class InvalidTier(QuizEngineError):
    """Unknown difficulty tier"""
    code = 'invalid_tier'


class GenerationError(QuizEngineError):
    """Could not fetch quiz questions. Please try again later."""
    code = 'generation_failed'


# Session state machine

class SessionError(QuizEngineError):
    code = 'session_error'


class SessionBusy(SessionError):
    """A quiz is already loading. Please wait for it to finish."""
    code = 'session_busy'


class SessionNotFound(SessionError):
    """Quiz session expired or not found. Please start a new quiz."""
    code = 'session_not_found'


class SessionNotActive(SessionError):
    """The quiz is not in progress"""
    code = 'session_not_active'


class SessionCompleted(SessionError):
    """The quiz is already completed"""
    code = 'session_completed'


class QuestionAlreadyAnswered(SessionError):
    """This question has already been answered"""
    code = 'already_answered'


class QuestionNotAnswered(SessionError):
    """Answer the current question before moving on"""
    code = 'not_answered'


class InvalidAnswer(SessionError):
    """Answer option out of range"""
    code = 'invalid_answer'


# Score settlement

class SettlementError(QuizEngineError):
    code = 'settlement_failed'


class NetworkError(SettlementError):
    """Could not reach the score server"""
    code = 'network_error'


class ServerError(SettlementError):
    """The score server rejected the submission"""
    code = 'server_error'

    def __init__(self, message=None, status_code=None):
        super().__init__(message)
        self.status_code = status_code


# Reward claims

class ClaimError(QuizEngineError):
    code = 'claim_error'


class NotEligible(ClaimError):
    """This quiz session is not eligible for a reward claim"""
    code = 'not_eligible'


class ClaimInProgress(ClaimError):
    """A claim for this session is already being processed"""
    code = 'claim_in_progress'


class AlreadyClaimed(ClaimError):
    """Rewards for this session were already claimed"""
    code = 'already_claimed'


class ClaimTransactionError(ClaimError):
    """The reward transaction failed"""
    code = 'claim_transaction_failed'


class DuplicateClaim(ClaimTransactionError):
    """The reward contract has already paid out this quiz"""
    code = 'duplicate_claim'


class ContractNotConfigured(ClaimError):
    """Reward contract address not configured"""
    code = 'contract_not_configured'


# Hints and speech

class AssistError(QuizEngineError):
    """Assistant service unavailable"""
    code = 'assist_unavailable'
