"""
Score Settlement Client

Reports a completed session to the score store exactly once. The session id
is the idempotency key: the store answers a repeated submission with HTTP 409,
which is treated as a successful duplicate, never as an error.
"""

import asyncio
import logging
from typing import List, Optional

import requests

from config import SCORE_API_TIMEOUT, SCORE_API_URL
from .errors import NetworkError, ServerError
from .models import AttemptRecord, SettlementResult, get_tier

logger = logging.getLogger(__name__)

ACCEPTED_MESSAGE = "Your score has been saved to the leaderboard."
DUPLICATE_MESSAGE = "This quiz result was already recorded."


def _error_detail(response) -> str:
    try:
        body = response.json()
        if isinstance(body, dict):
            return str(body.get('error') or body.get('message') or response.reason)
    except ValueError:
        pass
    return response.reason or f"HTTP {response.status_code}"


class ScoreSettlementClient:

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = (base_url or SCORE_API_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else SCORE_API_TIMEOUT

    def _post_score(self, payload: dict):
        return requests.post(f"{self.base_url}/scores", json=payload, timeout=self.timeout)

    def _get_history(self, user_id: str):
        return requests.get(f"{self.base_url}/users/{user_id}/history", timeout=self.timeout)

    async def submit(self, user_id: str, session_id: str, score: int, max_score: int, tier) -> SettlementResult:
        tier = get_tier(tier)
        payload = {
            'userId': user_id,
            'quizId': session_id,
            'score': score,
            'difficulty': tier.key,
            'maxScore': max_score,
        }

        logger.info(f"📡 Submitting score {score}/{max_score} for quiz {session_id}")
        try:
            response = await asyncio.to_thread(self._post_score, payload)
        except requests.Timeout as e:
            logger.error(f"❌ Score submission timed out for {session_id}: {e}")
            raise NetworkError("The score server did not respond in time.") from e
        except requests.RequestException as e:
            logger.error(f"❌ Score submission failed for {session_id}: {e}")
            raise NetworkError("Could not reach the score server.") from e

        if response.status_code == 409:
            logger.info(f"🔁 Score for quiz {session_id} already recorded")
            return SettlementResult(accepted=False, duplicate=True, message=DUPLICATE_MESSAGE)

        if not 200 <= response.status_code < 300:
            detail = _error_detail(response)
            logger.error(f"❌ Score server rejected quiz {session_id}: {response.status_code} {detail}")
            raise ServerError(f"Could not save your score to the server ({detail}).", status_code=response.status_code)

        try:
            body = response.json()
        except ValueError:
            body = {}
        duplicate = bool(isinstance(body, dict) and body.get('duplicate'))
        logger.info(f"✅ Score saved for quiz {session_id}")
        return SettlementResult(
            accepted=not duplicate,
            duplicate=duplicate,
            message=DUPLICATE_MESSAGE if duplicate else ACCEPTED_MESSAGE,
        )

    async def fetch_history(self, user_id: str) -> List[AttemptRecord]:
        try:
            response = await asyncio.to_thread(self._get_history, user_id)
        except requests.RequestException as e:
            raise NetworkError("Could not reach the score server.") from e

        if response.status_code == 404:
            return []
        if not 200 <= response.status_code < 300:
            raise ServerError(f"Could not load quiz history ({_error_detail(response)}).", status_code=response.status_code)

        body = response.json()
        if isinstance(body, dict):
            body = (body.get('data') or {}).get('history', [])

        history = []
        for entry in body or []:
            try:
                history.append(AttemptRecord.from_dict(entry))
            except (ValueError, TypeError) as e:
                logger.warning(f"⚠️ Skipping malformed history entry: {e}")
        return history
