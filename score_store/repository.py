import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from supabase_client import retry_on_connection_error
from quiz_engine.models import AttemptRecord

logger = logging.getLogger(__name__)

TABLE = 'quiz_attempts'
# PostgREST caps each response at max-rows, so full scans are paged
PAGE_SIZE = 1000
UNIQUE_VIOLATION = '23505'


class DuplicateAttempt(Exception):
    """An attempt with this session id is already stored"""


def is_unique_violation(error: Exception) -> bool:
    code = getattr(error, 'code', None)
    if code == UNIQUE_VIOLATION:
        return True
    return 'duplicate key' in str(error).lower()


class AttemptRepository:
    """Append-only quiz attempt log in Supabase"""

    def __init__(self, client):
        self.client = client

    @retry_on_connection_error()
    def find_by_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        result = self.client.table(TABLE)\
            .select('*')\
            .eq('session_id', session_id)\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None

    @retry_on_connection_error()
    def insert(self, record: AttemptRecord) -> Dict[str, Any]:
        try:
            result = self.client.table(TABLE).insert(record.to_row()).execute()
        except Exception as e:
            if is_unique_violation(e):
                raise DuplicateAttempt(record.session_id) from e
            raise
        logger.info(f"✅ Attempt stored: {record.session_id} - {record.score}/{record.max_score} ({record.tier})")
        return result.data[0] if result.data else record.to_row()

    @retry_on_connection_error()
    def history(self, user_id: str, limit: int = 500) -> List[Dict[str, Any]]:
        result = self.client.table(TABLE)\
            .select('*')\
            .eq('user_id', user_id)\
            .order('created_at', desc=True)\
            .limit(limit)\
            .execute()
        return result.data or []

    @retry_on_connection_error()
    def all_scores(self, page_size: int = PAGE_SIZE) -> List[Dict[str, Any]]:
        rows = []
        start = 0
        while True:
            result = self.client.table(TABLE)\
                .select('id, user_id, score, percentage')\
                .order('id')\
                .range(start, start + page_size - 1)\
                .execute()
            page = result.data or []
            if not page:
                return rows
            rows.extend(page)
            start += len(page)

    def leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        totals = defaultdict(lambda: {'points': 0, 'attempts': 0, 'best_percentage': 0})
        for row in self.all_scores():
            entry = totals[row['user_id']]
            entry['points'] += int(row.get('score') or 0)
            entry['attempts'] += 1
            entry['best_percentage'] = max(entry['best_percentage'], int(row.get('percentage') or 0))

        ranked = sorted(totals.items(), key=lambda item: (-item[1]['points'], item[0]))
        return [
            {'rank': i + 1, 'user_id': user_id, **stats}
            for i, (user_id, stats) in enumerate(ranked[:limit])
        ]
