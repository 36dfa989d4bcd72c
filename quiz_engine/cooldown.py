"""
Cooldown Gate

Decides per tier whether a user may start a quiz, from their attempt history.
A tier is locked while ``now < last_attempt + cooldown``. The gate keeps no
state; history belongs to the score store and is re-evaluated on every fetch.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional

from config import COOLDOWN_HOURS
from .models import TIERS, AttemptRecord, get_tier, parse_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierLock:
    tier: str
    locked: bool
    last_attempt_at: Optional[datetime] = None
    unlock_at: Optional[datetime] = None

    def remaining(self, now: Optional[datetime] = None) -> timedelta:
        if self.unlock_at is None:
            return timedelta(0)
        now = now or datetime.now(timezone.utc)
        return max(self.unlock_at - now, timedelta(0))

    def remaining_clock(self, now: Optional[datetime] = None) -> str:
        """Countdown as HH:MM:SS, recomputed locally on every tick"""
        seconds = int(self.remaining(now).total_seconds())
        hours, rest = divmod(seconds, 3600)
        minutes, seconds = divmod(rest, 60)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"

    def to_dict(self, now: Optional[datetime] = None) -> dict:
        return {
            'difficulty': self.tier,
            'locked': self.locked,
            'last_attempt_at': self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            'unlock_at': self.unlock_at.isoformat() if self.unlock_at else None,
            'remaining_seconds': int(self.remaining(now).total_seconds()) if self.locked else 0,
        }


class CooldownGate:

    def __init__(self, cooldown: Optional[timedelta] = None):
        self.cooldown = cooldown if cooldown is not None else timedelta(hours=COOLDOWN_HOURS)

    def _latest_attempts(self, history: Iterable) -> Dict[str, datetime]:
        latest: Dict[str, datetime] = {}
        for entry in history or []:
            try:
                if isinstance(entry, AttemptRecord):
                    tier_key, created_at = entry.tier, entry.created_at
                else:
                    tier_key = entry.get('difficulty') or entry.get('tier')
                    created_at = parse_timestamp(entry.get('createdAt') or entry.get('created_at'))
                tier_key = get_tier(tier_key).key
            except Exception as e:
                logger.warning(f"⚠️ Skipping unreadable history entry {entry!r}: {e}")
                continue

            if tier_key not in latest or created_at > latest[tier_key]:
                latest[tier_key] = created_at
        return latest

    def evaluate(self, history: Iterable, now: Optional[datetime] = None) -> Dict[str, TierLock]:
        now = now or datetime.now(timezone.utc)
        latest = self._latest_attempts(history)

        locks = {}
        for tier in TIERS:
            last_attempt = latest.get(tier.key)
            if last_attempt is None:
                locks[tier.key] = TierLock(tier=tier.name, locked=False)
                continue
            unlock_at = last_attempt + self.cooldown
            locks[tier.key] = TierLock(
                tier=tier.name,
                locked=now < unlock_at,
                last_attempt_at=last_attempt,
                unlock_at=unlock_at,
            )
        return locks

    def unlocked_all(self) -> Dict[str, TierLock]:
        return {tier.key: TierLock(tier=tier.name, locked=False) for tier in TIERS}

    async def check(self, history_source, user_id: str, now: Optional[datetime] = None) -> Dict[str, TierLock]:
        """Fetch history and evaluate; fails open if history is unavailable"""
        try:
            history = await history_source.fetch_history(user_id)
        except Exception as e:
            logger.warning(f"⚠️ Could not fetch quiz history for cooldowns ({user_id}): {e} - all tiers unlocked")
            return self.unlocked_all()

        locks = self.evaluate(history, now)
        locked = [lock.tier for lock in locks.values() if lock.locked]
        if locked:
            logger.info(f"🕐 Cooldown active for {user_id}: {', '.join(locked)}")
        return locks

    def is_locked(self, locks: Dict[str, TierLock], tier) -> bool:
        lock = locks.get(get_tier(tier).key)
        return bool(lock and lock.locked)
