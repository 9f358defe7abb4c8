# clinic_availability/services/slots/holds.py
"""
Redis storage for checkout holds using Sorted Sets.

A hold hides a slot from every other session while one client checks out.

Key format: holds:{staff_id}:{date}
Value: Sorted Set where member = "{start_iso}|{end_iso}|{session_token}",
       score = expire_ts (unix timestamp when the hold lapses).

Query: ZRANGEBYSCORE key {now_ts} +inf → only live holds.
Index: holds:session:{session_token} is a Set of "{key}|{member}" so a
       session can release everything it holds.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from redis import Redis

from .config import BookingConfig, get_booking_config
from .intervals import Interval

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Hold:
    staff_id: int
    start_time: datetime
    end_time: datetime
    session_token: str
    expires_at: datetime

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)


class SlotHoldStore:
    """Redis storage wrapper using Sorted Sets for hold data."""

    KEY_PREFIX = "holds"

    def __init__(self, redis: Redis, config: BookingConfig | None = None):
        self.redis = redis
        self.config = config or get_booking_config()

    def _key(self, staff_id: int, dt: date) -> str:
        return f"{self.KEY_PREFIX}:{staff_id}:{dt.isoformat()}"

    def _session_key(self, session_token: str) -> str:
        return f"{self.KEY_PREFIX}:session:{session_token}"

    @staticmethod
    def _member(start: datetime, end: datetime, session_token: str) -> str:
        return f"{start.isoformat()}|{end.isoformat()}|{session_token}"

    # ── Write ────────────────────────────────────────────────────────────

    def place_hold(
        self,
        staff_id: int,
        start: datetime,
        end: datetime,
        session_token: str,
        now: datetime,
    ) -> Hold:
        """
        Store a hold, replacing this session's earlier hold on the same start.

        Overlap with other sessions is checked by the caller.
        """
        expires_at = now + timedelta(minutes=self.config.hold_ttl_minutes)
        expire_ts = expires_at.timestamp()
        key = self._key(staff_id, start.date())
        member = self._member(start, end, session_token)
        session_key = self._session_key(session_token)

        stale = [
            m for m in self._members(key, "-inf", "+inf")
            if m != member and m.endswith(f"|{session_token}")
            and m.startswith(f"{start.isoformat()}|")
        ]

        pipe = self.redis.pipeline()
        if stale:
            pipe.zrem(key, *stale)
        pipe.zadd(key, {member: expire_ts})
        # Key lives until the latest hold in it lapses + 1 minute buffer
        pipe.expireat(key, int(expire_ts) + 60)
        pipe.sadd(session_key, f"{key}|{member}")
        pipe.expireat(session_key, int(expire_ts) + 60)
        pipe.execute()

        return Hold(staff_id, start, end, session_token, expires_at)

    def release_session(self, session_token: str) -> int:
        """
        Release every hold of a session.

        Returns:
            Number of released holds.
        """
        session_key = self._session_key(session_token)
        entries = self.redis.smembers(session_key)
        if not entries:
            return 0

        pipe = self.redis.pipeline()
        for entry in entries:
            entry = entry.decode() if isinstance(entry, bytes) else entry
            key, member = entry.split("|", 1)
            pipe.zrem(key, member)
        pipe.delete(session_key)
        results = pipe.execute()
        return sum(int(r) for r in results[:-1])

    # ── Read ─────────────────────────────────────────────────────────────

    def live_holds(
        self,
        staff_ids: set[int],
        dates: list[date],
        now: datetime,
    ) -> list[Hold]:
        """Live holds for the staff members on the given dates."""
        keys = [
            (staff_id, self._key(staff_id, dt))
            for staff_id in sorted(staff_ids)
            for dt in dates
        ]
        if not keys:
            return []

        now_ts = now.timestamp()
        pipe = self.redis.pipeline()
        for _, key in keys:
            pipe.zrangebyscore(key, now_ts, "+inf", withscores=True)
        results = pipe.execute()

        holds = []
        for (staff_id, _), members in zip(keys, results):
            for raw, score in members:
                member = raw.decode() if isinstance(raw, bytes) else raw
                start_str, end_str, session_token = member.split("|", 2)
                holds.append(Hold(
                    staff_id=staff_id,
                    start_time=datetime.fromisoformat(start_str),
                    end_time=datetime.fromisoformat(end_str),
                    session_token=session_token,
                    expires_at=datetime.fromtimestamp(score),
                ))
        return holds

    def _members(self, key: str, low, high) -> list[str]:
        return [
            m.decode() if isinstance(m, bytes) else m
            for m in self.redis.zrangebyscore(key, low, high)
        ]
