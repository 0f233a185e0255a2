"""Engagement aggregation.

Clients report speaking/camera time deltas every few seconds. Each report is
added to the participant's persisted record, after which the whole meeting is
re-ranked and broadcast. Scores are advisory, so a store failure just loses
that update.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Iterable, List, Optional

from smartmeet.meetings.store import EngagementStore, StoreError

from .identity import Identity
from .transport import Broadcaster

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clean_delta(value: Any) -> float:
    """Deltas must be finite and positive; anything else counts as zero."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    if not math.isfinite(value) or value <= 0:
        return 0.0
    return float(value)


def engagement_score(speaking_time: float, total_speaking_time: float) -> int:
    total = max(1.0, total_speaking_time)
    return round_half_up(min(100.0, (speaking_time or 0.0) / total * 100.0))


def rank_scores(records: Iterable) -> List[dict]:
    rows = sorted(records, key=lambda r: (r.speaking_time or 0.0), reverse=True)
    total = sum((r.speaking_time or 0.0) for r in rows)
    scores = []
    for rank, row in enumerate(rows, start=1):
        scores.append({
            'accountId': row.account_id,
            'participantKey': row.participant_key,
            'displayName': row.display_name,
            'speakingTime': round_half_up(row.speaking_time or 0.0),
            'cameraOnTime': round_half_up(row.camera_on_time or 0.0),
            'chatMessages': row.chat_messages or 0,
            'engagementScore': engagement_score(row.speaking_time or 0.0, total),
            'rank': rank,
        })
    return scores


class EngagementAggregator:
    def __init__(self, broadcaster: Broadcaster, store: EngagementStore):
        self._broadcaster = broadcaster
        self._store = store

    def record_delta(
        self,
        meeting_code: str,
        identity: Identity,
        speaking_delta: Any = 0,
        camera_delta: Any = 0,
    ) -> Optional[List[dict]]:
        """Add the deltas, re-rank the meeting and broadcast the scores.

        Returns the broadcast scores, or None when the update was lost.
        """
        if not meeting_code:
            return None
        try:
            self._store.increment_and_fetch(
                meeting_code,
                participant_key=identity.key,
                account_id=identity.account_id,
                display_name=identity.display_name,
                speaking_time=clean_delta(speaking_delta),
                camera_on_time=clean_delta(camera_delta),
            )
            scores = rank_scores(self._store.list_by_meeting(meeting_code))
        except StoreError:
            logger.warning("engagement update dropped for %s/%s", meeting_code, identity.key, exc_info=True)
            return None
        self._broadcaster.to_room('engagement-scores-update', {'scores': scores}, meeting_code)
        return scores

    def _bump(self, meeting_code: str, identity: Identity, **counters: int) -> None:
        try:
            self._store.increment_and_fetch(
                meeting_code,
                participant_key=identity.key,
                account_id=identity.account_id,
                display_name=identity.display_name,
                **counters,
            )
        except StoreError:
            logger.warning("engagement counter dropped for %s/%s", meeting_code, identity.key, exc_info=True)

    def record_chat(self, meeting_code: str, identity: Identity) -> None:
        self._bump(meeting_code, identity, chat_messages=1)

    def record_hand_raise(self, meeting_code: str, identity: Identity) -> None:
        self._bump(meeting_code, identity, hand_raised=1)
