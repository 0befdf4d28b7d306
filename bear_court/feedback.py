"""
Feedback aggregation.

One like/dislike per case, tallied into the global stats singleton. The
vote is kept on the verdict and carried across a re-adjudication.

Write order: the vote is first set on the verdict (compare-and-set from
empty), then the matching counter is incremented atomically. A vote that
loses the compare-and-set never increments. If the increment itself fails
the vote stays recorded and the error is surfaced; the tally is then one
short, never one over.
"""

import logging
import math
from dataclasses import dataclass
from typing import AsyncIterator

from .errors import PreconditionFailed
from .machine import fetch_case
from .schemas import Case, FeedbackVote, GlobalStats, StatsResponse
from .store import CaseStore

logger = logging.getLogger(__name__)


def satisfaction_rate(likes: int, dislikes: int) -> int:
    """
    Displayed satisfaction percentage.

    Rounds half up; no votes at all reads as 100.
    """
    total = likes + dislikes
    if total == 0:
        return 100
    return int(math.floor(likes / total * 100 + 0.5))


def stats_response(stats: GlobalStats) -> StatsResponse:
    return StatsResponse(
        likes=stats.likes,
        dislikes=stats.dislikes,
        total=stats.total,
        rate=satisfaction_rate(stats.likes, stats.dislikes),
    )


@dataclass
class FeedbackOutcome:
    case: Case
    stats: GlobalStats
    recorded: bool


class FeedbackAggregator:
    """Records verdict feedback and maintains the global tally"""

    def __init__(self, store: CaseStore):
        self.store = store

    async def get_stats(self) -> GlobalStats:
        return GlobalStats.model_validate(await self.store.get_stats())

    async def watch_stats(self) -> AsyncIterator[StatsResponse]:
        snapshots = self.store.subscribe_stats()
        try:
            async for data in snapshots:
                yield stats_response(GlobalStats.model_validate(data))
        finally:
            await snapshots.aclose()

    async def record_feedback(self, case_id: str, identity: str, is_like: bool) -> FeedbackOutcome:
        """
        Record the single vote on a case's verdict.

        Repeat votes (by anyone) are no-ops and leave the tally unchanged.

        Raises:
            PreconditionFailed: the case has no verdict yet
        """
        case = await fetch_case(self.store, case_id)
        if case.verdict is None:
            raise PreconditionFailed("There is no verdict to rate yet")

        if case.verdict.feedback is not None:
            return FeedbackOutcome(case=case, stats=await self.get_stats(), recorded=False)

        vote = FeedbackVote.LIKE if is_like else FeedbackVote.DISLIKE
        updated = await self.store.update_if(
            case.id,
            {
                "verdict.feedback": None,
                "verdict.verdict_title": case.verdict.verdict_title,
            },
            {"verdict.feedback": vote.value},
        )
        if updated is None:
            latest = await fetch_case(self.store, case.id)
            return FeedbackOutcome(case=latest, stats=await self.get_stats(), recorded=False)

        counter = "likes" if is_like else "dislikes"
        try:
            stats = GlobalStats.model_validate(await self.store.increment_stats(counter))
        except Exception as e:
            logger.error(f"Vote on case {case.id} recorded but tally increment failed: {e}")
            raise

        logger.info(
            f"Feedback '{vote.value}' on case {case.id}; "
            f"rate now {satisfaction_rate(stats.likes, stats.dislikes)}% of {stats.total}"
        )
        return FeedbackOutcome(case=Case.model_validate(updated), stats=stats, recorded=True)
