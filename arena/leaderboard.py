import logging
from dataclasses import dataclass, asdict
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from shared.state_machine import SubmissionState

from .errors import AggregationUnavailable, UserNotFound
from .models import db, Submission, User, Vote

logger = logging.getLogger(__name__)


@dataclass
class LeaderboardEntry:
    user_id: int
    display_name: str
    total_votes_received: int
    approved_submission_count: int
    rank: int

    def to_dict(self) -> dict:
        return asdict(self)


class LeaderboardService:
    """
    Global ranking of users by votes received on their approved submissions.

    Pull-based and uncached: every call runs the aggregate. Ordering is total:
    votes desc, approved submissions desc, user id asc, and every entry gets
    its own 1-based rank even when both totals tie.
    """

    def compute_leaderboard(self, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        try:
            rows = db.session.execute(self._aggregate_query()).all()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.exception("Leaderboard aggregation failed")
            raise AggregationUnavailable() from e

        entries = [
            LeaderboardEntry(
                user_id=row.user_id,
                display_name=row.display_name,
                total_votes_received=int(row.total_votes),
                approved_submission_count=int(row.approved_submissions),
                rank=position
            )
            for position, row in enumerate(rows, start=1)
        ]
        if limit is not None:
            entries = entries[:max(limit, 0)]
        return entries

    def user_standing(self, user_id: int) -> LeaderboardEntry:
        for entry in self.compute_leaderboard():
            if entry.user_id == user_id:
                return entry
        raise UserNotFound(user_id)

    def _aggregate_query(self):
        approved = SubmissionState.APPROVED.value

        # Votes per user, counted on approved submissions only
        votes = (
            select(
                Submission.user_id.label('user_id'),
                func.count(Vote.id).label('total_votes')
            )
            .join(Vote, Vote.submission_id == Submission.id)
            .where(Submission.status == approved)
            .group_by(Submission.user_id)
            .subquery()
        )
        submissions = (
            select(
                Submission.user_id.label('user_id'),
                func.count(Submission.id).label('approved_submissions')
            )
            .where(Submission.status == approved)
            .group_by(Submission.user_id)
            .subquery()
        )

        total_votes = func.coalesce(votes.c.total_votes, 0)
        approved_submissions = func.coalesce(submissions.c.approved_submissions, 0)

        return (
            select(
                User.id.label('user_id'),
                User.display_name,
                total_votes.label('total_votes'),
                approved_submissions.label('approved_submissions')
            )
            .outerjoin(votes, votes.c.user_id == User.id)
            .outerjoin(submissions, submissions.c.user_id == User.id)
            .order_by(total_votes.desc(), approved_submissions.desc(), User.id.asc())
        )
