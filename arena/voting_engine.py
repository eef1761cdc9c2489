import logging
from typing import Dict, List

from flask import current_app
from sqlalchemy import case, delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from shared.events import EventType, vote_event
from shared.pubsub import EventPublisher
from shared.state_machine import SubmissionState

from .errors import (
    AccountNotApproved,
    InvalidRank,
    RankAlreadyAssigned,
    SelfVoteNotAllowed,
    SubmissionNotApproved,
    SubmissionNotFound,
    TournamentNotFound,
    UserNotFound,
    VoteNotFound,
)
from .models import db, Like, Submission, Tournament, User, Vote, utcnow
from .storage import transaction

logger = logging.getLogger(__name__)

# 1st, 2nd and 3rd place
RANK_POINTS = {1: 3, 2: 2, 3: 1}

UPSERT_DIALECTS = {
    'sqlite': sqlite_insert,
    'postgresql': postgresql_insert,
}


def points_for(rank: int) -> int:
    if isinstance(rank, bool) or not isinstance(rank, int) or rank not in RANK_POINTS:
        raise InvalidRank(rank)
    return RANK_POINTS[rank]


class _LikeRace(Exception):
    """Another request inserted the same like first."""


class VotingEngine:
    """
    Ranked voting and score aggregation.

    A voter holds at most one vote per submission: casting again replaces the
    rank through an INSERT ... ON CONFLICT DO UPDATE keyed on
    ``(voter_id, submission_id)``. After every mutation the submission's cached
    score is rebuilt from a SUM over its votes in the same transaction, so
    concurrent votes converge on the true total instead of drifting.
    """

    def __init__(self, publisher: EventPublisher = None):
        self.publisher = publisher or EventPublisher()

    # ==================== Votes ====================

    def cast_or_change_vote(self, voter_id: int, submission_id: int, rank) -> Dict[str, int]:
        points_for(rank)

        with transaction('cast vote') as session:
            voter = session.get(User, voter_id)
            if voter is None:
                raise UserNotFound(voter_id)
            if current_app.config.get('REQUIRE_APPROVED_ACCOUNT', True) and not voter.approved:
                raise AccountNotApproved(voter_id)

            submission = session.get(Submission, submission_id)
            if submission is None:
                raise SubmissionNotFound(submission_id)
            if submission.status != SubmissionState.APPROVED.value:
                raise SubmissionNotApproved(submission_id, submission.status)
            if not current_app.config.get('ALLOW_SELF_VOTE', True) and submission.user_id == voter_id:
                raise SelfVoteNotAllowed(submission_id)
            if current_app.config.get('EXCLUSIVE_RANKS_PER_TOURNAMENT', False):
                self._check_rank_free(voter_id, submission, rank)

            self._upsert_vote(voter_id, submission_id, rank)
            score = self._recompute_score(submission_id)
            tournament_public_id = submission.tournament.tournament_id

        logger.info(f"User {voter_id} ranked submission {submission_id} #{rank}; score now {score}")
        self.publisher.publish_tournament_event(
            tournament_public_id,
            vote_event(EventType.VOTE_CAST, tournament_public_id, submission_id, score)
        )
        return {'score': score}

    def retract_vote(self, voter_id: int, submission_id: int) -> Dict[str, int]:
        with transaction('retract vote') as session:
            result = session.execute(
                delete(Vote)
                .where(Vote.voter_id == voter_id, Vote.submission_id == submission_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise VoteNotFound(voter_id, submission_id)

            score = self._recompute_score(submission_id)
            submission = session.get(Submission, submission_id)
            tournament_public_id = submission.tournament.tournament_id

        logger.info(f"User {voter_id} retracted vote on submission {submission_id}; score now {score}")
        self.publisher.publish_tournament_event(
            tournament_public_id,
            vote_event(EventType.VOTE_RETRACTED, tournament_public_id, submission_id, score)
        )
        return {'score': score}

    def _check_rank_free(self, voter_id: int, submission: Submission, rank: int) -> None:
        taken = (
            db.session.query(Vote.id)
            .join(Submission, Submission.id == Vote.submission_id)
            .filter(
                Vote.voter_id == voter_id,
                Vote.rank == rank,
                Vote.submission_id != submission.id,
                Submission.tournament_id == submission.tournament_id
            )
            .first()
        )
        if taken is not None:
            raise RankAlreadyAssigned(rank, submission.tournament.tournament_id)

    def _upsert_vote(self, voter_id: int, submission_id: int, rank: int) -> None:
        now = utcnow()
        insert = UPSERT_DIALECTS.get(db.engine.dialect.name)

        if insert is not None:
            stmt = insert(Vote).values(
                voter_id=voter_id,
                submission_id=submission_id,
                rank=rank,
                created_at=now,
                updated_at=now
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[Vote.voter_id, Vote.submission_id],
                set_={'rank': rank, 'updated_at': now}
            )
            db.session.execute(stmt)
            return

        # Other backends: update first, insert when nothing matched
        result = db.session.execute(
            update(Vote)
            .where(Vote.voter_id == voter_id, Vote.submission_id == submission_id)
            .values(rank=rank, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.session.add(Vote(voter_id=voter_id, submission_id=submission_id, rank=rank))
            db.session.flush()

    def _recompute_score(self, submission_id: int) -> int:
        points = case(
            *[(Vote.rank == rank, value) for rank, value in RANK_POINTS.items()],
            else_=0
        )
        total = db.session.execute(
            select(func.coalesce(func.sum(points), 0)).where(Vote.submission_id == submission_id)
        ).scalar_one()
        db.session.execute(
            update(Submission)
            .where(Submission.id == submission_id)
            .values(score=int(total))
            .execution_options(synchronize_session=False)
        )
        return int(total)

    def get_vote(self, voter_id: int, submission_id: int):
        return Vote.query.filter_by(voter_id=voter_id, submission_id=submission_id).first()

    # ==================== Likes ====================

    def toggle_like(self, user_id: int, submission_id: int) -> Dict[str, object]:
        """Like or un-like a submission. Likes never touch the score."""
        try:
            with transaction('toggle like') as session:
                if session.get(Submission, submission_id) is None:
                    raise SubmissionNotFound(submission_id)

                result = session.execute(
                    delete(Like)
                    .where(Like.user_id == user_id, Like.submission_id == submission_id)
                    .execution_options(synchronize_session=False)
                )
                liked = result.rowcount == 0
                if liked:
                    session.add(Like(user_id=user_id, submission_id=submission_id))
                    try:
                        session.flush()
                    except IntegrityError as e:
                        raise _LikeRace() from e
        except _LikeRace:
            logger.debug(f"Like by user {user_id} on submission {submission_id} already recorded")
            liked = True

        return {'liked': liked, 'likes': self.like_count(submission_id)}

    def like_count(self, submission_id: int) -> int:
        return db.session.execute(
            select(func.count(Like.id)).where(Like.submission_id == submission_id)
        ).scalar_one()

    # ==================== Listings ====================

    def ranked_submissions(self, tournament_id: str) -> List[Submission]:
        """Approved submissions: score desc, then earlier submission first."""
        tournament = Tournament.query.filter_by(tournament_id=tournament_id).first()
        if tournament is None:
            raise TournamentNotFound(tournament_id)
        return (
            Submission.query
            .filter_by(tournament_id=tournament.id, status=SubmissionState.APPROVED.value)
            .order_by(Submission.score.desc(), Submission.created_at.asc(), Submission.id.asc())
            .all()
        )

    def votable_submissions(self, tournament_id: str, voter_id: int) -> List[dict]:
        """Ranked approved submissions annotated with the voter's own rank and like."""
        submissions = self.ranked_submissions(tournament_id)
        ids = [s.id for s in submissions]
        if not ids:
            return []

        my_ranks = dict(
            db.session.query(Vote.submission_id, Vote.rank)
            .filter(Vote.voter_id == voter_id, Vote.submission_id.in_(ids))
            .all()
        )
        my_likes = {
            row[0] for row in
            db.session.query(Like.submission_id)
            .filter(Like.user_id == voter_id, Like.submission_id.in_(ids))
            .all()
        }
        vote_counts = dict(
            db.session.query(Vote.submission_id, func.count(Vote.id))
            .filter(Vote.submission_id.in_(ids))
            .group_by(Vote.submission_id)
            .all()
        )

        listing = []
        for position, submission in enumerate(submissions, start=1):
            entry = submission.to_dict()
            entry.update({
                'position': position,
                'votes': vote_counts.get(submission.id, 0),
                'my_rank': my_ranks.get(submission.id),
                'liked': submission.id in my_likes,
            })
            listing.append(entry)
        return listing
