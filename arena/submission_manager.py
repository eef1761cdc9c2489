import logging
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from shared.events import Event, EventType, submission_moderated_event
from shared.pubsub import EventPublisher
from shared.state_machine import SubmissionStateMachine, SubmissionState, TournamentStateMachine

from .errors import (
    AccountNotApproved,
    DuplicateSubmission,
    InvalidStatus,
    SubmissionNotFound,
    TournamentNotActive,
    TournamentNotFound,
    UserNotFound,
    optional_text,
    require_text,
)
from .identity import Caller, require_admin
from .models import db, Submission, Tournament, User, utcnow
from .storage import transaction

logger = logging.getLogger(__name__)


class SubmissionManager:
    """
    Owns the submission moderation lifecycle.

    A user enters a tournament once; the ``(user_id, tournament_id)`` unique
    constraint closes the double-submit race that the pre-check alone cannot.
    Moderation overwrites the status and leaves votes in place.
    """

    def __init__(self, publisher: EventPublisher = None):
        self.publisher = publisher or EventPublisher()

    def submit(
        self,
        user_id: int,
        tournament_id: str,
        title: str,
        clip_url: str,
        description: str = None
    ) -> Submission:
        """Enter a clip into an active tournament. New submissions start pending."""
        title = require_text(title, 'title')
        clip_url = require_text(clip_url, 'clip_url')
        description = optional_text(description, 'description')

        with transaction('submit clip') as session:
            user = session.get(User, user_id)
            if user is None:
                raise UserNotFound(user_id)
            if current_app.config.get('REQUIRE_APPROVED_ACCOUNT', True) and not user.approved:
                raise AccountNotApproved(user_id)

            tournament = Tournament.query.filter_by(tournament_id=tournament_id).first()
            if tournament is None:
                raise TournamentNotFound(tournament_id)
            if not TournamentStateMachine.from_state_string(tournament.status).accepts_submissions:
                raise TournamentNotActive(tournament_id, tournament.status)

            existing = Submission.query.filter_by(user_id=user_id, tournament_id=tournament.id).first()
            if existing is not None:
                raise DuplicateSubmission(user_id, tournament_id)

            submission = Submission(
                tournament_id=tournament.id,
                user_id=user_id,
                title=title,
                clip_url=clip_url,
                description=description,
                status=SubmissionState.PENDING.value,
                score=0
            )
            session.add(submission)
            try:
                session.flush()
            except IntegrityError as e:
                logger.warning(f"Concurrent submission by user {user_id} to {tournament_id} rejected")
                raise DuplicateSubmission(user_id, tournament_id) from e

        logger.info(f"Submission {submission.id} created by user {user_id} in {tournament_id}")
        self.publisher.publish_tournament_event(tournament_id, Event(
            type=EventType.SUBMISSION_CREATED,
            tournament_id=tournament_id,
            data={'submission_id': submission.id, 'user_id': user_id}
        ))
        return submission

    def moderate(self, submission_id: int, new_status: str, moderator: Caller) -> Submission:
        """Set a submission's status. Moderators only."""
        require_admin(moderator)
        try:
            SubmissionState(new_status)
        except ValueError:
            raise InvalidStatus(new_status)

        with transaction('moderate submission') as session:
            submission = session.get(Submission, submission_id)
            if submission is None:
                raise SubmissionNotFound(submission_id)

            sm = SubmissionStateMachine.from_state_string(submission.status)
            old_state = sm.state.value
            submission.status = sm.moderate(new_status).value
            submission.moderated_by = moderator.user_id
            submission.moderated_at = utcnow()
            tournament_public_id = submission.tournament.tournament_id

        logger.info(
            f"Submission {submission_id}: {old_state} -> {new_status} by moderator {moderator.user_id}"
        )
        event = submission_moderated_event(
            tournament_public_id, submission_id, submission.user_id, old_state, new_status
        )
        self.publisher.publish_tournament_event(tournament_public_id, event)
        self.publisher.publish_user_notification(submission.user_id, event)
        return submission

    def get_submission(self, submission_id: int) -> Optional[Submission]:
        return db.session.get(Submission, submission_id)

    def list_submissions(self, tournament_id: str, status: str = None) -> List[Submission]:
        """Submissions of a tournament, best score first, earlier entry wins ties."""
        tournament = Tournament.query.filter_by(tournament_id=tournament_id).first()
        if tournament is None:
            raise TournamentNotFound(tournament_id)

        query = Submission.query.filter_by(tournament_id=tournament.id)
        if status:
            try:
                SubmissionState(status)
            except ValueError:
                raise InvalidStatus(status)
            query = query.filter_by(status=status)

        return query.order_by(
            Submission.score.desc(),
            Submission.created_at.asc(),
            Submission.id.asc()
        ).all()

    def list_user_submissions(self, user_id: int) -> List[Submission]:
        return (
            Submission.query
            .filter_by(user_id=user_id)
            .order_by(Submission.created_at.desc(), Submission.id.desc())
            .all()
        )
