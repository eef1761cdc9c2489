import logging
from typing import List

from sqlalchemy.exc import IntegrityError

from shared.events import Event, EventType
from shared.pubsub import EventPublisher

from .errors import AlreadyApproved, UserNotFound, ValidationError, WaitlistEntryNotFound
from .identity import Caller, require_admin
from .models import db, User, WaitlistEntry, utcnow
from .storage import transaction

logger = logging.getLogger(__name__)

ENTRY_STATUSES = ('pending', 'approved')


class _JoinRace(Exception):
    """Another request created the same waitlist entry first."""


class WaitlistManager:
    """Holding area for accounts that registered without an access code."""

    def __init__(self, publisher: EventPublisher = None):
        self.publisher = publisher or EventPublisher()

    def join(self, user_id: int) -> WaitlistEntry:
        """Put a user on the waitlist. Joining twice returns the existing entry."""
        try:
            with transaction('join waitlist') as session:
                user = session.get(User, user_id)
                if user is None:
                    raise UserNotFound(user_id)
                if user.approved:
                    raise AlreadyApproved(user_id)

                entry = WaitlistEntry.query.filter_by(user_id=user_id).first()
                if entry is None:
                    entry = WaitlistEntry(user_id=user_id, status='pending')
                    session.add(entry)
                    try:
                        session.flush()
                    except IntegrityError as e:
                        raise _JoinRace() from e
        except _JoinRace:
            logger.debug(f"User {user_id} joined the waitlist concurrently; using the stored entry")
            entry = db.session.execute(
                db.select(WaitlistEntry).where(WaitlistEntry.user_id == user_id)
            ).scalar_one()
        return entry

    def list_entries(self, caller: Caller, status: str = None) -> List[WaitlistEntry]:
        require_admin(caller)
        query = WaitlistEntry.query
        if status:
            if status not in ENTRY_STATUSES:
                raise ValidationError('InvalidFilter', f"status must be one of {', '.join(ENTRY_STATUSES)}")
            query = query.filter_by(status=status)
        return query.order_by(WaitlistEntry.created_at.desc(), WaitlistEntry.id.desc()).all()

    def approve(self, entry_id: int, caller: Caller) -> WaitlistEntry:
        """Grant access to a waitlisted user."""
        require_admin(caller)
        with transaction('approve waitlist entry') as session:
            entry = session.get(WaitlistEntry, entry_id)
            if entry is None:
                raise WaitlistEntryNotFound(entry_id)
            if entry.status == 'approved':
                raise AlreadyApproved(entry.user_id)

            entry.status = 'approved'
            entry.approved_by = caller.user_id
            entry.approved_at = utcnow()
            entry.user.approved = True
            user_id = entry.user_id

        logger.info(f"Waitlist entry {entry_id} (user {user_id}) approved by user {caller.user_id}")
        self.publisher.publish_user_notification(user_id, Event(
            type=EventType.WAITLIST_APPROVED,
            data={'user_id': user_id}
        ))
        return entry

    def remove(self, entry_id: int, caller: Caller) -> None:
        require_admin(caller)
        with transaction('remove waitlist entry') as session:
            entry = session.get(WaitlistEntry, entry_id)
            if entry is None:
                raise WaitlistEntryNotFound(entry_id)
            session.delete(entry)
        logger.info(f"Waitlist entry {entry_id} removed by user {caller.user_id}")

    def pending_count(self) -> int:
        return db.session.execute(
            db.select(db.func.count(WaitlistEntry.id)).where(WaitlistEntry.status == 'pending')
        ).scalar_one()
