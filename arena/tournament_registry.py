import logging
from datetime import datetime
from typing import List, Optional

from shared.events import Event, EventType, tournament_status_event
from shared.pubsub import EventPublisher
from shared.state_machine import TournamentStateMachine, TournamentState, TransitionError

from .errors import InvalidTransition, TournamentNotFound, ValidationError, optional_text, require_text
from .identity import Caller, require_admin
from .models import Tournament
from .name_generator import generate_tournament_slug
from .storage import transaction

logger = logging.getLogger(__name__)


class TournamentRegistry:
    """
    Manages tournament records:
    - Create tournaments (moderators only)
    - Look up and list tournaments
    - Move tournaments through upcoming -> active -> ended / cancelled
    """

    def __init__(self, publisher: EventPublisher = None):
        self.publisher = publisher or EventPublisher()

    def create_tournament(
        self,
        caller: Caller,
        name: str,
        game: str = None,
        description: str = None,
        starts_at: datetime = None,
        ends_at: datetime = None
    ) -> Tournament:
        """Create a new tournament in upcoming state."""
        require_admin(caller)
        name = require_text(name, 'name')
        game = optional_text(game, 'game')
        description = optional_text(description, 'description')
        if starts_at and ends_at and ends_at <= starts_at:
            raise ValidationError('InvalidSchedule', "Tournament must end after it starts")

        with transaction('create tournament') as session:
            tournament = Tournament(
                tournament_id=self._unique_slug(),
                name=name,
                game=game,
                description=description,
                status=TournamentState.UPCOMING.value,
                created_by=caller.user_id,
                starts_at=starts_at,
                ends_at=ends_at
            )
            session.add(tournament)

        logger.info(f"Tournament {tournament.tournament_id} created by user {caller.user_id}")
        self.publisher.publish_global(Event(
            type=EventType.TOURNAMENT_CREATED,
            tournament_id=tournament.tournament_id,
            data={'name': tournament.name}
        ))
        return tournament

    def _unique_slug(self) -> str:
        slug = generate_tournament_slug()
        while Tournament.query.filter_by(tournament_id=slug).first() is not None:
            slug = generate_tournament_slug()
        return slug

    def get_tournament(self, tournament_id: str) -> Optional[Tournament]:
        """Get tournament by its public ID."""
        return Tournament.query.filter_by(tournament_id=tournament_id).first()

    def require_tournament(self, tournament_id: str) -> Tournament:
        tournament = self.get_tournament(tournament_id)
        if tournament is None:
            raise TournamentNotFound(tournament_id)
        return tournament

    def list_tournaments(
        self,
        status: str = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Tournament]:
        """List tournaments with optional filtering."""
        query = Tournament.query

        if status:
            try:
                TournamentState(status)
            except ValueError:
                states = ', '.join(s.value for s in TournamentState)
                raise ValidationError('InvalidFilter', f"status must be one of {states}")
            query = query.filter_by(status=status)

        query = query.order_by(Tournament.created_at.desc(), Tournament.id.desc())
        return query.offset(offset).limit(limit).all()

    def change_status(self, tournament_id: str, action: str, caller: Caller) -> Tournament:
        """Apply a lifecycle action (start, end, cancel) to a tournament."""
        require_admin(caller)

        with transaction('change tournament status'):
            tournament = self.require_tournament(tournament_id)
            sm = TournamentStateMachine.from_state_string(tournament.status)
            old_state = sm.state.value
            try:
                new_state = sm.transition(action)
            except TransitionError as e:
                raise InvalidTransition(str(e), tournament_id=tournament_id, action=action) from e
            tournament.status = new_state.value

        logger.info(f"Tournament {tournament_id}: {old_state} -> {new_state.value} by user {caller.user_id}")
        event = tournament_status_event(tournament_id, old_state, new_state.value)
        self.publisher.publish_global(event)
        self.publisher.publish_tournament_event(tournament_id, event)
        return tournament
