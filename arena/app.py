import logging
import os
from datetime import datetime

from flask import Flask, request, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from shared.pubsub import EventPublisher

from .access_codes import AccessCodeLedger
from .config import config
from .errors import ArenaError, MissingField, SubmissionNotFound, ValidationError
from .identity import USER_ID_HEADER, resolve_caller
from .leaderboard import LeaderboardService
from .models import db
from .submission_manager import SubmissionManager
from .tournament_registry import TournamentRegistry
from .voting_engine import VotingEngine
from .waitlist import WaitlistManager

logger = logging.getLogger(__name__)


def create_app(config_name: str = None, overrides: dict = None) -> Flask:
    """Application factory for the clip arena service."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config.get(config_name, config['default']))
    if overrides:
        app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)

    # Initialize services
    publisher = EventPublisher.from_url(app.config.get('REDIS_URL'))
    app.publisher = publisher
    app.access_codes = AccessCodeLedger(publisher)
    app.waitlist = WaitlistManager(publisher)
    app.registry = TournamentRegistry(publisher)
    app.submissions = SubmissionManager(publisher)
    app.voting = VotingEngine(publisher)
    app.leaderboard = LeaderboardService()

    # Create tables
    with app.app_context():
        db.create_all()

    register_error_handlers(app)
    register_api_routes(app)

    from .routes import access
    app.register_blueprint(access.bp)

    return app


def register_error_handlers(app: Flask):

    @app.errorhandler(ArenaError)
    def handle_arena_error(error: ArenaError):
        if error.status_code >= 500:
            logger.error(f"{error.kind}: {error.message}")
        return jsonify(error.to_dict()), error.status_code


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _parse_datetime(value, field: str):
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError('InvalidSchedule', f"{field} must be an ISO 8601 timestamp", field=field)


def register_api_routes(app: Flask):
    """Register API routes."""

    # ==================== Tournaments ====================

    @app.route('/api/v1/tournaments', methods=['GET'])
    def api_list_tournaments():
        """List tournaments with optional filtering."""
        status = request.args.get('status')
        limit = request.args.get('limit', 50, type=int)
        offset = request.args.get('offset', 0, type=int)

        tournaments = app.registry.list_tournaments(status=status, limit=limit, offset=offset)

        return jsonify({
            'tournaments': [t.to_dict() for t in tournaments],
            'count': len(tournaments),
            'limit': limit,
            'offset': offset
        })

    @app.route('/api/v1/tournaments', methods=['POST'])
    def api_create_tournament():
        """Create a new tournament (moderators only)."""
        caller = resolve_caller()
        data = json_body()

        tournament = app.registry.create_tournament(
            caller,
            name=data.get('name'),
            game=data.get('game'),
            description=data.get('description'),
            starts_at=_parse_datetime(data.get('starts_at'), 'starts_at'),
            ends_at=_parse_datetime(data.get('ends_at'), 'ends_at')
        )
        return jsonify(tournament.to_dict()), 201

    @app.route('/api/v1/tournaments/<tournament_id>', methods=['GET'])
    def api_get_tournament(tournament_id: str):
        """Get tournament details."""
        tournament = app.registry.require_tournament(tournament_id)
        return jsonify(tournament.to_dict())

    @app.route('/api/v1/tournaments/<tournament_id>/<action>', methods=['POST'])
    def api_tournament_action(tournament_id: str, action: str):
        """Lifecycle actions: start, end, cancel."""
        caller = resolve_caller()
        tournament = app.registry.change_status(tournament_id, action, caller)
        return jsonify(tournament.to_dict())

    # ==================== Submissions ====================

    @app.route('/api/v1/tournaments/<tournament_id>/submissions', methods=['POST'])
    def api_submit_clip(tournament_id: str):
        """Enter a clip into a tournament."""
        caller = resolve_caller()
        data = json_body()

        submission = app.submissions.submit(
            user_id=caller.user_id,
            tournament_id=tournament_id,
            title=data.get('title'),
            clip_url=data.get('clip_url'),
            description=data.get('description')
        )
        return jsonify(submission.to_dict()), 201

    @app.route('/api/v1/tournaments/<tournament_id>/submissions', methods=['GET'])
    def api_list_submissions(tournament_id: str):
        """Submissions in ranking order. Non-admins only see approved entries."""
        status = request.args.get('status')
        caller = resolve_caller() if request.headers.get(USER_ID_HEADER) else None

        if caller is not None and caller.is_admin:
            listing = [s.to_dict() for s in app.submissions.list_submissions(tournament_id, status)]
        elif caller is not None:
            listing = app.voting.votable_submissions(tournament_id, caller.user_id)
        else:
            listing = [s.to_dict() for s in app.voting.ranked_submissions(tournament_id)]

        return jsonify({
            'tournament_id': tournament_id,
            'submissions': listing,
            'count': len(listing)
        })

    @app.route('/api/v1/submissions/<int:submission_id>', methods=['GET'])
    def api_get_submission(submission_id: int):
        submission = app.submissions.get_submission(submission_id)
        if submission is None:
            raise SubmissionNotFound(submission_id)
        return jsonify(submission.to_dict())

    @app.route('/api/v1/submissions/<int:submission_id>/moderate', methods=['POST'])
    def api_moderate_submission(submission_id: int):
        """Approve, reject or reset a submission."""
        caller = resolve_caller()
        status = json_body().get('status')
        if not status:
            raise MissingField('status')

        submission = app.submissions.moderate(submission_id, status, caller)
        return jsonify(submission.to_dict())

    @app.route('/api/v1/users/<int:user_id>/submissions', methods=['GET'])
    def api_user_submissions(user_id: int):
        submissions = app.submissions.list_user_submissions(user_id)
        return jsonify({
            'user_id': user_id,
            'submissions': [s.to_dict() for s in submissions]
        })

    # ==================== Voting ====================

    @app.route('/api/v1/submissions/<int:submission_id>/vote', methods=['POST'])
    def api_cast_vote(submission_id: int):
        """Cast or change a ranked vote (1st, 2nd, 3rd)."""
        caller = resolve_caller()
        rank = json_body().get('rank')

        result = app.voting.cast_or_change_vote(caller.user_id, submission_id, rank)
        return jsonify({'submission_id': submission_id, 'rank': rank, **result})

    @app.route('/api/v1/submissions/<int:submission_id>/vote', methods=['DELETE'])
    def api_retract_vote(submission_id: int):
        caller = resolve_caller()
        result = app.voting.retract_vote(caller.user_id, submission_id)
        return jsonify({'submission_id': submission_id, **result})

    @app.route('/api/v1/submissions/<int:submission_id>/like', methods=['POST'])
    def api_toggle_like(submission_id: int):
        caller = resolve_caller()
        result = app.voting.toggle_like(caller.user_id, submission_id)
        return jsonify({'submission_id': submission_id, **result})

    # ==================== Leaderboard ====================

    @app.route('/api/v1/leaderboard', methods=['GET'])
    def api_leaderboard():
        limit = request.args.get('limit', app.config.get('LEADERBOARD_DEFAULT_LIMIT', 100), type=int)
        entries = app.leaderboard.compute_leaderboard(limit=limit)
        return jsonify({
            'entries': [e.to_dict() for e in entries],
            'count': len(entries)
        })

    @app.route('/api/v1/leaderboard/me', methods=['GET'])
    def api_my_standing():
        caller = resolve_caller()
        return jsonify(app.leaderboard.user_standing(caller.user_id).to_dict())

    # ==================== Health Check ====================

    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        try:
            db.session.execute(text("SELECT 1"))
            db_ok = True
        except SQLAlchemyError:
            db.session.rollback()
            db_ok = False

        events = 'disabled'
        if app.publisher.enabled:
            events = 'connected' if app.publisher.ping() else 'disconnected'

        status = 'healthy' if db_ok else 'unhealthy'
        code = 200 if db_ok else 503

        return jsonify({
            'status': status,
            'database': 'connected' if db_ok else 'disconnected',
            'events': events
        }), code
