"""
Pytest configuration and fixtures for clip arena tests.
"""
import os
import sys
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from arena.app import create_app
from arena.identity import Caller
from arena.models import db, User, Tournament, Submission, ROLE_ADMIN, ROLE_USER
from shared.pubsub import EventPublisher


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Database session with every table emptied."""
    db.session.remove()

    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture
def make_user(db_session):
    """Factory for users; approved ordinary users by default."""
    def _make_user(display_name='Player', role=ROLE_USER, approved=True):
        user = User(display_name=display_name, role=role, approved=approved)
        db_session.add(user)
        db_session.commit()
        return user
    return _make_user


@pytest.fixture
def admin(make_user):
    return make_user('Admin', role=ROLE_ADMIN, approved=True)


@pytest.fixture
def admin_caller(admin):
    return Caller.for_user(admin)


@pytest.fixture
def player(make_user):
    return make_user('Player One')


@pytest.fixture
def voters(make_user):
    return [make_user(f'Voter {i + 1}') for i in range(3)]


@pytest.fixture
def active_tournament(db_session, admin):
    tournament = Tournament(
        tournament_id='test-clip-cup',
        name='Test Clip Cup',
        game='Rocket League',
        status='active',
        created_by=admin.id
    )
    db_session.add(tournament)
    db_session.commit()
    return tournament


@pytest.fixture
def upcoming_tournament(db_session, admin):
    tournament = Tournament(
        tournament_id='test-upcoming-cup',
        name='Upcoming Cup',
        status='upcoming',
        created_by=admin.id
    )
    db_session.add(tournament)
    db_session.commit()
    return tournament


@pytest.fixture
def make_submission(db_session, active_tournament):
    """Factory for submissions inserted directly with a given status."""
    def _make_submission(user, status='approved', tournament=None, title=None):
        submission = Submission(
            tournament_id=(tournament or active_tournament).id,
            user_id=user.id,
            title=title or f"{user.display_name}'s clip",
            clip_url=f'https://clips.example.com/{user.id}.mp4',
            status=status,
            score=0
        )
        db_session.add(submission)
        db_session.commit()
        return submission
    return _make_submission


@pytest.fixture
def approved_submission(make_submission, player):
    return make_submission(player, status='approved')


@pytest.fixture
def mock_redis(mocker):
    """Redis client double for event publishing."""
    client = mocker.MagicMock()
    client.publish.return_value = 1
    client.ping.return_value = True
    return client


@pytest.fixture
def publisher(mock_redis):
    return EventPublisher(mock_redis)
