import os
import sys
import pytest

# Ensure the backend root (containing the `wordmatch` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from wordmatch import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    DEFAULT_ROUND_COUNT = 5
    DEFAULT_TIME_PER_ROUND_SEC = 60
    DEFAULT_MAX_PLAYERS = 8
    MIN_PLAYERS = 2
    MAX_WORDS_PER_ROUND = 5
    MAX_WORD_LENGTH = 100
    ROUND_CLOSE_MIN_WORDS = 1
    AUTO_START_NEXT_ROUND = True
    TOPICS_FILE = None


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import wordmatch.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


@pytest.fixture()
def make_game(flask_app):
    """Create a lobby game with a host plus ``players - 1`` guests."""
    from wordmatch.services.games.lifecycle import create_game, join_game

    def _make(players=3, round_count=5, time_per_round=60):
        game, host = create_game('Host', round_count=round_count, time_per_round=time_per_round)
        roster = [host]
        for i in range(1, players):
            roster.append(join_game(game, f'Guest{i}'))
        return game, roster

    return _make
