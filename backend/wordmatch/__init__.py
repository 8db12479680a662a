from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
import os
from config import Config

db = SQLAlchemy()
migrate = Migrate()
MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'migrations')
allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db, directory=MIGRATIONS_DIR)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Import and register blueprints here
    from wordmatch.main import main
    flask_app.register_blueprint(main)

    from wordmatch.api.games import games
    # Mount game routes under /api to match frontend API client
    flask_app.register_blueprint(games, url_prefix='/api/games')

    # Register Socket.IO event handlers
    # Importing here ensures the handlers bind to the initialized socketio instance
    from wordmatch.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    from wordmatch.errors import GameError

    @flask_app.errorhandler(GameError)
    def handle_game_error(exc):
        return jsonify({'error': exc.message}), exc.http_status

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the database."""
        import wordmatch.models  # noqa: F401
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    @click.command('list-topics')
    def list_topics_command():
        """Prints the topic pool per round type."""
        from wordmatch.services.games.topics import get_topic_pool
        with flask_app.app_context():
            pool = get_topic_pool()
            for round_type, topics in pool.to_dict().items():
                print(f'{round_type} ({len(topics)} topics)')
                for topic in topics:
                    print(f"  {topic['id']}: {topic['name']}")

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(list_topics_command)

    return flask_app
