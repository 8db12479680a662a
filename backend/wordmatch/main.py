from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from wordmatch import db
from wordmatch.services.games.topics import get_topic_pool

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Word Match game server!'})

@main.route('/api/topics', methods=['GET'])
def list_topics():
    return jsonify(get_topic_pool().to_dict())

@main.route('/api/check-connection', methods=['GET'])
def check_connection():
    try:
        db.session.execute(text('SELECT 1'))
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"[check-connection] database unreachable: {exc}")
        return jsonify({'connected': False, 'error': 'Database unreachable'}), 503
    return jsonify({'connected': True})
