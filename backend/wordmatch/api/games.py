from flask import Blueprint, jsonify, request, current_app
from wordmatch import socketio
from wordmatch.models import Game
from wordmatch.services.games.lifecycle import (
    RoundLifecycleController,
    create_game as svc_create_game,
    join_game as svc_join_game,
)
from wordmatch.services.games.scheduler import schedule_round_timer as svc_schedule_round_timer


games = Blueprint('games', __name__)


def _get_game(game_code: str) -> Game:
    return Game.query.filter_by(game_code=game_code.upper()).first_or_404()


def _emit_state(game: Game) -> None:
    socketio.emit('state_update', {'game_code': game.game_code}, to=f"game:{game.game_code}", namespace='/ws')


def _schedule_round_timer(game: Game) -> None:
    svc_schedule_round_timer(current_app._get_current_object(), game.id)


@games.route('/create', methods=['POST'])
def create_game():
    data = request.get_json(silent=True) or {}
    name = data.get('name')
    if not name:
        return jsonify({'error': 'Player name is required'}), 400
    game, host = svc_create_game(
        name,
        round_count=data.get('round_count'),
        time_per_round=data.get('time_per_round'),
        max_players=data.get('max_players'),
    )
    return jsonify({
        'message': 'New game created!',
        'game_code': game.game_code,
        'game': game.to_dict(),
        'player': host.to_dict(),
    }), 201


@games.route('/join', methods=['POST'])
def join_game():
    data = request.get_json(silent=True) or {}
    game_code = data.get('game_code')
    name = data.get('name')
    if not all([game_code, name]):
        return jsonify({'error': 'Game code and player name are required'}), 400
    if not isinstance(game_code, str):
        return jsonify({'error': 'Game code must be a string'}), 400

    game = Game.query.filter_by(game_code=game_code.strip().upper()).first()
    if not game:
        return jsonify({'error': 'Game not found'}), 404

    player = svc_join_game(game, name)
    _emit_state(game)
    return jsonify({'game': game.to_dict(), 'player': player.to_dict()}), 201


@games.route('/<string:game_code>/state', methods=['GET'])
def get_game_state(game_code):
    game = _get_game(game_code)
    return jsonify(game.to_dict())


@games.route('/<string:game_code>/start', methods=['POST'])
def start_game(game_code):
    data = request.get_json(silent=True) or {}
    player_id = data.get('player_id')
    if player_id is None:
        return jsonify({'error': 'Player ID is required'}), 400

    game = _get_game(game_code)
    RoundLifecycleController(game).start_game(player_id)
    _emit_state(game)
    _schedule_round_timer(game)
    return jsonify(game.to_dict())


@games.route('/<string:game_code>/submissions', methods=['POST'])
def submit_words(game_code):
    data = request.get_json(silent=True) or {}
    player_id = data.get('player_id')
    words = data.get('words')
    if words is None and data.get('word') is not None:
        words = [data.get('word')]
    if player_id is None or words is None:
        return jsonify({'error': 'Player ID and words are required'}), 400

    game = _get_game(game_code)
    controller = RoundLifecycleController(game)
    saved = controller.submit_words(player_id, words, is_final=bool(data.get('is_final')))
    # Early close: the last player to submit may complete the round
    result = controller.close_if_due()
    _emit_state(game)
    if result is not None and result.next_round is not None:
        _schedule_round_timer(game)
    return jsonify({
        'message': 'Words submitted',
        'submissions': [s.to_dict() for s in saved],
        'round_closed': result is not None,
    }), 201


@games.route('/<string:game_code>/submissions/finalize', methods=['POST'])
def finalize_submissions(game_code):
    data = request.get_json(silent=True) or {}
    player_id = data.get('player_id')
    if player_id is None:
        return jsonify({'error': 'Player ID is required'}), 400

    game = _get_game(game_code)
    marked = RoundLifecycleController(game).finalize_submissions(player_id)
    _emit_state(game)
    return jsonify({'message': 'Submissions finalized', 'finalized': marked})


@games.route('/<string:game_code>/rounds/close', methods=['POST'])
def close_round(game_code):
    """Attempt to close the open round if it is due. Safe to call repeatedly."""
    game = _get_game(game_code)
    result = RoundLifecycleController(game).close_if_due()
    if result is None:
        return jsonify({'closed': False, 'game': game.to_dict()})
    _emit_state(game)
    if result.next_round is not None:
        _schedule_round_timer(game)
    payload = result.to_dict()
    payload['closed'] = True
    payload['game'] = game.to_dict()
    return jsonify(payload)


@games.route('/<string:game_code>/rounds/next', methods=['POST'])
def start_next_round(game_code):
    data = request.get_json(silent=True) or {}
    player_id = data.get('player_id')
    if player_id is None:
        return jsonify({'error': 'Player ID is required'}), 400

    game = _get_game(game_code)
    rnd = RoundLifecycleController(game).open_next_round(player_id)
    if rnd is None:
        return jsonify({'message': 'No round to start', 'started': False, 'game': game.to_dict()})
    _emit_state(game)
    _schedule_round_timer(game)
    return jsonify({'message': 'New round started successfully', 'started': True, 'game': game.to_dict()})


@games.route('/<string:game_code>/rounds/<int:round_number>/scores', methods=['GET'])
def get_round_scores(game_code, round_number):
    game = _get_game(game_code)
    results = RoundLifecycleController(game).round_results(round_number)
    return jsonify({
        'round_number': round_number,
        'scores': results,
        'total_scores': {str(p.id): p.score for p in game.players},
    })
