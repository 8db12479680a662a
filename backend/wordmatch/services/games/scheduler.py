import time
from typing import Set, Tuple

from wordmatch import socketio
from wordmatch.errors import PersistenceError
from wordmatch.models import GAME_STATUS_IN_PROGRESS, Game
from .lifecycle import RoundLifecycleController


_scheduled_round_keys: Set[Tuple[int, int]] = set()


def schedule_round_timer(app, game_id: int) -> None:
    """Schedule an automatic close for the open round of the given game.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set, in which
      case the timer runs synchronously on the calling thread
    - Ensures a single timer per (game_id, round)
    - On fire, calls close_if_due; a round that was already closed early by
      submissions is left alone
    - Re-arms itself for the next round when the close opened one
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return

    with app.app_context():
        game = Game.query.filter_by(id=game_id).first()
        if not game or game.status != GAME_STATUS_IN_PROGRESS:
            return
        rnd = game.open_round
        if rnd is None:
            return

        gid = game.id
        round_number = rnd.round_number
        key = (game.id, round_number)
        if key in _scheduled_round_keys:
            app.logger.info(f"[timer-skip] game={game.id} round={round_number} already scheduled")
            return
        _scheduled_round_keys.add(key)

        deadline = rnd.deadline()
        delay = max(0.0, deadline - time.time())
        app.logger.info(
            f"[timer-set] game={game.id} round={round_number} delay={delay:.1f}s deadline={deadline}"
        )

    if app.config.get('TESTING'):
        _fire_round_timer(app, gid, round_number, delay)
    else:
        socketio.start_background_task(_fire_round_timer, app, gid, round_number, delay)


def _fire_round_timer(app, gid: int, expected_round: int, delay: float) -> None:
    # heartbeat sleep loop if enabled
    try:
        hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0))
    except (TypeError, ValueError):
        hb = 0
    if hb and hb > 0:
        slept = 0.0
        while slept < delay:
            step = min(hb, delay - slept)
            time.sleep(step)
            slept += step
            app.logger.info(
                f"[timer-heartbeat] game={gid} round={expected_round} remaining={max(0.0, delay - slept):.1f}s"
            )
    else:
        time.sleep(delay)
    with app.app_context():
        _scheduled_round_keys.discard((gid, expected_round))
        g = Game.query.filter_by(id=gid).first()
        if not g:
            return
        app.logger.info(
            f"[timer-fire] game={gid} expected_round={expected_round} actual_round={g.current_round} status={g.status}"
        )
        if g.status != GAME_STATUS_IN_PROGRESS or int(g.current_round or 0) != expected_round:
            app.logger.info(f"[timer-abort] game={gid} mismatch status/round")
            return

        try:
            result = RoundLifecycleController(g).close_if_due()
        except PersistenceError:
            # the round stays open; the next observer will retry the close
            app.logger.exception(f"[timer-error] game={gid} round={expected_round}")
            return
        if result is None:
            # woke a hair early; try again at the deadline
            if g.open_round is not None and g.open_round.round_number == expected_round:
                schedule_round_timer(app, gid)
            return
        socketio.emit('state_update', {'game_code': g.game_code}, to=f"game:{g.game_code}", namespace='/ws')
        if result.next_round is not None:
            schedule_round_timer(app, g.id)
