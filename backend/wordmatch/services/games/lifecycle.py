"""Round lifecycle: start a game, accept words, close and score rounds, advance.

One controller instance is built per game per unit of work (request, timer
tick). Topic usage is rebuilt from the game's persisted rounds, so instances
are cheap and games never share state.

Closing a round is a compare-and-set on ``round.end_time IS NULL`` executed as
a single UPDATE. Only the caller whose UPDATE touched the row goes on to score,
and the stamp, the RoundScore rows, the player totals and the game advance are
committed together. Any failure rolls all of it back, leaving the round open
for the next close attempt.
"""

import json
import random
import time
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from wordmatch import db
from wordmatch.errors import (
    ConflictError,
    GameError,
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    ValidationError,
)
from wordmatch.models import (
    GAME_STATUS_COMPLETED,
    GAME_STATUS_IN_PROGRESS,
    GAME_STATUS_LOBBY,
    ROUND_TYPE_MATCH,
    ROUND_TYPE_UNMATCH,
    ROUND_TYPES,
    Game,
    Player,
    Round,
    RoundScore,
    Submission,
    normalize_word,
)
from .scoring import PlayerRoundScore, score_round
from .topics import TopicPool, TopicTracker, get_topic_pool


def _config_int(name: str, default: int) -> int:
    try:
        return int(current_app.config.get(name, default))
    except (TypeError, ValueError):
        return default


def _commit(action: str) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"[persist-fail] action={action} error={exc}")
        raise PersistenceError(f"Failed to {action}") from exc


def _clean_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError('Player name is required')
    name = name.strip()
    if len(name) > 50:
        raise ValidationError('Player name must be at most 50 characters')
    return name


def _positive_int(value, field: str, default: int) -> int:
    if value is None:
        return default
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer')
    if value < 1:
        raise ValidationError(f'{field} must be at least 1')
    return value


def next_round_type(previous: str) -> str:
    return ROUND_TYPE_UNMATCH if previous == ROUND_TYPE_MATCH else ROUND_TYPE_MATCH


def create_game(host_name, round_count=None, time_per_round=None, max_players=None):
    """Create a lobby game with its host player. Returns ``(game, host)``."""
    name = _clean_name(host_name)
    game = Game(
        status=GAME_STATUS_LOBBY,
        round_count=_positive_int(round_count, 'round_count', _config_int('DEFAULT_ROUND_COUNT', 5)),
        current_round=0,
        time_per_round=_positive_int(time_per_round, 'time_per_round', _config_int('DEFAULT_TIME_PER_ROUND_SEC', 60)),
        max_players=_positive_int(max_players, 'max_players', _config_int('DEFAULT_MAX_PLAYERS', 8)),
    )
    db.session.add(game)
    try:
        db.session.flush()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError('Failed to create game') from exc
    host = Player(name=name, game_id=game.id, score=0, is_host=True)
    db.session.add(host)
    _commit('create game')
    current_app.logger.info(f"[create] game={game.id} code={game.game_code} rounds={game.round_count}")
    return game, host


def join_game(game: Game, name) -> Player:
    name = _clean_name(name)
    if game.status != GAME_STATUS_LOBBY:
        raise ConflictError('Cannot join a game that has already started')
    if Player.query.filter_by(game_id=game.id).count() >= (game.max_players or 0):
        raise ConflictError('Game is full')
    player = Player(name=name, game_id=game.id, score=0, is_host=False)
    db.session.add(player)
    _commit('join game')
    current_app.logger.info(f"[join] game={game.id} player={player.id}")
    return player


class RoundCloseResult:
    """Outcome of the close attempt that won the compare-and-set."""

    def __init__(self, round: Round, scores: Dict[int, PlayerRoundScore],
                 next_round: Optional[Round] = None, game_completed: bool = False):
        self.round = round
        self.scores = scores
        self.next_round = next_round
        self.game_completed = game_completed

    def to_dict(self):
        return {
            'round': self.round.to_dict(),
            'scores': {str(pid): s.to_dict() for pid, s in self.scores.items()},
            'next_round': self.next_round.to_dict() if self.next_round else None,
            'game_completed': self.game_completed,
        }


class RoundLifecycleController:

    def __init__(self, game: Game, topic_pool: Optional[TopicPool] = None,
                 rng: Optional[random.Random] = None, clock=None,
                 tracker: Optional[TopicTracker] = None):
        self.game = game
        self.topic_pool = topic_pool or get_topic_pool()
        self.rng = rng or random.Random()
        self.clock = clock or time.time
        self.tracker = tracker or TopicTracker.from_rounds(self.topic_pool, game.rounds)

    # ---- helpers ----

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else now

    def _player(self, player_id) -> Player:
        try:
            pid = int(player_id)
        except (TypeError, ValueError):
            raise ValidationError('Invalid player')
        player = Player.query.filter_by(id=pid, game_id=self.game.id).first()
        if not player:
            raise ValidationError('Invalid player')
        return player

    def _require_host(self, player_id, action: str) -> Player:
        player = self._player(player_id)
        if not player.is_host:
            raise PermissionDeniedError(f'Only the host can {action}')
        return player

    def _rollback(self) -> None:
        db.session.rollback()
        # the tracker may hold a draw for a round that was never written
        self.tracker = TopicTracker.from_rounds(self.topic_pool, self.game.rounds)

    def _lock_open_round(self) -> Round:
        rnd = self.game.open_round
        if self.game.status != GAME_STATUS_IN_PROGRESS or rnd is None:
            raise ConflictError('No round is accepting submissions')
        # closers block on this row lock until the write below commits
        rnd = Round.query.filter_by(id=rnd.id).with_for_update().populate_existing().one()
        if rnd.end_time is not None:
            db.session.rollback()
            raise ConflictError('No round is accepting submissions')
        return rnd

    def _commit_while_open(self, rnd: Round, action: str) -> None:
        try:
            db.session.flush()
            closed_at = db.session.query(Round.end_time).filter(Round.id == rnd.id).scalar()
            if closed_at is not None:
                db.session.rollback()
                raise ConflictError('Round closed before the words were saved')
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError('Word already submitted') from exc
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error(f"[persist-fail] action={action} game={self.game.id} error={exc}")
            raise PersistenceError('Failed to save submission') from exc

    def _open_round(self, number: int, round_type: str, now: float) -> Round:
        topic = self.tracker.draw(round_type, self.rng)
        roster = [p.id for p in Player.query.filter_by(game_id=self.game.id).order_by(Player.id).all()]
        rnd = Round(
            game_id=self.game.id,
            round_number=number,
            type=round_type,
            topic=topic.name,
            topic_id=topic.id,
            start_time=now,
            end_time=None,
            roster=json.dumps(roster),
        )
        self.game.current_round = number
        db.session.add(rnd)
        db.session.add(self.game)
        return rnd

    # ---- lifecycle ----

    def start_game(self, player_id, now: Optional[float] = None) -> Round:
        """Host-only: leave the lobby and open round 1 with a random type."""
        self._require_host(player_id, 'start the game')
        if self.game.status == GAME_STATUS_IN_PROGRESS:
            # Idempotent start: already started
            return self.game.open_round or self.game.latest_round
        if self.game.status != GAME_STATUS_LOBBY:
            raise ConflictError('Game has already finished')

        min_players = _config_int('MIN_PLAYERS', 2)
        if Player.query.filter_by(game_id=self.game.id).count() < min_players:
            raise ValidationError(f'At least {min_players} players are required to start the game')

        round_type = self.rng.choice(ROUND_TYPES)
        self.game.status = GAME_STATUS_IN_PROGRESS
        try:
            rnd = self._open_round(1, round_type, self._now(now))
            db.session.commit()
        except GameError:
            self._rollback()
            raise
        except SQLAlchemyError as exc:
            self._rollback()
            current_app.logger.error(f"[persist-fail] action=start game={self.game.id} error={exc}")
            raise PersistenceError('Failed to start game') from exc
        current_app.logger.info(
            f"[start] game={self.game.id} round=1 type={rnd.type} topic={rnd.topic_id}"
        )
        return rnd

    def submit_words(self, player_id, words, is_final: bool = False, now: Optional[float] = None) -> List[Submission]:
        """Record words for the open round.

        Words are trimmed; a word the player already submitted (compared
        case-insensitively) is not stored twice, only its final flag is raised.
        """
        player = self._player(player_id)
        if isinstance(words, str):
            words = [words]
        if not isinstance(words, (list, tuple)) or not all(isinstance(w, str) for w in words):
            raise ValidationError('words must be a list of strings')
        cleaned = [w.strip() for w in words if w.strip()]
        if not cleaned:
            raise ValidationError('At least one non-empty word is required')
        max_len = _config_int('MAX_WORD_LENGTH', 100)
        if any(len(w) > max_len for w in cleaned):
            raise ValidationError(f'Words must be at most {max_len} characters')

        rnd = self._lock_open_round()

        existing = {s.normalized: s for s in rnd.submissions.filter_by(player_id=player.id).all()}
        incoming = []
        for w in cleaned:
            norm = normalize_word(w)
            if norm not in existing and all(norm != n for n, _ in incoming):
                incoming.append((norm, w))
        max_words = _config_int('MAX_WORDS_PER_ROUND', 5)
        if len(existing) + len(incoming) > max_words:
            raise ValidationError(f'At most {max_words} words per round')

        stamp = self._now(now)
        touched = []
        for w in cleaned:
            sub = existing.get(normalize_word(w))
            if sub is not None and is_final and not sub.is_final:
                sub.is_final = True
                db.session.add(sub)
                touched.append(sub)
        for norm, w in incoming:
            sub = Submission(round_id=rnd.id, player_id=player.id, word=w, normalized=norm,
                             is_final=bool(is_final), submitted_at=stamp)
            db.session.add(sub)
            touched.append(sub)
        self._commit_while_open(rnd, 'submit')
        return touched

    def finalize_submissions(self, player_id) -> int:
        """Mark every word the player has in the open round as final."""
        player = self._player(player_id)
        rnd = self._lock_open_round()
        marked = (
            Submission.query
            .filter(Submission.round_id == rnd.id, Submission.player_id == player.id,
                    Submission.is_final.is_(False))
            .update({Submission.is_final: True}, synchronize_session='fetch')
        )
        self._commit_while_open(rnd, 'finalize')
        current_app.logger.info(
            f"[finalize] game={self.game.id} round={rnd.round_number} player={player.id} marked={marked}"
        )
        return marked

    def is_close_due(self, rnd: Round, now: Optional[float] = None) -> bool:
        """Time is up, or everyone on the round's roster has submitted enough words."""
        if rnd.end_time is not None:
            return False
        if self._now(now) >= rnd.deadline():
            return True
        roster = rnd.roster_ids
        if not roster:
            return False
        min_words = max(1, _config_int('ROUND_CLOSE_MIN_WORDS', 1))
        rows = (
            db.session.query(Submission.player_id, db.func.count(Submission.id))
            .filter(Submission.round_id == rnd.id)
            .group_by(Submission.player_id)
            .all()
        )
        counts = {pid: n for pid, n in rows}
        return all(counts.get(pid, 0) >= min_words for pid in roster)

    def _player_words(self, rnd: Round) -> Dict[int, List[str]]:
        player_words: Dict[int, List[str]] = {pid: [] for pid in rnd.roster_ids}
        for sub in rnd.submissions.order_by(Submission.id).all():
            player_words.setdefault(sub.player_id, []).append(sub.word)
        return player_words

    def close_round(self, round_id, now: Optional[float] = None) -> Optional[RoundCloseResult]:
        """Close, score and advance. ``None`` when the round was already closed."""
        try:
            rid = int(round_id)
        except (TypeError, ValueError):
            raise ValidationError('Invalid round')
        rnd = Round.query.filter_by(id=rid, game_id=self.game.id).first()
        if not rnd:
            raise ValidationError('Invalid round')
        if rnd.end_time is not None:
            current_app.logger.info(f"[close-skip] game={self.game.id} round={rnd.round_number} already closed")
            return None

        stamp = self._now(now)
        try:
            won = (
                Round.query
                .filter(Round.id == rnd.id, Round.end_time.is_(None))
                .update({Round.end_time: stamp}, synchronize_session='fetch')
            )
            if won != 1:
                db.session.rollback()
                current_app.logger.info(f"[close-skip] game={self.game.id} round={rnd.round_number} lost race")
                return None
            db.session.refresh(rnd)

            scores = score_round(self._player_words(rnd), rnd.type)
            for pid, result in scores.items():
                db.session.add(RoundScore(
                    round_id=rnd.id,
                    player_id=pid,
                    score=result.score,
                    matched_words=json.dumps(result.matched_words),
                    bonus_awarded=result.bonus_awarded,
                ))
                if result.score:
                    Player.query.filter_by(id=pid).update(
                        {Player.score: Player.score + result.score}, synchronize_session=False
                    )

            next_rnd = None
            completed = rnd.round_number >= (self.game.round_count or 0)
            if completed:
                self.game.status = GAME_STATUS_COMPLETED
                db.session.add(self.game)
            elif current_app.config.get('AUTO_START_NEXT_ROUND', True):
                next_rnd = self._open_round(rnd.round_number + 1, next_round_type(rnd.type), stamp)
            db.session.commit()
        except GameError:
            self._rollback()
            raise
        except SQLAlchemyError as exc:
            self._rollback()
            current_app.logger.error(
                f"[persist-fail] action=close game={self.game.id} round={rnd.round_number} error={exc}"
            )
            raise PersistenceError('Failed to close round') from exc

        # player totals were updated in SQL; reload on next access
        for player in self.game.players:
            db.session.expire(player)
        current_app.logger.info(
            f"[round-close] game={self.game.id} round={rnd.round_number} type={rnd.type} players={len(scores)}"
        )
        if completed:
            current_app.logger.info(f"[finish] game={self.game.id} finished at round={rnd.round_number}")
        elif next_rnd is not None:
            current_app.logger.info(
                f"[next_round] game={self.game.id} advance round {rnd.round_number} -> {next_rnd.round_number} "
                f"type={next_rnd.type} topic={next_rnd.topic_id}"
            )
        return RoundCloseResult(rnd, dict(scores), next_rnd, completed)

    def close_if_due(self, now: Optional[float] = None) -> Optional[RoundCloseResult]:
        """Close the open round if its deadline passed or everyone submitted.

        Safe to call redundantly and concurrently; all but one caller get ``None``.
        """
        if self.game.status != GAME_STATUS_IN_PROGRESS:
            return None
        rnd = self.game.open_round
        if rnd is None or not self.is_close_due(rnd, now):
            return None
        return self.close_round(rnd.id, now)

    def open_next_round(self, player_id=None, now: Optional[float] = None) -> Optional[Round]:
        """Open the round after the latest closed one.

        ``None`` when there is nothing to open: the game is not in progress, a
        round is still open, or round_count has been reached.
        """
        if player_id is not None:
            self._require_host(player_id, 'start a new round')
        if self.game.status != GAME_STATUS_IN_PROGRESS or self.game.open_round is not None:
            return None
        latest = self.game.latest_round
        if latest is None or latest.round_number >= (self.game.round_count or 0):
            return None
        try:
            rnd = self._open_round(latest.round_number + 1, next_round_type(latest.type), self._now(now))
            db.session.commit()
        except IntegrityError:
            # another caller opened this round number first
            self._rollback()
            return None
        except GameError:
            self._rollback()
            raise
        except SQLAlchemyError as exc:
            self._rollback()
            current_app.logger.error(f"[persist-fail] action=open-round game={self.game.id} error={exc}")
            raise PersistenceError('Failed to start new round') from exc
        current_app.logger.info(
            f"[next_round] game={self.game.id} opened round {rnd.round_number} type={rnd.type} topic={rnd.topic_id}"
        )
        return rnd

    def round_results(self, round_number) -> List[dict]:
        try:
            number = int(round_number)
        except (TypeError, ValueError):
            raise ValidationError('Invalid round number')
        rnd = Round.query.filter_by(game_id=self.game.id, round_number=number).first()
        if not rnd:
            raise NotFoundError('Round not found')
        names = {p.id: p.name for p in self.game.players}
        results = []
        for row in rnd.scores.order_by(RoundScore.player_id).all():
            data = row.to_dict()
            data['player_name'] = names.get(row.player_id)
            results.append(data)
        return results
