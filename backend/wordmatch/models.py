from wordmatch import db
import json
import random

# Look-alike characters (0/O, 1/I) are left out so codes read well aloud
GAME_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'

GAME_STATUS_LOBBY = 'lobby'
GAME_STATUS_IN_PROGRESS = 'in-progress'
GAME_STATUS_COMPLETED = 'completed'

ROUND_TYPE_MATCH = 'match'
ROUND_TYPE_UNMATCH = 'unmatch'
ROUND_TYPES = (ROUND_TYPE_MATCH, ROUND_TYPE_UNMATCH)


def normalize_word(word) -> str:
    """Comparison form of a word: trimmed and lower-cased."""
    return (word or '').strip().lower()


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    score = db.Column(db.Integer, default=0, nullable=False)
    is_host = db.Column(db.Boolean, default=False, nullable=False)
    game = db.relationship('Game', back_populates='players')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'game_id': self.game_id,
            'score': self.score,
            'is_host': self.is_host,
        }


def generate_game_code(length=6):
    """Generate a unique, short game code."""
    while True:
        code = ''.join(random.choices(GAME_CODE_ALPHABET, k=length))
        if not Game.query.filter_by(game_code=code).first():
            return code


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    game_code = db.Column(db.String(6), unique=True, index=True)
    status = db.Column(db.String(20), default=GAME_STATUS_LOBBY, nullable=False, index=True)  # lobby, in-progress, completed
    round_count = db.Column(db.Integer, default=5, nullable=False)
    current_round = db.Column(db.Integer, default=0, nullable=False)
    time_per_round = db.Column(db.Integer, default=60, nullable=False)  # seconds
    max_players = db.Column(db.Integer, default=8, nullable=False)
    players = db.relationship('Player', back_populates='game', order_by='Player.id')
    rounds = db.relationship('Round', back_populates='game', order_by='Round.round_number')

    def __init__(self, **kwargs):
        super(Game, self).__init__(**kwargs)
        if not self.game_code:
            self.game_code = generate_game_code()

    @property
    def host(self):
        return next((p for p in self.players if p.is_host), None)

    @property
    def open_round(self):
        return Round.query.filter_by(game_id=self.id, end_time=None).first()

    @property
    def latest_round(self):
        return Round.query.filter_by(game_id=self.id).order_by(Round.round_number.desc()).first()

    def to_dict(self):
        rnd = self.latest_round
        counts = {}
        if rnd is not None:
            rows = (
                db.session.query(Submission.player_id, db.func.count(Submission.id))
                .filter(Submission.round_id == rnd.id)
                .group_by(Submission.player_id)
                .all()
            )
            counts = {pid: n for pid, n in rows}
        players_serialized = []
        for p in self.players:
            pd = p.to_dict()
            pd['words_submitted_current'] = counts.get(p.id, 0)
            players_serialized.append(pd)

        return {
            'id': self.id,
            'game_code': self.game_code,
            'status': self.status,
            'round_count': self.round_count,
            'current_round': self.current_round,
            'time_per_round': self.time_per_round,
            'max_players': self.max_players,
            'players': players_serialized,
            'round': rnd.to_dict() if rnd else None,
        }


class Round(db.Model):
    __tablename__ = 'round'
    __table_args__ = (db.UniqueConstraint('game_id', 'round_number', name='uq_round_game_number'),)
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    round_number = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(10), nullable=False)  # match, unmatch
    topic = db.Column(db.String(100), nullable=False)
    topic_id = db.Column(db.String(64), nullable=True)
    start_time = db.Column(db.Float, nullable=False)  # epoch seconds
    end_time = db.Column(db.Float, nullable=True)  # set exactly once, on close
    roster = db.Column(db.Text, nullable=True)  # JSON-encoded list of player ids at open
    game = db.relationship('Game', back_populates='rounds')
    submissions = db.relationship('Submission', backref='round', lazy='dynamic')
    scores = db.relationship('RoundScore', backref='round', lazy='dynamic')

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def roster_ids(self):
        try:
            return json.loads(self.roster) if self.roster else []
        except ValueError:
            return []

    def deadline(self):
        return self.start_time + (self.game.time_per_round or 0)

    def to_dict(self):
        return {
            'id': self.id,
            'round_number': self.round_number,
            'type': self.type,
            'topic': self.topic,
            'topic_id': self.topic_id,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'deadline': self.deadline(),
            'roster': self.roster_ids,
        }


class Submission(db.Model):
    __tablename__ = 'submission'
    __table_args__ = (db.UniqueConstraint('round_id', 'player_id', 'normalized', name='uq_submission_round_player_word'),)
    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(db.Integer, db.ForeignKey('round.id'), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False, index=True)
    word = db.Column(db.String(100), nullable=False)
    normalized = db.Column(db.String(100), nullable=False)
    is_final = db.Column(db.Boolean, default=False, nullable=False)
    submitted_at = db.Column(db.Float, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'round_id': self.round_id,
            'player_id': self.player_id,
            'word': self.word,
            'is_final': self.is_final,
        }


class RoundScore(db.Model):
    __tablename__ = 'round_score'
    __table_args__ = (db.UniqueConstraint('round_id', 'player_id', name='uq_round_score_round_player'),)
    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(db.Integer, db.ForeignKey('round.id'), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False, index=True)
    score = db.Column(db.Integer, default=0, nullable=False)
    matched_words = db.Column(db.Text, nullable=True)  # JSON-encoded list
    bonus_awarded = db.Column(db.Boolean, default=False, nullable=False)

    def to_dict(self):
        return {
            'round_id': self.round_id,
            'player_id': self.player_id,
            'score': self.score,
            'matched_words': json.loads(self.matched_words) if self.matched_words else [],
            'bonus_awarded': self.bonus_awarded,
        }
