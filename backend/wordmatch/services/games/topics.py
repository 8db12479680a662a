import json
import os
import random
from typing import Dict, Iterable, List, Optional, Set

from flask import current_app

from wordmatch.errors import TopicsUnavailableError
from wordmatch.models import ROUND_TYPES

DEFAULT_TOPICS_FILE = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), 'data', 'topics.json')


class Topic:
    __slots__ = ('id', 'name', 'description')

    def __init__(self, id: str, name: str, description: str = ''):
        self.id = id
        self.name = name
        self.description = description

    def __repr__(self):
        return f"Topic(id={self.id!r}, name={self.name!r})"

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'description': self.description}


class TopicPool:
    """Topics grouped by round type, in a stable order."""

    def __init__(self, topics_by_type: Dict[str, List[Topic]]):
        self._topics = {rt: list(topics_by_type.get(rt) or []) for rt in ROUND_TYPES}

    @classmethod
    def from_dict(cls, data) -> 'TopicPool':
        by_type = {}
        for rt in ROUND_TYPES:
            by_type[rt] = [
                Topic(str(t['id']), t.get('name') or str(t['id']), t.get('description', ''))
                for t in (data or {}).get(rt) or []
            ]
        return cls(by_type)

    @classmethod
    def load(cls, path: Optional[str] = None) -> 'TopicPool':
        with open(path or DEFAULT_TOPICS_FILE, encoding='utf-8') as fh:
            return cls.from_dict(json.load(fh))

    def topics(self, round_type: str) -> List[Topic]:
        return list(self._topics.get(round_type, []))

    def topic_ids(self, round_type: str) -> List[str]:
        return [t.id for t in self._topics.get(round_type, [])]

    def get(self, round_type: str, topic_id: str) -> Optional[Topic]:
        return next((t for t in self._topics.get(round_type, []) if t.id == topic_id), None)

    def to_dict(self):
        return {rt: [t.to_dict() for t in topics] for rt, topics in self._topics.items()}


class TopicTracker:
    """Per-game record of which topics each round type has already shown.

    Draws never repeat a topic until every topic of that type has been used
    once; then the type's history is cleared and the full pool is available again.
    """

    def __init__(self, pool: TopicPool):
        self.pool = pool
        self.used: Dict[str, Set[str]] = {rt: set() for rt in ROUND_TYPES}

    @classmethod
    def from_rounds(cls, pool: TopicPool, rounds: Iterable) -> 'TopicTracker':
        tracker = cls(pool)
        for rnd in sorted(rounds, key=lambda r: r.round_number):
            if rnd.topic_id:
                tracker.mark_used(rnd.type, rnd.topic_id)
        return tracker

    def _exhausted(self, round_type: str) -> bool:
        ids = set(self.pool.topic_ids(round_type))
        return bool(ids) and ids.issubset(self.used[round_type])

    def mark_used(self, round_type: str, topic_id: str) -> None:
        if self._exhausted(round_type):
            self.used[round_type].clear()
        self.used[round_type].add(topic_id)

    def available(self, round_type: str) -> List[Topic]:
        return [t for t in self.pool.topics(round_type) if t.id not in self.used[round_type]]

    def draw(self, round_type: str, rng: Optional[random.Random] = None) -> Topic:
        topics = self.pool.topics(round_type)
        if not topics:
            raise TopicsUnavailableError(f"No {round_type} topics available")
        if self._exhausted(round_type):
            self.used[round_type].clear()
        topic = (rng or random).choice(self.available(round_type))
        self.used[round_type].add(topic.id)
        return topic

    def reset(self) -> None:
        for rt in ROUND_TYPES:
            self.used[rt].clear()


def get_topic_pool(app=None) -> TopicPool:
    """The app's topic pool, loaded once from TOPICS_FILE (or the bundled file)."""
    app = app or current_app._get_current_object()
    pool = app.extensions.get('wordmatch_topics')
    if pool is None:
        pool = TopicPool.load(app.config.get('TOPICS_FILE'))
        app.extensions['wordmatch_topics'] = pool
    return pool
