"""Game domain services: scoring, topics, round lifecycle and timers.

This package contains pure(ish) domain logic that should be imported by
HTTP routes and socket handlers, keeping transport concerns separated
from core game mechanics. ``scoring`` is pure; ``lifecycle`` owns every
write that changes a round's state.
"""
