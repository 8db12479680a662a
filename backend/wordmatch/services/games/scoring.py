from collections import OrderedDict
from typing import Dict, Hashable, List, Mapping, Sequence

from wordmatch.models import ROUND_TYPE_MATCH, ROUND_TYPE_UNMATCH, normalize_word


class PlayerRoundScore:
    """Score breakdown for one player in one round."""

    __slots__ = ('score', 'matched_words', 'bonus_awarded')

    def __init__(self, score: int = 0, matched_words=None, bonus_awarded: bool = False):
        self.score = score
        self.matched_words = list(matched_words or [])
        self.bonus_awarded = bonus_awarded

    def __eq__(self, other):
        if not isinstance(other, PlayerRoundScore):
            return NotImplemented
        return (self.score, self.matched_words, self.bonus_awarded) == (
            other.score, other.matched_words, other.bonus_awarded)

    def __repr__(self):
        return (f"PlayerRoundScore(score={self.score}, matched_words={self.matched_words!r}, "
                f"bonus_awarded={self.bonus_awarded})")

    def to_dict(self):
        return {
            'score': self.score,
            'matched_words': list(self.matched_words),
            'bonus_awarded': self.bonus_awarded,
        }


def _word_owners(player_words: Mapping[Hashable, Sequence[str]]) -> Dict[str, set]:
    """Map each normalized word to the set of distinct players who submitted it."""
    owners: Dict[str, set] = {}
    for player_id, words in player_words.items():
        for word in words:
            norm = normalize_word(word)
            if norm:
                owners.setdefault(norm, set()).add(player_id)
    return owners


def score_round(player_words: Mapping[Hashable, Sequence[str]], round_type: str) -> "OrderedDict[Hashable, PlayerRoundScore]":
    """Score one round.

    Every occurrence of a word in a player's own list is scored on its own, so a
    player who lists "cat" twice earns for it twice. A word counts as shared when
    at least two distinct players submitted it.

    match:   +1 per occurrence of a shared word; +1 bonus when every word was shared.
    unmatch: +1 per occurrence of a word nobody else submitted; +1 bonus when
             every word was unique.

    Blank words are ignored, and a player with no non-blank words never gets the
    bonus. Pure: no I/O, the result only depends on the arguments.
    """
    if round_type not in (ROUND_TYPE_MATCH, ROUND_TYPE_UNMATCH):
        raise ValueError(f"unknown round type: {round_type!r}")

    owners = _word_owners(player_words)
    results: "OrderedDict[Hashable, PlayerRoundScore]" = OrderedDict()
    for player_id, words in player_words.items():
        valid: List[str] = [w for w in (normalize_word(w) for w in words) if w]
        shared = [w for w in valid if len(owners[w]) > 1]
        unique_count = len(valid) - len(shared)

        result = PlayerRoundScore()
        # informational: each shared word once, in submission order
        for w in shared:
            if w not in result.matched_words:
                result.matched_words.append(w)

        if round_type == ROUND_TYPE_MATCH:
            result.score = len(shared)
            perfect = bool(valid) and unique_count == 0
        else:
            result.score = unique_count
            perfect = bool(valid) and not shared

        if perfect:
            result.score += 1
            result.bonus_awarded = True
        results[player_id] = result
    return results


def score_match_round(player_words):
    return score_round(player_words, ROUND_TYPE_MATCH)


def score_unmatch_round(player_words):
    return score_round(player_words, ROUND_TYPE_UNMATCH)
