import random

import pytest
from sqlalchemy import event, text
from sqlalchemy.orm.attributes import set_committed_value

from wordmatch import db
from wordmatch.errors import (
    ConflictError,
    PermissionDeniedError,
    PersistenceError,
    ValidationError,
)
from wordmatch.models import Game, Player, Round, RoundScore, Submission
from wordmatch.services.games.lifecycle import RoundLifecycleController, join_game

START = 1000.0


def controller(game, seed=0):
    return RoundLifecycleController(game, rng=random.Random(seed), clock=lambda: START)


def test_only_host_can_start(make_game):
    game, (host, guest, _) = make_game(3)
    with pytest.raises(PermissionDeniedError):
        controller(game).start_game(guest.id)
    assert game.status == 'lobby'


def test_start_needs_two_players(make_game):
    game, (host,) = make_game(1)
    with pytest.raises(ValidationError):
        controller(game).start_game(host.id)


def test_start_opens_first_round(make_game):
    game, players = make_game(3)
    rnd = controller(game, seed=4).start_game(players[0].id, now=START)
    assert game.status == 'in-progress'
    assert game.current_round == 1
    assert rnd.round_number == 1
    assert rnd.type in ('match', 'unmatch')
    assert rnd.end_time is None
    assert rnd.start_time == START
    assert rnd.roster_ids == [p.id for p in players]
    # starting twice is a no-op
    again = controller(game).start_game(players[0].id)
    assert again.id == rnd.id
    assert Round.query.filter_by(game_id=game.id).count() == 1


def test_first_round_type_comes_from_injected_rng(make_game):
    types = set()
    for seed in range(20):
        game, players = make_game(2)
        expected = random.Random(seed).choice(('match', 'unmatch'))
        rnd = controller(game, seed=seed).start_game(players[0].id, now=START)
        assert rnd.type == expected
        types.add(rnd.type)
    assert types == {'match', 'unmatch'}


def test_join_rules(make_game):
    game, players = make_game(2)
    game.max_players = 2
    db.session.commit()
    with pytest.raises(ConflictError):
        join_game(game, 'Late')
    game.max_players = 8
    db.session.commit()
    controller(game).start_game(players[0].id, now=START)
    with pytest.raises(ConflictError):
        join_game(game, 'Late')


def test_full_game_alternates_and_completes(make_game):
    game, players = make_game(3, round_count=5)
    controller(game, seed=1).start_game(players[0].id, now=START)

    types = []
    now = START
    for number in range(1, 6):
        rnd = game.open_round
        assert rnd.round_number == number
        types.append(rnd.type)
        now += 60
        result = controller(game, seed=number).close_if_due(now=now)
        assert result is not None
        assert result.round.id == rnd.id
        assert result.game_completed == (number == 5)

    assert all(a != b for a, b in zip(types, types[1:]))
    assert game.status == 'completed'
    assert game.current_round == 5
    assert Round.query.filter_by(game_id=game.id).count() == 5
    assert game.open_round is None
    # nothing more to open or close
    assert controller(game).open_next_round(players[0].id) is None
    assert controller(game).close_if_due(now=now + 1000) is None
    assert Round.query.filter_by(game_id=game.id).count() == 5


def test_topics_do_not_repeat_within_a_game(make_game):
    game, players = make_game(2, round_count=10)
    controller(game, seed=2).start_game(players[0].id, now=START)
    now = START
    for number in range(10):
        now += 60
        controller(game, seed=number).close_if_due(now=now)
    rounds = Round.query.filter_by(game_id=game.id).all()
    assert len(rounds) == 10
    for round_type in ('match', 'unmatch'):
        ids = [r.topic_id for r in rounds if r.type == round_type]
        assert len(ids) == len(set(ids)) == 5


def test_close_is_due_on_timeout_or_when_everyone_submitted(make_game):
    game, (a, b, c) = make_game(3, time_per_round=60)
    ctl = controller(game)
    rnd = ctl.start_game(a.id, now=START)
    assert not ctl.is_close_due(rnd, now=START + 59)
    assert ctl.is_close_due(rnd, now=START + 60)

    ctl.submit_words(a.id, ['cat'], now=START + 1)
    ctl.submit_words(b.id, ['dog'], now=START + 2)
    assert ctl.close_if_due(now=START + 3) is None
    ctl.submit_words(c.id, ['cat'], now=START + 4)
    result = ctl.close_if_due(now=START + 5)
    assert result is not None
    assert result.round.end_time == START + 5


def test_close_twice_scores_once(make_game):
    game, (a, b, c) = make_game(3)
    ctl = controller(game)
    rnd = ctl.start_game(a.id, now=START)
    ctl.submit_words(a.id, ['cat', 'dog'])
    ctl.submit_words(b.id, ['cat', 'fish'])

    first = ctl.close_round(rnd.id, now=START + 10)
    assert first is not None
    totals = {p.id: p.score for p in Player.query.filter_by(game_id=game.id)}
    assert ctl.close_round(rnd.id, now=START + 11) is None
    assert RoundScore.query.filter_by(round_id=rnd.id).count() == 3
    assert {p.id: p.score for p in Player.query.filter_by(game_id=game.id)} == totals
    assert Round.query.get(rnd.id).end_time == START + 10


def test_stale_controller_loses_the_race(make_game):
    game, (a, b) = make_game(2)
    rnd = controller(game).start_game(a.id, now=START)
    first, second = controller(game), controller(game)
    assert first.close_round(rnd.id, now=START + 60) is not None
    assert second.close_round(rnd.id, now=START + 61) is None
    assert Round.query.filter_by(game_id=game.id).count() == 2
    assert RoundScore.query.filter_by(round_id=rnd.id).count() == 2


def test_match_scenario_persists_scores(make_game):
    game, (a, b, c) = make_game(3)
    ctl = controller(game)
    rnd = ctl.start_game(a.id, now=START)
    rnd.type = 'match'
    db.session.commit()
    ctl.submit_words(a.id, ['cat', 'dog', 'fish'])
    ctl.submit_words(b.id, ['cat', 'dog', 'fish', 'bird', 'hamster'])
    ctl.submit_words(c.id, ['cat', 'dog', 'fish', 'rabbit', 'snake'])
    result = ctl.close_if_due(now=START + 5)
    assert result is not None
    assert result.next_round.type == 'unmatch'

    rows = {r['player_id']: r for r in ctl.round_results(1)}
    assert rows[a.id]['score'] == 4 and rows[a.id]['bonus_awarded']
    assert rows[b.id]['score'] == 3 and not rows[b.id]['bonus_awarded']
    assert rows[c.id]['score'] == 3
    assert rows[a.id]['matched_words'] == ['cat', 'dog', 'fish']
    assert rows[a.id]['player_name'] == 'Host'
    assert Player.query.get(a.id).score == 4


def test_non_submitters_get_zero_rows(make_game):
    game, (a, b, c) = make_game(3)
    ctl = controller(game)
    rnd = ctl.start_game(a.id, now=START)
    ctl.submit_words(a.id, ['cat'])
    ctl.close_round(rnd.id, now=START + 60)
    rows = {r['player_id']: r for r in ctl.round_results(1)}
    assert set(rows) == {a.id, b.id, c.id}
    assert rows[b.id]['score'] == 0
    assert not rows[b.id]['bonus_awarded']


def test_player_total_equals_sum_of_round_scores(make_game):
    game, players = make_game(3, round_count=3)
    ctl = controller(game, seed=9)
    ctl.start_game(players[0].id, now=START)
    word_lists = [['apple', 'pear'], ['apple', 'plum'], ['kiwi', 'pear']]
    now = START
    for number in range(3):
        ctl = controller(game, seed=number)
        for player, words in zip(players, word_lists):
            ctl.submit_words(player.id, words)
        now += 5
        assert ctl.close_if_due(now=now) is not None
    for player in players:
        total = db.session.query(db.func.sum(RoundScore.score)).filter(RoundScore.player_id == player.id).scalar()
        assert Player.query.get(player.id).score == total
    assert game.status == 'completed'


def test_submit_validation(make_game):
    game, (a, b) = make_game(2)
    ctl = controller(game)
    with pytest.raises(ConflictError):
        ctl.submit_words(a.id, ['cat'])
    ctl.start_game(a.id, now=START)
    with pytest.raises(ValidationError):
        ctl.submit_words(a.id, ['   ', ''])
    with pytest.raises(ValidationError):
        ctl.submit_words(9999, ['cat'])
    with pytest.raises(ValidationError):
        ctl.submit_words(a.id, ['x' * 101])
    with pytest.raises(ValidationError):
        ctl.submit_words(a.id, ['a', 'b', 'c', 'd', 'e', 'f'])
    with pytest.raises(ValidationError):
        ctl.submit_words(a.id, 42)


def test_resubmitting_a_word_only_updates_final_flag(make_game):
    game, (a, b) = make_game(2)
    ctl = controller(game)
    rnd = ctl.start_game(a.id, now=START)
    ctl.submit_words(a.id, ['Cat', ' dog '])
    ctl.submit_words(a.id, ['cat'], is_final=True)
    subs = Submission.query.filter_by(round_id=rnd.id, player_id=a.id).order_by(Submission.id).all()
    assert [s.word for s in subs] == ['Cat', 'dog']
    assert [s.is_final for s in subs] == [True, False]


def test_failed_close_leaves_round_open_for_retry(make_game):
    game, (a, b) = make_game(2)
    ctl = controller(game)
    rnd = ctl.start_game(a.id, now=START)
    rnd.type = 'match'
    db.session.commit()
    ctl.submit_words(a.id, ['cat'])
    ctl.submit_words(b.id, ['cat'])
    # a stray row makes the RoundScore insert violate its unique constraint
    stray = RoundScore(round_id=rnd.id, player_id=a.id, score=0)
    db.session.add(stray)
    db.session.commit()

    with pytest.raises(PersistenceError):
        ctl.close_round(rnd.id, now=START + 60)
    assert Round.query.get(rnd.id).end_time is None
    assert Player.query.get(a.id).score == 0
    assert Player.query.get(b.id).score == 0
    assert Round.query.filter_by(game_id=game.id).count() == 1

    db.session.delete(stray)
    db.session.commit()
    result = controller(game).close_round(rnd.id, now=START + 61)
    assert result is not None
    assert Player.query.get(a.id).score == 2
    assert RoundScore.query.filter_by(round_id=rnd.id).count() == 2


def test_close_validates_round_reference(make_game):
    game, (a, b) = make_game(2)
    ctl = controller(game)
    ctl.start_game(a.id, now=START)
    with pytest.raises(ValidationError):
        ctl.close_round(12345)
    with pytest.raises(ValidationError):
        ctl.close_round('nope')


def test_host_opens_next_round_when_auto_advance_is_off(flask_app, make_game):
    flask_app.config['AUTO_START_NEXT_ROUND'] = False
    game, (a, b) = make_game(2, round_count=2)
    ctl = controller(game)
    first = ctl.start_game(a.id, now=START)
    result = ctl.close_round(first.id, now=START + 60)
    assert result.next_round is None
    assert game.open_round is None
    with pytest.raises(ConflictError):
        ctl.submit_words(a.id, ['cat'])

    with pytest.raises(PermissionDeniedError):
        controller(game).open_next_round(b.id)
    second = controller(game).open_next_round(a.id, now=START + 70)
    assert second.round_number == 2
    assert second.type != first.type
    # already open
    assert controller(game).open_next_round(a.id) is None

    controller(game).close_round(second.id, now=START + 130)
    assert Game.query.get(game.id).status == 'completed'
    # beyond round_count is a no-op
    assert controller(game).open_next_round(a.id) is None


def test_close_loses_compare_and_set_to_another_writer(make_game):
    game, (a, b) = make_game(2)
    ctl = controller(game)
    rnd = ctl.start_game(a.id, now=START)
    ctl.submit_words(a.id, ['cat'])
    rnd_id = rnd.id
    db.session.execute(text('UPDATE round SET end_time = :t WHERE id = :id'), {'t': START + 30, 'id': rnd_id})
    db.session.commit()
    # this session still sees the round as open
    assert rnd.end_time == START + 30
    set_committed_value(rnd, 'end_time', None)

    assert ctl.close_round(rnd_id, now=START + 60) is None
    assert RoundScore.query.filter_by(round_id=rnd_id).count() == 0
    assert Round.query.filter_by(game_id=game.id).count() == 1
    assert db.session.query(Round.end_time).filter(Round.id == rnd_id).scalar() == START + 30
    assert Player.query.get(a.id).score == 0


def test_submission_is_rejected_when_round_closes_during_write(make_game):
    game, (a, b) = make_game(2)
    ctl = controller(game)
    rnd = ctl.start_game(a.id, now=START)
    session = db.session()
    stamped = []

    def close_first(sess, flush_context, instances):
        if not stamped and any(isinstance(obj, Submission) for obj in sess.new):
            rnd.end_time = START + 1
            stamped.append(True)

    event.listen(session, 'before_flush', close_first)
    try:
        with pytest.raises(ConflictError):
            ctl.submit_words(a.id, ['cat'])
    finally:
        event.remove(session, 'before_flush', close_first)
    assert stamped
    assert Submission.query.filter_by(round_id=rnd.id).count() == 0


def test_submit_on_closed_round_is_rejected(make_game):
    game, (a, b) = make_game(2, round_count=1)
    ctl = controller(game)
    rnd = ctl.start_game(a.id, now=START)
    ctl.close_round(rnd.id, now=START + 60)
    with pytest.raises(ConflictError):
        ctl.submit_words(a.id, ['cat'])
    assert Submission.query.filter_by(round_id=rnd.id).count() == 0


def test_finalize_marks_every_word_of_the_player(make_game):
    game, (a, b) = make_game(2)
    ctl = controller(game)
    with pytest.raises(ConflictError):
        ctl.finalize_submissions(a.id)
    rnd = ctl.start_game(a.id, now=START)
    ctl.submit_words(a.id, ['cat', 'dog'])
    ctl.submit_words(b.id, ['fish'])

    assert ctl.finalize_submissions(a.id) == 2
    finals = {s.word: s.is_final for s in Submission.query.filter_by(round_id=rnd.id)}
    assert finals == {'cat': True, 'dog': True, 'fish': False}
    # nothing left to mark
    assert ctl.finalize_submissions(a.id) == 0
    with pytest.raises(ValidationError):
        ctl.finalize_submissions(9999)
