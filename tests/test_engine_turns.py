"""
Test Suite: Turn Engine
End-to-end turn flow through MatchEngine: legality gating, phase changes,
knockouts and prizes, win conditions, coin flips and the repository.
"""

import pytest
import sys
sys.path.insert(0, 'src')

from conftest import ALICE, BOB, MATCH_ID, FixedCoins, player_state
import config
from engine import MatchEngine
from errors import GameRuleViolation, IllegalStateError, MalformedInputError, NotFoundError
from models import (
    ActionValidationError,
    Match,
    MatchState,
    PlayerActionType,
    PlayerIdentifier,
    StatusEffect,
    TurnPhase,
    WinCondition,
)

A = PlayerActionType


def with_defender(state, pokemon, bench=True):
    p2 = state.player2_state.with_active_pokemon(pokemon)
    if not bench:
        p2 = p2._replace(bench=())
    return state.with_player2_state(p2)


# ============================================================================
# LIFECYCLE & GATING
# ============================================================================

class TestStartGame:

    def test_first_turn(self, engine, repository, battle_state):
        match = Match(id=MATCH_ID, player1_id=ALICE, player2_id=BOB, state=MatchState.FIRST_PLAYER_SELECTION)
        match = engine.start_game(match, battle_state.player1_state, battle_state.player2_state)
        assert match.state == MatchState.PLAYER_TURN
        assert match.game_state.turn_number == 1
        assert match.game_state.phase == TurnPhase.DRAW
        assert match.game_state.current_player == PlayerIdentifier.PLAYER1
        assert repository.find_by_id(MATCH_ID).state == MatchState.PLAYER_TURN

    def test_requires_first_player_selection(self, engine, battle_state):
        match = Match(id=MATCH_ID, player1_id=ALICE, player2_id=BOB, state=MatchState.CREATED)
        with pytest.raises(IllegalStateError):
            engine.start_game(match, battle_state.player1_state, battle_state.player2_state)

    def test_draw_moves_to_main_phase(self, engine, store_match, battle_state):
        match_id = store_match(battle_state.with_phase(TurnPhase.DRAW))
        match = engine.execute_turn_action(match_id, ALICE, "DRAW_CARD")
        p1 = match.game_state.player1_state
        assert match.game_state.phase == TurnPhase.MAIN_PHASE
        assert p1.get_hand_count() == 5
        assert p1.get_deck_count() == 9
        assert match.game_state.last_action.action_type == A.DRAW_CARD


class TestGating:

    def test_unknown_match(self, engine):
        with pytest.raises(NotFoundError):
            engine.execute_turn_action("missing", ALICE, "END_TURN")

    def test_unknown_player(self, engine, store_match, battle_state):
        match_id = store_match(battle_state)
        with pytest.raises(IllegalStateError, match="not part of match"):
            engine.execute_turn_action(match_id, "mallory", "END_TURN")

    def test_not_your_turn(self, engine, store_match, battle_state):
        match_id = store_match(battle_state)
        with pytest.raises(IllegalStateError) as exc:
            engine.execute_turn_action(match_id, BOB, "ATTACH_ENERGY",
                                       {"energyCardId": "water-energy", "target": "ACTIVE"})
        assert exc.value.reason == ActionValidationError.NOT_PLAYER_TURN

    def test_wrong_phase(self, engine, store_match, battle_state):
        match_id = store_match(battle_state.with_phase(TurnPhase.DRAW))
        with pytest.raises(IllegalStateError) as exc:
            engine.execute_turn_action(match_id, ALICE, "ATTACK", {"attackIndex": 0})
        assert exc.value.reason == ActionValidationError.INVALID_PHASE

    def test_malformed_payload(self, engine, store_match, battle_state):
        match_id = store_match(battle_state)
        with pytest.raises(MalformedInputError) as exc:
            engine.execute_turn_action(match_id, ALICE, "ATTACH_ENERGY", {})
        assert any(r.startswith("energyCardId") for r in exc.value.reasons)

    def test_setup_action_outside_its_state(self, engine, store_match, battle_state):
        match_id = store_match(battle_state, state=MatchState.SET_PRIZE_CARDS)
        with pytest.raises(IllegalStateError) as exc:
            engine.execute_turn_action(match_id, ALICE, "APPROVE_MATCH")
        assert exc.value.reason == ActionValidationError.INVALID_STATE

    def test_failed_action_leaves_match_unchanged(self, engine, store_match, repository, battle_state):
        match_id = store_match(battle_state)
        with pytest.raises(GameRuleViolation):
            engine.execute_turn_action(match_id, ALICE, "ATTACH_ENERGY",
                                       {"energyCardId": "grass-energy", "target": "ACTIVE"})
        assert repository.find_by_id(match_id).game_state == battle_state


class TestConcede:

    def test_concede_ends_match(self, engine, store_match, battle_state):
        match_id = store_match(battle_state)
        match = engine.execute_turn_action(match_id, ALICE, "CONCEDE")
        assert match.state == MatchState.MATCH_ENDED
        assert match.winner_id == BOB
        assert match.win_condition == WinCondition.CONCEDE

    def test_off_turn_player_can_concede(self, engine, store_match, battle_state):
        match_id = store_match(battle_state)
        match = engine.execute_turn_action(match_id, BOB, "CONCEDE")
        assert match.winner_id == ALICE

    def test_nothing_after_the_end(self, engine, store_match, battle_state):
        match_id = store_match(battle_state)
        engine.execute_turn_action(match_id, ALICE, "CONCEDE")
        with pytest.raises(IllegalStateError):
            engine.execute_turn_action(match_id, BOB, "END_TURN")
        with pytest.raises(IllegalStateError):
            engine.execute_turn_action(match_id, BOB, "CONCEDE")
        assert engine.get_available_actions(match_id, ALICE) == []

    def test_concede_is_recorded(self, engine, store_match, battle_state):
        match_id = store_match(battle_state)
        match = engine.execute_turn_action(match_id, BOB, "CONCEDE")
        last = match.game_state.last_action
        assert last.action_type == A.CONCEDE
        assert last.player_id == PlayerIdentifier.PLAYER2
        assert last.action_data == {}
        assert len(match.game_state.action_history) == len(battle_state.action_history) + 1

    @pytest.mark.parametrize("state", [
        MatchState.MATCH_APPROVAL,
        MatchState.DRAWING_CARDS,
        MatchState.SET_PRIZE_CARDS,
        MatchState.SELECT_ACTIVE_POKEMON,
        MatchState.SELECT_BENCH_POKEMON,
        MatchState.FIRST_PLAYER_SELECTION,
    ])
    def test_concede_during_setup(self, engine, store_match, battle_state, state):
        match_id = store_match(battle_state.with_phase(None), state=state)
        match = engine.execute_turn_action(match_id, ALICE, "CONCEDE")
        assert match.state == MatchState.MATCH_ENDED
        assert match.winner_id == BOB
        assert match.win_condition == WinCondition.CONCEDE
        assert match.game_state.last_action.action_type == A.CONCEDE

    def test_concede_before_decks_are_installed(self, engine, store_match):
        match_id = store_match(None, state=MatchState.DECK_VALIDATION)
        match = engine.execute_turn_action(match_id, BOB, "CONCEDE")
        assert match.state == MatchState.MATCH_ENDED
        assert match.winner_id == ALICE
        assert match.game_state is None

    def test_cancelled_match_cannot_be_conceded(self, engine, store_match, battle_state):
        match_id = store_match(battle_state)
        engine.cancel_match(match_id)
        with pytest.raises(IllegalStateError):
            engine.execute_turn_action(match_id, ALICE, "CONCEDE")


class TestCancel:

    def test_cancel_match(self, engine, store_match, repository, battle_state):
        match_id = store_match(battle_state)
        match = engine.cancel_match(match_id, "Player disconnected")
        assert match.state == MatchState.CANCELLED
        assert match.cancellation_reason == "Player disconnected"
        assert match.winner_id is None
        assert repository.find_by_id(match_id).state == MatchState.CANCELLED
        assert engine.get_available_actions(match_id, ALICE) == []

    def test_ended_match_cannot_be_cancelled(self, engine, store_match, battle_state):
        match_id = store_match(battle_state)
        engine.execute_turn_action(match_id, ALICE, "CONCEDE")
        with pytest.raises(IllegalStateError):
            engine.cancel_match(match_id)

    def test_cancel_closes_the_trace(self, engine, store_match, battle_state, monkeypatch, tmp_path):
        monkeypatch.setattr(config, 'XRAY_ENABLED', True)
        monkeypatch.setattr(config, 'XRAY_DIR', str(tmp_path))
        match_id = store_match(battle_state)
        engine.execute_turn_action(match_id, ALICE, "ATTACH_ENERGY", {"energyCardId": "fire-energy", "target": "ACTIVE"})
        assert match_id in engine._xrays
        trace_path = engine._xrays[match_id].log_path

        engine.cancel_match(match_id)
        assert match_id not in engine._xrays
        with open(trace_path, encoding='utf-8') as f:
            assert "Reason: CANCELLED" in f.read()


# ============================================================================
# MAIN PHASE & TURN PASSING
# ============================================================================

class TestMainPhase:

    def test_one_energy_attachment(self, engine, store_match, battle_state):
        p1 = battle_state.player1_state.with_hand(("fire-energy", "fire-energy"))
        match_id = store_match(battle_state.with_player1_state(p1))
        match = engine.execute_turn_action(match_id, ALICE, "ATTACH_ENERGY",
                                           {"energyCardId": "fire-energy", "target": "BENCH_0"})
        assert match.game_state.player1_state.bench[0].attached_energy == ("fire-energy",)
        assert match.game_state.last_action.action_data['attachments_remaining'] == 0
        assert A.ATTACH_ENERGY not in engine.get_available_actions(match_id, ALICE)
        with pytest.raises(GameRuleViolation, match="already been attached"):
            engine.execute_turn_action(match_id, ALICE, "ATTACH_ENERGY",
                                       {"energyCardId": "fire-energy", "target": "ACTIVE"})

    def test_play_pokemon_to_bench(self, engine, store_match, battle_state):
        p1 = battle_state.player1_state.with_hand(("pikachu",))
        match_id = store_match(battle_state.with_player1_state(p1))
        match = engine.execute_turn_action(match_id, ALICE, "PLAY_POKEMON", {"cardId": "pikachu"})
        bench = match.game_state.player1_state.bench
        assert [p.card_id for p in bench] == ["squirtle", "pikachu"]
        assert match.game_state.last_action.action_data['instance_id'] == bench[1].instance_id

    def test_end_turn(self, engine, store_match, battle_state):
        match_id = store_match(battle_state)
        match = engine.execute_turn_action(match_id, ALICE, "END_TURN")
        game_state = match.game_state
        assert match.state == MatchState.PLAYER_TURN
        assert game_state.current_player == PlayerIdentifier.PLAYER2
        assert game_state.turn_number == 4
        assert game_state.phase == TurnPhase.DRAW
        assert engine.get_available_actions(match_id, BOB) == [A.DRAW_CARD, A.CONCEDE]
        assert engine.get_available_actions(match_id, ALICE) == [A.CONCEDE]

    def test_off_turn_player_only_concedes(self, engine, store_match, battle_state):
        match_id = store_match(battle_state)
        assert engine.get_available_actions(match_id, BOB) == [A.CONCEDE]


# ============================================================================
# KNOCKOUTS, PRIZES & WINS
# ============================================================================

class TestKnockoutFlow:

    def test_attack_knockout_to_next_turn(self, engine, store_match, battle_state, make_pokemon):
        match_id = store_match(with_defender(battle_state, make_pokemon("squirtle", damage=50)))

        match = engine.execute_turn_action(match_id, ALICE, "ATTACK", {"attackIndex": 0})
        assert match.game_state.phase == TurnPhase.SELECT_ACTIVE_POKEMON
        assert match.game_state.player2_state.active_pokemon is None
        assert match.game_state.last_action.action_data['prize_count'] == 1
        assert engine.get_available_actions(match_id, BOB) == [A.SET_ACTIVE_POKEMON, A.CONCEDE]
        assert engine.get_available_actions(match_id, ALICE) == [A.SET_ACTIVE_POKEMON, A.CONCEDE]

        with pytest.raises(GameRuleViolation, match="Take your prize"):
            engine.execute_turn_action(match_id, ALICE, "END_TURN")

        match = engine.execute_turn_action(match_id, BOB, "SET_ACTIVE_POKEMON", {"target": "BENCH_0"})
        assert match.game_state.player2_state.active_pokemon.card_id == "pikachu"
        assert match.game_state.phase == TurnPhase.END
        assert engine.get_available_actions(match_id, ALICE) == [A.SELECT_PRIZE, A.CONCEDE]

        match = engine.execute_turn_action(match_id, ALICE, "SELECT_PRIZE", {"prizeIndex": 0})
        assert match.game_state.player1_state.get_prize_cards_remaining() == 5
        assert engine.get_available_actions(match_id, ALICE) == [A.END_TURN, A.CONCEDE]
        with pytest.raises(GameRuleViolation, match="No prize card to take"):
            engine.execute_turn_action(match_id, ALICE, "SELECT_PRIZE")

        match = engine.execute_turn_action(match_id, ALICE, "END_TURN")
        assert match.game_state.current_player == PlayerIdentifier.PLAYER2
        assert match.game_state.phase == TurnPhase.DRAW

    def test_no_pokemon_left(self, engine, store_match, battle_state, make_pokemon):
        match_id = store_match(with_defender(battle_state, make_pokemon("squirtle", damage=50), bench=False))
        match = engine.execute_turn_action(match_id, ALICE, "ATTACK", {"attackIndex": 0})
        assert match.state == MatchState.MATCH_ENDED
        assert match.winner_id == ALICE
        assert match.win_condition == WinCondition.NO_POKEMON

    def test_last_prize_wins(self, engine, store_match, battle_state, make_pokemon):
        state = with_defender(battle_state, make_pokemon("squirtle", damage=50))
        state = state.with_player1_state(state.player1_state._replace(prize_cards=("potion",)))
        match_id = store_match(state)
        engine.execute_turn_action(match_id, ALICE, "ATTACK", {"attackIndex": 0})
        engine.execute_turn_action(match_id, BOB, "SET_ACTIVE_POKEMON", {"target": "BENCH_0"})
        match = engine.execute_turn_action(match_id, ALICE, "SELECT_PRIZE")
        assert match.state == MatchState.MATCH_ENDED
        assert match.winner_id == ALICE
        assert match.win_condition == WinCondition.PRIZE_CARDS

    def test_deck_out_on_draw(self, engine, store_match, battle_state):
        state = battle_state.with_phase(TurnPhase.DRAW)
        state = state.with_player1_state(state.player1_state._replace(deck=()))
        match_id = store_match(state)
        match = engine.execute_turn_action(match_id, ALICE, "DRAW_CARD")
        assert match.state == MatchState.MATCH_ENDED
        assert match.winner_id == BOB
        assert match.win_condition == WinCondition.DECK_OUT

    def test_poison_knockout_between_turns(self, engine, store_match, battle_state, make_pokemon):
        poisoned = make_pokemon("squirtle", damage=50, statuses=[StatusEffect.POISONED])
        match_id = store_match(with_defender(battle_state, poisoned))

        match = engine.execute_turn_action(match_id, ALICE, "END_TURN")
        game_state = match.game_state
        assert match.state == MatchState.PLAYER_TURN
        assert game_state.last_action.action_data['status_knockouts'] == ["squirtle"]
        assert game_state.player1_state.get_prize_cards_remaining() == 5
        assert game_state.current_player == PlayerIdentifier.PLAYER2
        assert game_state.phase == TurnPhase.SELECT_ACTIVE_POKEMON

        match = engine.execute_turn_action(match_id, BOB, "SET_ACTIVE_POKEMON", {"target": "BENCH_0"})
        assert match.game_state.phase == TurnPhase.DRAW


# ============================================================================
# COIN FLIPS
# ============================================================================

class TestCoinFlipApproval:

    @pytest.fixture
    def flip_engine(self, repository, catalog):
        return MatchEngine(repository, catalog, coin_resolver=FixedCoins('heads', 'tails'))

    @pytest.fixture
    def match_id(self, store_match, battle_state, make_pokemon):
        attacker = make_pokemon("pikachu", energy=["lightning-energy"])
        state = battle_state.with_player1_state(battle_state.player1_state.with_active_pokemon(attacker))
        return store_match(with_defender(state, make_pokemon("charmander")))

    def test_both_players_approve(self, flip_engine, match_id):
        match = flip_engine.execute_turn_action(match_id, ALICE, "ATTACK", {"attackIndex": 0})
        assert match.game_state.phase == TurnPhase.ATTACK
        assert match.game_state.coin_flip_state is not None
        assert A.GENERATE_COIN_FLIP in flip_engine.get_available_actions(match_id, BOB)

        match = flip_engine.execute_turn_action(match_id, BOB, "GENERATE_COIN_FLIP")
        assert match.game_state.last_action.action_data['coin_flip_results'] == ["heads", "tails"]
        assert match.game_state.phase == TurnPhase.ATTACK
        assert A.GENERATE_COIN_FLIP not in flip_engine.get_available_actions(match_id, BOB)
        with pytest.raises(GameRuleViolation, match="already approved"):
            flip_engine.execute_turn_action(match_id, BOB, "GENERATE_COIN_FLIP")

        match = flip_engine.execute_turn_action(match_id, ALICE, "GENERATE_COIN_FLIP")
        game_state = match.game_state
        assert game_state.coin_flip_state is None
        assert game_state.phase == TurnPhase.END
        assert game_state.player2_state.active_pokemon.current_hp == 30
        assert game_state.last_action.action_data['heads'] == 1
        assert flip_engine.get_available_actions(match_id, ALICE) == [A.END_TURN, A.CONCEDE]

    def test_cannot_end_turn_mid_flip(self, flip_engine, match_id):
        flip_engine.execute_turn_action(match_id, ALICE, "ATTACK", {"attackIndex": 0})
        with pytest.raises(GameRuleViolation, match="pending coin flip"):
            flip_engine.execute_turn_action(match_id, ALICE, "END_TURN")


# ============================================================================
# REPOSITORY
# ============================================================================

class TestRepository:

    def test_returns_copies(self, repository, store_match, battle_state):
        match_id = store_match(battle_state)
        loaded = repository.find_by_id(match_id)
        loaded.state = MatchState.CANCELLED
        assert repository.find_by_id(match_id).state == MatchState.PLAYER_TURN
        assert len(repository) == 1

    def test_missing(self, repository):
        assert repository.find_by_id("missing") is None
