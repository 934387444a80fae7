"""
Test Suite: Match State Machine
Lifecycle transitions, action legality, phase advancement, win checks and
the available-actions query.
"""

import pytest
import sys
sys.path.insert(0, 'src')

from conftest import player_state
from models import (
    ActionSummary,
    ActionValidationError,
    GameState,
    MatchState,
    PlayerActionType,
    PlayerIdentifier,
    TurnPhase,
    WinCondition,
)
from state_machine import GameStateContext, MatchStateMachine

A = PlayerActionType
P1 = PlayerIdentifier.PLAYER1
P2 = PlayerIdentifier.PLAYER2


@pytest.fixture
def machine():
    return MatchStateMachine()


class TestTransitions:

    def test_setup_chain(self, machine):
        chain = [
            MatchState.CREATED, MatchState.WAITING_FOR_PLAYERS, MatchState.DECK_VALIDATION,
            MatchState.MATCH_APPROVAL, MatchState.PRE_GAME_SETUP, MatchState.DRAWING_CARDS,
            MatchState.SET_PRIZE_CARDS, MatchState.SELECT_ACTIVE_POKEMON, MatchState.SELECT_BENCH_POKEMON,
            MatchState.FIRST_PLAYER_SELECTION, MatchState.PLAYER_TURN, MatchState.BETWEEN_TURNS,
            MatchState.PLAYER_TURN, MatchState.MATCH_ENDED,
        ]
        for current, following in zip(chain, chain[1:]):
            assert machine.can_transition(current, following), f"{current} -> {following}"

    def test_drawing_cards_may_repeat(self, machine):
        assert machine.can_transition(MatchState.DRAWING_CARDS, MatchState.DRAWING_CARDS)

    def test_no_skipping_setup(self, machine):
        assert not machine.can_transition(MatchState.CREATED, MatchState.PLAYER_TURN)
        assert not machine.can_transition(MatchState.PLAYER_TURN, MatchState.FIRST_PLAYER_SELECTION)

    @pytest.mark.parametrize("state", [MatchState.MATCH_ENDED, MatchState.CANCELLED])
    def test_terminal_states(self, machine, state):
        assert not any(machine.can_transition(state, target) for target in MatchState)

    @pytest.mark.parametrize("state", [s for s in MatchState if s not in (MatchState.MATCH_ENDED, MatchState.CANCELLED)])
    def test_every_live_state_can_be_cancelled(self, machine, state):
        assert machine.can_transition(state, MatchState.CANCELLED)

    @pytest.mark.parametrize("state", [s for s in MatchState if s not in (MatchState.MATCH_ENDED, MatchState.CANCELLED)])
    def test_every_live_state_can_end(self, machine, state):
        assert machine.can_transition(state, MatchState.MATCH_ENDED)


class TestValidateAction:

    def test_concede_always_valid(self, machine):
        result = machine.validate_action(MatchState.DECK_VALIDATION, None, A.CONCEDE, P1, P2)
        assert result.is_valid

    def test_non_playable_state(self, machine):
        result = machine.validate_action(MatchState.CREATED, None, A.DRAW_CARD, None, P1)
        assert not result.is_valid
        assert result.error == ActionValidationError.INVALID_STATE

    def test_setup_state_allow_list(self, machine):
        assert machine.validate_action(MatchState.DRAWING_CARDS, None, A.DRAW_INITIAL_CARDS, None, P1).is_valid
        result = machine.validate_action(MatchState.DRAWING_CARDS, None, A.ATTACK, None, P1)
        assert result.error == ActionValidationError.INVALID_STATE

    def test_not_your_turn(self, machine):
        result = machine.validate_action(MatchState.PLAYER_TURN, TurnPhase.MAIN_PHASE, A.ATTACH_ENERGY, P1, P2)
        assert not result.is_valid
        assert result.error == ActionValidationError.NOT_PLAYER_TURN

    @pytest.mark.parametrize("action", [A.SET_ACTIVE_POKEMON, A.GENERATE_COIN_FLIP])
    def test_off_turn_actions(self, machine, action):
        assert machine.validate_action(MatchState.PLAYER_TURN, TurnPhase.ATTACK, action, P1, P2).is_valid

    def test_wrong_phase(self, machine):
        result = machine.validate_action(MatchState.PLAYER_TURN, TurnPhase.DRAW, A.ATTACK, P1, P1)
        assert result.error == ActionValidationError.INVALID_PHASE

    def test_main_phase_actions(self, machine):
        for action in (A.PLAY_POKEMON, A.ATTACH_ENERGY, A.PLAY_TRAINER, A.EVOLVE_POKEMON,
                       A.RETREAT, A.USE_ABILITY, A.ATTACK, A.END_TURN):
            assert machine.validate_action(MatchState.PLAYER_TURN, TurnPhase.MAIN_PHASE, action, P1, P1).is_valid


class TestPhaseAdvance:

    def test_draw_leads_to_main(self, machine):
        assert machine.get_next_phase(TurnPhase.DRAW, A.DRAW_CARD) == TurnPhase.MAIN_PHASE

    def test_attack_leads_to_end(self, machine):
        assert machine.get_next_phase(TurnPhase.ATTACK, A.ATTACK) == TurnPhase.END
        assert machine.get_next_phase(TurnPhase.MAIN_PHASE, A.ATTACK) == TurnPhase.END

    def test_main_phase_actions_stay(self, machine):
        assert machine.get_next_phase(TurnPhase.MAIN_PHASE, A.PLAY_TRAINER) == TurnPhase.MAIN_PHASE

    def test_end_turn_leaves_the_turn(self, machine):
        assert machine.get_next_phase(TurnPhase.END, A.END_TURN) is None


class TestWinConditions:

    def test_no_winner(self, machine, make_pokemon):
        p1 = player_state(active=make_pokemon("charmander"))
        p2 = player_state(active=make_pokemon("squirtle"))
        assert not machine.check_win_conditions(p1, p2).has_winner

    def test_last_prize_wins(self, machine, make_pokemon):
        p1 = player_state(active=make_pokemon("charmander"), prizes=[])
        p2 = player_state(active=make_pokemon("squirtle"))
        result = machine.check_win_conditions(p1, p2)
        assert result.winner == P1
        assert result.win_condition == WinCondition.PRIZE_CARDS

    def test_no_pokemon_in_play(self, machine, make_pokemon):
        p1 = player_state(active=make_pokemon("charmander"))
        p2 = player_state()
        result = machine.check_win_conditions(p1, p2)
        assert result.winner == P1
        assert result.win_condition == WinCondition.NO_POKEMON

    def test_empty_deck(self, machine, make_pokemon):
        p1 = player_state(active=make_pokemon("charmander"), deck=[])
        p2 = player_state(active=make_pokemon("squirtle"))
        result = machine.check_win_conditions(p1, p2)
        assert result.winner == P2
        assert result.win_condition == WinCondition.DECK_OUT

    def test_prizes_checked_before_board(self, machine, make_pokemon):
        p1 = player_state(prizes=[])
        p2 = player_state()
        result = machine.check_win_conditions(p1, p2)
        assert result.win_condition == WinCondition.PRIZE_CARDS
        assert result.winner == P1

    def test_player1_first_within_a_tier(self, machine):
        result = machine.check_win_conditions(player_state(prizes=[]), player_state(prizes=[]))
        assert result.winner == P1


class TestAvailableActions:

    def test_terminal_state_has_none(self, machine):
        assert machine.get_available_actions(MatchState.MATCH_ENDED, None, None, None) == []

    def test_setup_state(self, machine):
        actions = machine.get_available_actions(MatchState.SET_PRIZE_CARDS, None, None, None)
        assert actions == [A.SET_PRIZE_CARDS, A.CONCEDE]

    def test_draw_phase(self, machine):
        context = GameStateContext()
        assert machine.get_available_actions(MatchState.PLAYER_TURN, TurnPhase.DRAW, context, P1) == [
            A.DRAW_CARD, A.CONCEDE,
        ]

    def test_retreat_removed_after_retreating(self, machine, battle_state):
        state = battle_state.with_action(ActionSummary(action_id="r", player_id=P1, action_type=A.RETREAT))
        actions = machine.get_available_actions(MatchState.PLAYER_TURN, TurnPhase.MAIN_PHASE,
                                                GameStateContext.from_game_state(state), P1)
        assert A.RETREAT not in actions
        assert A.ATTACK in actions

    def test_attach_removed_when_no_attachments_left(self, machine, battle_state):
        state = battle_state.with_action(ActionSummary(
            action_id="e", player_id=P1, action_type=A.ATTACH_ENERGY,
            action_data={'attachments_remaining': 0},
        ))
        actions = machine.get_available_actions(MatchState.PLAYER_TURN, TurnPhase.MAIN_PHASE,
                                                GameStateContext.from_game_state(state), P1)
        assert A.ATTACH_ENERGY not in actions

    def test_end_phase_offers_prize_after_knockout(self, machine, battle_state):
        state = battle_state.with_action(ActionSummary(
            action_id="k", player_id=P1, action_type=A.ATTACK,
            action_data={'is_knocked_out': True, 'prize_count': 1},
        ))
        context = GameStateContext.from_game_state(state)
        assert machine.get_available_actions(MatchState.PLAYER_TURN, TurnPhase.END, context, P1) == [
            A.SELECT_PRIZE, A.CONCEDE,
        ]

        claimed = state.with_action(ActionSummary(action_id="p", player_id=P1, action_type=A.SELECT_PRIZE))
        context = GameStateContext.from_game_state(claimed)
        assert machine.get_available_actions(MatchState.PLAYER_TURN, TurnPhase.END, context, P1) == [
            A.END_TURN, A.CONCEDE,
        ]

    def test_select_active_withholds_end_turn(self, machine, make_pokemon):
        p2 = player_state(bench=[make_pokemon("pikachu")])
        state = GameState(player1_state=player_state(active=make_pokemon("charmander")), player2_state=p2,
                          phase=TurnPhase.SELECT_ACTIVE_POKEMON)
        actions = machine.get_available_actions(MatchState.PLAYER_TURN, TurnPhase.SELECT_ACTIVE_POKEMON,
                                                GameStateContext.from_game_state(state), P1)
        assert A.END_TURN not in actions

    def test_every_available_action_is_valid(self, machine, battle_state):
        """Whatever the query offers, validate_action accepts for the same inputs."""
        context = GameStateContext.from_game_state(battle_state)
        for state in MatchState:
            phases = list(TurnPhase) if state == MatchState.PLAYER_TURN else [None]
            for phase in phases:
                for action in machine.get_available_actions(state, phase, context, P1):
                    result = machine.validate_action(state, phase, action, P1, P1)
                    assert result.is_valid, f"{action} offered but rejected in {state}/{phase}"
