"""
Pokémon TCG Match Engine - Match State Machine (state_machine.py)

Top-level legality gate:
- match lifecycle transitions
- which action types a player may submit in (state, phase, turn owner)
- phase advancement after an action
- win-condition checks
- the available-actions query used by clients to render legal moves

Every action listed by get_available_actions is also accepted by
validate_action for the same inputs.
"""

from typing import Dict, FrozenSet, List, Optional, Sequence

from pydantic import BaseModel, Field

from models import (
    ActionSummary,
    ActionValidationError,
    MatchState,
    PlayerActionType,
    PlayerGameState,
    PlayerIdentifier,
    TurnPhase,
    WinCondition,
)

A = PlayerActionType


# ============================================================================
# 1. TABLES
# ============================================================================

# Every live state may also end (a concession) or be cancelled
TRANSITIONS: Dict[MatchState, FrozenSet[MatchState]] = {
    MatchState.CREATED: frozenset({MatchState.WAITING_FOR_PLAYERS, MatchState.MATCH_ENDED, MatchState.CANCELLED}),
    MatchState.WAITING_FOR_PLAYERS: frozenset({MatchState.DECK_VALIDATION, MatchState.MATCH_ENDED, MatchState.CANCELLED}),
    MatchState.DECK_VALIDATION: frozenset({MatchState.MATCH_APPROVAL, MatchState.MATCH_ENDED, MatchState.CANCELLED}),
    MatchState.MATCH_APPROVAL: frozenset({MatchState.PRE_GAME_SETUP, MatchState.MATCH_ENDED, MatchState.CANCELLED}),
    MatchState.PRE_GAME_SETUP: frozenset({MatchState.DRAWING_CARDS, MatchState.MATCH_ENDED, MatchState.CANCELLED}),
    MatchState.DRAWING_CARDS: frozenset({MatchState.DRAWING_CARDS, MatchState.SET_PRIZE_CARDS, MatchState.MATCH_ENDED, MatchState.CANCELLED}),
    MatchState.SET_PRIZE_CARDS: frozenset({MatchState.SELECT_ACTIVE_POKEMON, MatchState.MATCH_ENDED, MatchState.CANCELLED}),
    MatchState.SELECT_ACTIVE_POKEMON: frozenset({MatchState.SELECT_BENCH_POKEMON, MatchState.MATCH_ENDED, MatchState.CANCELLED}),
    MatchState.SELECT_BENCH_POKEMON: frozenset({MatchState.FIRST_PLAYER_SELECTION, MatchState.MATCH_ENDED, MatchState.CANCELLED}),
    MatchState.FIRST_PLAYER_SELECTION: frozenset({MatchState.PLAYER_TURN, MatchState.MATCH_ENDED, MatchState.CANCELLED}),
    MatchState.PLAYER_TURN: frozenset({MatchState.BETWEEN_TURNS, MatchState.MATCH_ENDED, MatchState.CANCELLED}),
    MatchState.BETWEEN_TURNS: frozenset({MatchState.PLAYER_TURN, MatchState.MATCH_ENDED, MatchState.CANCELLED}),
    MatchState.MATCH_ENDED: frozenset(),
    MatchState.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset({MatchState.MATCH_ENDED, MatchState.CANCELLED})

# Non-turn playable states and what they accept (CONCEDE is always accepted)
STATE_ACTIONS: Dict[MatchState, List[PlayerActionType]] = {
    MatchState.MATCH_APPROVAL: [A.APPROVE_MATCH],
    MatchState.DRAWING_CARDS: [A.DRAW_INITIAL_CARDS],
    MatchState.SET_PRIZE_CARDS: [A.SET_PRIZE_CARDS],
    MatchState.SELECT_ACTIVE_POKEMON: [A.SET_ACTIVE_POKEMON],
    MatchState.SELECT_BENCH_POKEMON: [A.PLAY_POKEMON, A.COMPLETE_INITIAL_SETUP],
    MatchState.FIRST_PLAYER_SELECTION: [A.CONFIRM_FIRST_PLAYER],
}

PLAYABLE_STATES = frozenset(STATE_ACTIONS) | {MatchState.PLAYER_TURN}

PHASE_ACTIONS: Dict[TurnPhase, List[PlayerActionType]] = {
    TurnPhase.DRAW: [A.DRAW_CARD],
    TurnPhase.MAIN_PHASE: [
        A.PLAY_POKEMON, A.SET_ACTIVE_POKEMON, A.ATTACH_ENERGY, A.PLAY_TRAINER, A.EVOLVE_POKEMON,
        A.RETREAT, A.USE_ABILITY, A.ATTACK, A.END_TURN,
    ],
    TurnPhase.ATTACK: [A.ATTACK, A.GENERATE_COIN_FLIP, A.END_TURN],
    TurnPhase.END: [A.SELECT_PRIZE, A.DRAW_PRIZE, A.SET_ACTIVE_POKEMON, A.END_TURN],
    TurnPhase.SELECT_ACTIVE_POKEMON: [A.SET_ACTIVE_POKEMON, A.END_TURN],
}

# Actions the player who is not taking the turn may still submit
OFF_TURN_ACTIONS = frozenset({A.CONCEDE, A.SET_ACTIVE_POKEMON, A.GENERATE_COIN_FLIP})

PHASE_ADVANCES: Dict[tuple, TurnPhase] = {
    (TurnPhase.DRAW, A.DRAW_CARD): TurnPhase.MAIN_PHASE,
    (TurnPhase.MAIN_PHASE, A.ATTACK): TurnPhase.END,
    (TurnPhase.ATTACK, A.ATTACK): TurnPhase.END,
    (TurnPhase.SELECT_ACTIVE_POKEMON, A.SET_ACTIVE_POKEMON): TurnPhase.END,
}


# ============================================================================
# 2. RESULT TYPES
# ============================================================================

class ActionValidation(BaseModel):
    model_config = {"frozen": True}

    is_valid: bool
    error: Optional[ActionValidationError] = None
    message: Optional[str] = None


class WinCheck(BaseModel):
    model_config = {"frozen": True}

    has_winner: bool = False
    winner: Optional[PlayerIdentifier] = None
    win_condition: Optional[WinCondition] = None


class GameStateContext(BaseModel):
    """Slice of the game state the available-actions providers read."""
    model_config = {"frozen": True}

    player1_state: Optional[PlayerGameState] = None
    player2_state: Optional[PlayerGameState] = None
    last_action: Optional[ActionSummary] = None
    action_history: Sequence[ActionSummary] = Field(default_factory=tuple)
    ability_usage_this_turn: Dict[PlayerIdentifier, FrozenSet[str]] = Field(default_factory=dict)

    @classmethod
    def from_game_state(cls, game_state) -> 'GameStateContext':
        return cls(
            player1_state=game_state.player1_state,
            player2_state=game_state.player2_state,
            last_action=game_state.last_action,
            action_history=game_state.action_history,
            ability_usage_this_turn=game_state.ability_usage_this_turn,
        )

    def get_player_state(self, player: PlayerIdentifier) -> Optional[PlayerGameState]:
        return self.player1_state if player == PlayerIdentifier.PLAYER1 else self.player2_state

    def actions_this_turn(self) -> List[ActionSummary]:
        actions = []
        for action in reversed(list(self.action_history)):
            if action.action_type == A.END_TURN:
                break
            actions.append(action)
        actions.reverse()
        return actions


# ============================================================================
# 3. AVAILABLE-ACTION PROVIDERS
# ============================================================================

class AvailableActionsProvider:
    """One strategy in the available-actions chain."""

    def supports(self, state: MatchState, phase: Optional[TurnPhase]) -> bool:
        raise NotImplementedError

    def get_actions(self, state: MatchState, phase: Optional[TurnPhase],
                    context: GameStateContext, current_player: Optional[PlayerIdentifier]) -> List[PlayerActionType]:
        raise NotImplementedError


class MatchStateActionProvider(AvailableActionsProvider):
    """Every state other than PLAYER_TURN."""

    def supports(self, state, phase):
        return state != MatchState.PLAYER_TURN

    def get_actions(self, state, phase, context, current_player):
        if state in TERMINAL_STATES:
            return []
        if state in STATE_ACTIONS:
            return list(STATE_ACTIONS[state]) + [A.CONCEDE]
        return [A.CONCEDE]


class DrawPhaseProvider(AvailableActionsProvider):
    def supports(self, state, phase):
        return phase == TurnPhase.DRAW

    def get_actions(self, state, phase, context, current_player):
        return [A.DRAW_CARD, A.CONCEDE]


class MainPhaseProvider(AvailableActionsProvider):
    """Main phase, minus once-per-turn actions already spent."""

    def supports(self, state, phase):
        return phase == TurnPhase.MAIN_PHASE

    def get_actions(self, state, phase, context, current_player):
        actions = [
            A.PLAY_POKEMON, A.ATTACH_ENERGY, A.PLAY_TRAINER, A.EVOLVE_POKEMON,
            A.RETREAT, A.USE_ABILITY, A.ATTACK, A.END_TURN, A.CONCEDE,
        ]
        this_turn = [a for a in context.actions_this_turn() if a.player_id == current_player]
        taken = {a.action_type for a in this_turn}

        if A.RETREAT in taken:
            actions.remove(A.RETREAT)
        attachments = [a for a in this_turn if a.action_type == A.ATTACH_ENERGY]
        if attachments and attachments[-1].action_data.get('attachments_remaining', 0) <= 0:
            actions.remove(A.ATTACH_ENERGY)

        player_state = context.get_player_state(current_player) if current_player else None
        if player_state is not None and player_state.has_pokemon_in_play():
            used = context.ability_usage_this_turn.get(current_player, frozenset())
            if all(p.card_id in used for p in player_state.all_pokemon_in_play()):
                actions.remove(A.USE_ABILITY)
        return actions


class AttackPhaseProvider(AvailableActionsProvider):
    def supports(self, state, phase):
        return phase == TurnPhase.ATTACK

    def get_actions(self, state, phase, context, current_player):
        return [A.ATTACK, A.GENERATE_COIN_FLIP, A.END_TURN, A.CONCEDE]


class EndPhaseProvider(AvailableActionsProvider):
    """Offers SELECT_PRIZE instead of END_TURN while a knockout is unclaimed."""

    def supports(self, state, phase):
        return phase == TurnPhase.END

    def get_actions(self, state, phase, context, current_player):
        if self.prize_pending(context, current_player):
            return [A.SELECT_PRIZE, A.CONCEDE]
        return [A.END_TURN, A.CONCEDE]

    @staticmethod
    def prize_pending(context: GameStateContext, current_player) -> bool:
        history = list(context.action_history)
        for index in range(len(history) - 1, -1, -1):
            action = history[index]
            if action.action_type == A.END_TURN:
                return False
            # The action that resolved the attack carries the knockout; a
            # coin-flip attack resolves on the last approval, from either player
            if action.action_type in (A.ATTACK, A.GENERATE_COIN_FLIP) and 'is_knocked_out' in action.action_data:
                if not action.action_data.get('is_knocked_out'):
                    return False
                later = history[index + 1:]
                claimed = sum(1 for a in later if a.action_type in (A.SELECT_PRIZE, A.DRAW_PRIZE))
                return claimed < action.action_data.get('prize_count', 1)
        return False


class SelectActivePhaseProvider(AvailableActionsProvider):
    """END_TURN is withheld while a player with a bench has no active."""

    def supports(self, state, phase):
        return phase == TurnPhase.SELECT_ACTIVE_POKEMON

    def get_actions(self, state, phase, context, current_player):
        needs_active = any(
            ps is not None and ps.active_pokemon is None and len(ps.bench) > 0
            for ps in (context.player1_state, context.player2_state)
        )
        if needs_active:
            return [A.SET_ACTIVE_POKEMON, A.CONCEDE]
        return [A.SET_ACTIVE_POKEMON, A.END_TURN, A.CONCEDE]


class PlayerTurnActionProvider(AvailableActionsProvider):
    """PLAYER_TURN: dispatches to the provider for the current phase."""

    def __init__(self, phase_providers: Optional[List[AvailableActionsProvider]] = None):
        self.phase_providers = phase_providers or [
            DrawPhaseProvider(),
            MainPhaseProvider(),
            AttackPhaseProvider(),
            EndPhaseProvider(),
            SelectActivePhaseProvider(),
        ]

    def supports(self, state, phase):
        return state == MatchState.PLAYER_TURN

    def get_actions(self, state, phase, context, current_player):
        if phase is None:
            return [A.CONCEDE]
        for provider in self.phase_providers:
            if provider.supports(state, phase):
                return provider.get_actions(state, phase, context, current_player)
        return [A.CONCEDE]


# ============================================================================
# 4. STATE MACHINE
# ============================================================================

class MatchStateMachine:
    """
    Stateless legality rules. All methods are pure; the instance only holds
    the provider chain used for available-actions queries.
    """

    def __init__(self, providers: Optional[List[AvailableActionsProvider]] = None):
        self.providers = providers or [MatchStateActionProvider(), PlayerTurnActionProvider()]

    @staticmethod
    def can_transition(from_state: MatchState, to_state: MatchState) -> bool:
        return to_state in TRANSITIONS.get(from_state, frozenset())

    @staticmethod
    def is_playable(state: MatchState) -> bool:
        return state in PLAYABLE_STATES

    @staticmethod
    def validate_action(
        state: MatchState,
        phase: Optional[TurnPhase],
        action_type: PlayerActionType,
        current_player: Optional[PlayerIdentifier],
        player_id: Optional[PlayerIdentifier],
    ) -> ActionValidation:
        if action_type == A.CONCEDE:
            return ActionValidation(is_valid=True)

        if state not in PLAYABLE_STATES:
            return ActionValidation(
                is_valid=False,
                error=ActionValidationError.INVALID_STATE,
                message=f"Action {action_type.value} not allowed in state {state.value}",
            )

        if state != MatchState.PLAYER_TURN:
            if action_type in STATE_ACTIONS[state]:
                return ActionValidation(is_valid=True)
            return ActionValidation(
                is_valid=False,
                error=ActionValidationError.INVALID_STATE,
                message=f"Action {action_type.value} not allowed in state {state.value}",
            )

        if current_player is not None and player_id != current_player:
            if action_type in OFF_TURN_ACTIONS:
                return ActionValidation(is_valid=True)
            return ActionValidation(
                is_valid=False,
                error=ActionValidationError.NOT_PLAYER_TURN,
                message="It is not your turn",
            )

        if phase is None or action_type not in PHASE_ACTIONS.get(phase, []):
            return ActionValidation(
                is_valid=False,
                error=ActionValidationError.INVALID_PHASE,
                message=f"Action {action_type.value} not allowed in phase {phase.value if phase else None}",
            )
        return ActionValidation(is_valid=True)

    @staticmethod
    def get_next_phase(phase: Optional[TurnPhase], action_type: PlayerActionType) -> Optional[TurnPhase]:
        """None means the turn is over and the match moves between turns."""
        if action_type == A.END_TURN or phase is None:
            return None
        return PHASE_ADVANCES.get((phase, action_type), phase)

    @staticmethod
    def check_win_conditions(player1_state: PlayerGameState, player2_state: PlayerGameState) -> WinCheck:
        """
        A player wins by claiming their last prize card, when the opponent
        has no Pokémon in play, or when the opponent's deck is empty.
        Checked in that order, PLAYER1 before PLAYER2 within each tier.
        """
        players = ((PlayerIdentifier.PLAYER1, player1_state, player2_state),
                   (PlayerIdentifier.PLAYER2, player2_state, player1_state))

        for player, own, _ in players:
            if own.get_prize_cards_remaining() == 0:
                return WinCheck(has_winner=True, winner=player, win_condition=WinCondition.PRIZE_CARDS)
        for player, _, opponent in players:
            if not opponent.has_pokemon_in_play():
                return WinCheck(has_winner=True, winner=player, win_condition=WinCondition.NO_POKEMON)
        for player, _, opponent in players:
            if opponent.get_deck_count() == 0:
                return WinCheck(has_winner=True, winner=player, win_condition=WinCondition.DECK_OUT)
        return WinCheck()

    def get_available_actions(
        self,
        state: MatchState,
        phase: Optional[TurnPhase],
        context: Optional[GameStateContext],
        current_player: Optional[PlayerIdentifier],
    ) -> List[PlayerActionType]:
        context = context or GameStateContext()
        for provider in self.providers:
            if provider.supports(state, phase):
                return provider.get_actions(state, phase, context, current_player)
        return [A.CONCEDE]
