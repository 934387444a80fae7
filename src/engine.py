"""
Pokémon TCG Match Engine - Referee (engine.py)
Enforces legality and turns each submitted action into the next snapshot.

One call = one action:
1. Load the match (NotFoundError)
2. Ask the state machine whether the action is legal (IllegalStateError)
3. Dispatch to the handler, which returns a new GameState or raises
4. Record the action, advance the phase, check win conditions, save

Nothing is saved when a handler raises, so a failed action leaves the stored
match untouched.
"""

import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from actions import (
    DeckOutError,
    attach_energy,
    draw_card,
    end_turn,
    evolve_pokemon,
    needs_new_active,
    play_basic_pokemon,
    resolve_knockouts,
    retreat,
    set_active_pokemon,
    take_prize,
    award_prizes,
)
from cards.registry import CardResolver
from cards.rules import CardRuleEngine
from coin_flips import CoinFlipResolver
from conditions import ConditionEvaluator, ConditionMatchMode
from effects.ability import AbilityExecutor
from effects.attack import AttackExecutor
from effects.trainer import TrainerExecutor
from errors import GameRuleViolation, IllegalStateError, MalformedInputError, NotFoundError
from game_setup import (
    build_player_state,
    draw_opening_hand,
    flip_for_first_player,
    place_active_pokemon,
    set_prize_cards,
    shuffle_deck,
)
from models import (
    AbilityActionData,
    ActionSummary,
    ActionValidationError,
    AttachEnergyActionData,
    AttackActionData,
    CoinFlipActionData,
    EvolveActionData,
    GameState,
    Match,
    MatchState,
    PlayerActionType,
    PlayerGameState,
    PlayerIdentifier,
    PlayPokemonActionData,
    RetreatActionData,
    SelectPrizeActionData,
    SetActivePokemonActionData,
    SetupActivePokemonActionData,
    SetupStep,
    TrainerActionData,
    TurnPhase,
    WinCondition,
    utc_now,
)
from state_machine import EndPhaseProvider, GameStateContext, MatchStateMachine
import config
from utils.logger import setup_logger
from utils.xray import XRayLogger

logger = setup_logger(__name__)

A = PlayerActionType

# Handlers for these set the next phase themselves
SELF_PHASED_ACTIONS = frozenset({A.SET_ACTIVE_POKEMON, A.ATTACK, A.GENERATE_COIN_FLIP, A.END_TURN})

PAYLOADS = {
    A.PLAY_POKEMON: PlayPokemonActionData,
    A.SET_ACTIVE_POKEMON: SetActivePokemonActionData,
    A.ATTACH_ENERGY: AttachEnergyActionData,
    A.PLAY_TRAINER: TrainerActionData,
    A.EVOLVE_POKEMON: EvolveActionData,
    A.RETREAT: RetreatActionData,
    A.USE_ABILITY: AbilityActionData,
    A.ATTACK: AttackActionData,
    A.GENERATE_COIN_FLIP: CoinFlipActionData,
    A.SELECT_PRIZE: SelectPrizeActionData,
    A.DRAW_PRIZE: SelectPrizeActionData,
}

# Payloads that differ before turn 1
SETUP_PAYLOADS = {
    A.SET_ACTIVE_POKEMON: SetupActivePokemonActionData,
    A.PLAY_POKEMON: PlayPokemonActionData,
}

SETUP_STEPS = {
    A.APPROVE_MATCH: SetupStep.APPROVED,
    A.DRAW_INITIAL_CARDS: SetupStep.VALID_HAND,
    A.SET_PRIZE_CARDS: SetupStep.PRIZES_SET,
    A.PLAY_POKEMON: SetupStep.READY,
    A.COMPLETE_INITIAL_SETUP: SetupStep.READY,
    A.CONFIRM_FIRST_PLAYER: SetupStep.FIRST_PLAYER_CONFIRMED,
}


class TurnServices:
    """Card-dependent collaborators for one call (resolver cache is per call)."""

    def __init__(self, resolver: CardResolver, coin_resolver: CoinFlipResolver, condition_mode: ConditionMatchMode):
        self.resolver = resolver
        self.rules = CardRuleEngine(resolver)
        self.conditions = ConditionEvaluator(resolver, condition_mode)
        self.coins = coin_resolver
        self.abilities = AbilityExecutor(resolver, self.rules, self.conditions)
        self.trainers = TrainerExecutor(resolver, self.rules, self.conditions)
        self.attacks = AttackExecutor(resolver, self.rules, self.conditions, coin_resolver)


def parse_action_data(action_type: PlayerActionType, action_data: Optional[Dict[str, Any]], payloads=None):
    """Validate raw action data into its payload model (camelCase or snake_case keys)."""
    model = (PAYLOADS if payloads is None else payloads).get(action_type)
    if model is None:
        return None
    try:
        return model.model_validate(action_data or {})
    except ValidationError as exc:
        reasons = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
        raise MalformedInputError(reasons) from exc


class MatchEngine:
    """
    The turn-action use case.

    Core Responsibilities:
    1. execute_turn_action() - validate and apply one player action
    2. get_available_actions() - legal action types for a player
    3. prepare_match() / start_game() - install decks for setup, or skip setup entirely
    4. cancel_match() - abandon a match that has not ended
    """

    def __init__(self, repository, card_lookup, state_machine: Optional[MatchStateMachine] = None,
                 coin_resolver: Optional[CoinFlipResolver] = None,
                 condition_mode: ConditionMatchMode = ConditionMatchMode.ALL,
                 clock: Optional[Callable] = None):
        self.repository = repository
        self.card_lookup = card_lookup
        self.state_machine = state_machine or MatchStateMachine()
        self.coin_resolver = coin_resolver or CoinFlipResolver()
        self.condition_mode = condition_mode
        self.clock = clock or utc_now
        self._xrays: Dict[str, XRayLogger] = {}
        self.handlers: Dict[PlayerActionType, Callable] = {
            A.DRAW_CARD: self._draw_card,
            A.PLAY_POKEMON: self._play_pokemon,
            A.SET_ACTIVE_POKEMON: self._set_active_pokemon,
            A.ATTACH_ENERGY: self._attach_energy,
            A.PLAY_TRAINER: self._play_trainer,
            A.EVOLVE_POKEMON: self._evolve_pokemon,
            A.RETREAT: self._retreat,
            A.USE_ABILITY: self._use_ability,
            A.ATTACK: self._attack,
            A.GENERATE_COIN_FLIP: self._generate_coin_flip,
            A.SELECT_PRIZE: self._select_prize,
            A.DRAW_PRIZE: self._select_prize,
            A.END_TURN: self._end_turn,
        }
        self.setup_handlers: Dict[PlayerActionType, Callable] = {
            A.APPROVE_MATCH: self._approve_match,
            A.DRAW_INITIAL_CARDS: self._draw_initial_cards,
            A.SET_PRIZE_CARDS: self._set_prize_cards,
            A.SET_ACTIVE_POKEMON: self._set_initial_active,
            A.PLAY_POKEMON: self._bench_during_setup,
            A.COMPLETE_INITIAL_SETUP: self._complete_initial_setup,
            A.CONFIRM_FIRST_PLAYER: self._confirm_first_player,
        }

    # ========================================================================
    # 1. ENTRY POINTS
    # ========================================================================

    def prepare_match(self, match: Match, player1_deck: List[str], player2_deck: List[str]) -> Match:
        """
        Install both validated decks so the setup actions (APPROVE_MATCH
        through CONFIRM_FIRST_PLAYER) can run. Decks are shuffled once both
        players approve.

        Args:
            match: Match in MATCH_APPROVAL with no game state yet
            player1_deck: Card ids of PLAYER1's validated deck
            player2_deck: Card ids of PLAYER2's validated deck
        """
        if match.state != MatchState.MATCH_APPROVAL:
            raise IllegalStateError(
                f"Cannot prepare match {match.id} in state {match.state.value}. Must be MATCH_APPROVAL"
            )
        if match.game_state is not None:
            raise IllegalStateError(f"Match {match.id} already has a game state")
        game_state = GameState(
            player1_state=build_player_state(player1_deck),
            player2_state=build_player_state(player2_deck),
            turn_number=config.MIN_TURN_NUMBER,
            phase=None,
        )
        match.update_game_state(game_state)
        logger.info("Match %s prepared: %d and %d card decks", match.id, len(player1_deck), len(player2_deck))
        return self.repository.save(match)

    def start_game(self, match: Match, player1_state: PlayerGameState, player2_state: PlayerGameState,
                   first_player: PlayerIdentifier = PlayerIdentifier.PLAYER1) -> Match:
        """Install a ready-made opening GameState and begin turn 1 (match must be in FIRST_PLAYER_SELECTION)."""
        game_state = self._first_turn(GameState(player1_state=player1_state, player2_state=player2_state),
                                      first_player)
        match.first_player = first_player
        match.update_game_state(game_state)
        match.transition_to(MatchState.PLAYER_TURN)
        logger.info("Match %s started, %s goes first", match.id, first_player.value)
        self._trace_state(match, game_state)
        return self.repository.save(match)

    def execute_turn_action(self, match_id: str, player_id: str, action_type, action_data: Optional[Dict] = None,
                            cards_map: Optional[Dict] = None) -> Match:
        """
        Apply one action for one player.

        Args:
            match_id: Match to act on
            player_id: Submitting player's id
            action_type: PlayerActionType (or its string value)
            action_data: Raw payload, camelCase or snake_case keys
            cards_map: Optional batch of card templates keyed by card id

        Returns:
            The saved Match

        Raises:
            NotFoundError, IllegalStateError, MalformedInputError,
            GameRuleViolation, SelectionRequiredError
        """
        match = self._load(match_id)
        action_type = PlayerActionType(action_type)
        player = match.get_player_identifier(player_id)
        if player is None:
            raise IllegalStateError(f"Player {player_id} is not part of match {match_id}")

        game_state = match.game_state
        phase = game_state.phase if game_state is not None else None
        current = game_state.current_player if game_state is not None else None
        validation = self.state_machine.validate_action(match.state, phase, action_type, current, player)
        if not validation.is_valid:
            raise IllegalStateError(validation.message, validation.error)

        if action_type == A.CONCEDE:
            return self._concede(match, player)
        if game_state is None:
            raise IllegalStateError(f"Match {match_id} has no game state")
        if match.state != MatchState.PLAYER_TURN:
            return self._execute_setup_action(match, game_state, player, action_type, action_data, cards_map)

        data = parse_action_data(action_type, action_data)
        services = TurnServices(CardResolver(self.card_lookup, cards_map), self.coin_resolver, self.condition_mode)
        action_id = str(uuid.uuid4())

        try:
            new_state, results = self.handlers[action_type](match, game_state, player, data, services, action_id)
        except DeckOutError:
            logger.info("%s cannot draw and loses by deck out", player.value)
            return self._finish(match, player.opponent(), WinCondition.DECK_OUT)

        recorded = data.model_dump(mode='json') if data is not None else {}
        recorded.update(results)
        summary = ActionSummary(
            action_id=action_id,
            player_id=player,
            action_type=action_type,
            timestamp=self.clock(),
            action_data=recorded,
        )
        new_state = new_state.with_action(summary)
        if action_type not in SELF_PHASED_ACTIONS and new_state.phase == game_state.phase:
            new_state = new_state.with_phase(self.state_machine.get_next_phase(game_state.phase, action_type))

        if action_type == A.END_TURN:
            match.transition_to(MatchState.BETWEEN_TURNS)
        match.update_game_state(new_state)
        self._trace_action(match, new_state, summary)

        win = self.state_machine.check_win_conditions(new_state.player1_state, new_state.player2_state)
        if win.has_winner:
            return self._finish(match, win.winner, win.win_condition)
        if action_type == A.END_TURN:
            match.transition_to(MatchState.PLAYER_TURN)

        logger.debug("Match %s: %s %s -> phase %s", match_id, player.value, action_type.value,
                     new_state.phase.value if new_state.phase else None)
        return self.repository.save(match)

    def cancel_match(self, match_id: str, reason: Optional[str] = None) -> Match:
        """Abandon a match that has not ended. Cancelled matches have no winner."""
        match = self._load(match_id)
        match.cancel(reason)
        logger.info("Match %s cancelled%s", match.id, f": {reason}" if reason else "")
        xray = self._xrays.pop(match.id, None)
        if xray is not None:
            xray.log_game_end(None, MatchState.CANCELLED.value)
        return self.repository.save(match)

    def get_available_actions(self, match_id: str, player_id: str) -> List[PlayerActionType]:
        """Action types the player can submit right now."""
        match = self._load(match_id)
        player = match.get_player_identifier(player_id)
        if player is None:
            raise IllegalStateError(f"Player {player_id} is not part of match {match_id}")

        game_state = match.game_state
        if game_state is None or match.state != MatchState.PLAYER_TURN:
            actions = self.state_machine.get_available_actions(match.state, None, None, None)
            return [a for a in actions if not self._setup_step_done(match, player, a)]

        if player != game_state.current_player:
            actions = []
            if needs_new_active(game_state.get_player_state(player)):
                actions.append(A.SET_ACTIVE_POKEMON)
            flip = game_state.coin_flip_state
            if flip is not None and not flip.has_approved(player):
                actions.append(A.GENERATE_COIN_FLIP)
            return actions + [A.CONCEDE]

        context = GameStateContext.from_game_state(game_state)
        return self.state_machine.get_available_actions(match.state, game_state.phase, context, player)

    # ========================================================================
    # 2. HELPERS
    # ========================================================================

    def _load(self, match_id: str) -> Match:
        match = self.repository.find_by_id(match_id)
        if match is None:
            raise NotFoundError(f"Match {match_id} not found")
        return match

    def _finish(self, match: Match, winner: PlayerIdentifier, condition: WinCondition) -> Match:
        match.end_match(winner, condition)
        logger.info("Match %s ended: %s wins by %s", match.id, winner.value, condition.value)
        xray = self._xrays.pop(match.id, None)
        if xray is not None:
            xray.log_game_end(match.winner_id, condition.value)
        return self.repository.save(match)

    def _concede(self, match: Match, player: PlayerIdentifier) -> Match:
        if match.is_finished():
            raise IllegalStateError(f"Match {match.id} has already ended", ActionValidationError.INVALID_STATE)
        game_state = match.game_state
        if game_state is not None:
            if any(a.action_type == A.CONCEDE for a in game_state.action_history):
                raise IllegalStateError(f"Match {match.id} has already been conceded")
            summary = ActionSummary(
                action_id=str(uuid.uuid4()),
                player_id=player,
                action_type=A.CONCEDE,
                timestamp=self.clock(),
                action_data={},
            )
            match.update_game_state(game_state.with_action(summary))
            self._trace_action(match, match.game_state, summary)
        logger.info("%s conceded match %s", player.value, match.id)
        return self._finish(match, player.opponent(), WinCondition.CONCEDE)

    @staticmethod
    def _first_turn(game_state: GameState, first_player: PlayerIdentifier) -> GameState:
        return game_state._replace(
            turn_number=config.MIN_TURN_NUMBER,
            phase=TurnPhase.DRAW,
            current_player=first_player,
        )

    def _xray(self, match: Match) -> Optional[XRayLogger]:
        if not config.XRAY_ENABLED:
            return None
        if match.id not in self._xrays:
            self._xrays[match.id] = XRayLogger(match.id)
        return self._xrays[match.id]

    def _trace_action(self, match: Match, game_state: GameState, summary: ActionSummary) -> None:
        xray = self._xray(match)
        if xray is not None:
            xray.log_action(game_state.turn_number, summary)
            xray.log_state(game_state)

    def _trace_state(self, match: Match, game_state: GameState) -> None:
        xray = self._xray(match)
        if xray is not None:
            xray.log_state(game_state)

    @staticmethod
    def _award_stray_knockouts(game_state: GameState, services: TurnServices) -> GameState:
        """Knockouts outside an attack pay their prizes out immediately."""
        game_state, knockouts = resolve_knockouts(game_state, services.rules)
        for record in knockouts:
            taker = record.owner.opponent()
            game_state = game_state.with_player_state(
                taker, award_prizes(game_state.get_player_state(taker), record.prize_count)
            )
        return game_state

    # ========================================================================
    # 3. ACTION HANDLERS: (match, state, player, data, services, action_id)
    #    -> (GameState, facts recorded on the action)
    # ========================================================================

    def _draw_card(self, match, game_state, player, data, services, action_id) -> Tuple[GameState, Dict]:
        player_state = draw_card(game_state.get_player_state(player))
        return game_state.with_player_state(player, player_state), {}

    def _play_pokemon(self, match, game_state, player, data, services, action_id):
        player_state, instance = play_basic_pokemon(game_state.get_player_state(player), data.card_id,
                                                    services.resolver)
        return game_state.with_player_state(player, player_state), {'instance_id': instance.instance_id}

    def _set_active_pokemon(self, match, game_state, player, data, services, action_id):
        player_state = set_active_pokemon(game_state.get_player_state(player), data.target)
        new_state = game_state.with_player_state(player, player_state)
        if new_state.phase != TurnPhase.SELECT_ACTIVE_POKEMON:
            return new_state, {}
        if any(needs_new_active(new_state.get_player_state(p)) for p in PlayerIdentifier):
            return new_state, {}

        # Every active is filled: pick the turn back up where it stopped
        this_turn = [a for a in new_state.actions_this_turn() if a.player_id == new_state.current_player]
        taken = {a.action_type for a in this_turn}
        attacked = any('is_knocked_out' in a.action_data for a in new_state.actions_this_turn())
        if attacked:
            phase = self.state_machine.get_next_phase(TurnPhase.SELECT_ACTIVE_POKEMON, A.SET_ACTIVE_POKEMON)
        elif A.DRAW_CARD not in taken:
            phase = TurnPhase.DRAW
        else:
            phase = TurnPhase.MAIN_PHASE
        return new_state.with_phase(phase), {}

    def _attach_energy(self, match, game_state, player, data, services, action_id):
        player_state, remaining = attach_energy(game_state, player, data.energy_card_id, data.target,
                                                services.resolver, services.rules)
        return game_state.with_player_state(player, player_state), {'attachments_remaining': remaining}

    def _play_trainer(self, match, game_state, player, data, services, action_id):
        new_state, results = services.trainers.execute(game_state, player, data, action_id)
        return self._award_stray_knockouts(new_state, services), results

    def _evolve_pokemon(self, match, game_state, player, data, services, action_id):
        player_state, evolved = evolve_pokemon(game_state, player, data.target, data.evolution_card_id,
                                               services.resolver, services.rules)
        return game_state.with_player_state(player, player_state), {'evolved_instance_id': evolved.instance_id}

    def _retreat(self, match, game_state, player, data, services, action_id):
        player_state, paid = retreat(game_state, player, data, services.resolver, services.rules)
        return game_state.with_player_state(player, player_state), {'discarded_energy': paid}

    def _use_ability(self, match, game_state, player, data, services, action_id):
        new_state = services.abilities.execute(game_state, player, data, action_id)
        return self._award_stray_knockouts(new_state, services), {}

    def _attack(self, match, game_state, player, data, services, action_id):
        return services.attacks.execute(game_state, player, data, match.id, action_id)

    def _generate_coin_flip(self, match, game_state, player, data, services, action_id):
        flip = game_state.coin_flip_state
        if flip is not None and data.action_id and flip.action_id and data.action_id != flip.action_id:
            raise GameRuleViolation(f"Coin flip {data.action_id} is not the pending flip")
        if flip is not None and flip.has_approved(player):
            raise GameRuleViolation("You have already approved this coin flip")
        return services.attacks.generate_coin_flip(game_state, player, match.id)

    def _select_prize(self, match, game_state, player, data, services, action_id):
        if not EndPhaseProvider.prize_pending(GameStateContext.from_game_state(game_state), player):
            raise GameRuleViolation("No prize card to take")
        player_state = take_prize(game_state.get_player_state(player), data.prize_index)
        return game_state.with_player_state(player, player_state), {}

    def _end_turn(self, match, game_state, player, data, services, action_id):
        if game_state.coin_flip_state is not None:
            raise GameRuleViolation("Resolve the pending coin flip before ending the turn")
        if EndPhaseProvider.prize_pending(GameStateContext.from_game_state(game_state), player):
            raise GameRuleViolation("Take your prize card(s) before ending the turn")
        if any(needs_new_active(game_state.get_player_state(p)) for p in PlayerIdentifier):
            raise GameRuleViolation("A new active Pokemon must be chosen before ending the turn")

        new_state, knockouts = end_turn(game_state, match.id, services.coins, services.rules)
        logger.info("Turn %d ended, %s to play", game_state.turn_number, new_state.current_player.value)
        return new_state, {'status_knockouts': [k.card_id for k in knockouts]}

    # ========================================================================
    # 4. SETUP: every step is taken once per player; the match moves on
    #    when both players have taken it
    # ========================================================================

    def _setup_step_done(self, match: Match, player: PlayerIdentifier, action_type: PlayerActionType) -> bool:
        if action_type == A.SET_ACTIVE_POKEMON:
            return match.game_state is not None and \
                match.game_state.get_player_state(player).active_pokemon is not None
        step = SETUP_STEPS.get(action_type)
        return step is not None and match.setup.has(step, player)

    def _execute_setup_action(self, match: Match, game_state: GameState, player: PlayerIdentifier,
                              action_type: PlayerActionType, action_data: Optional[Dict],
                              cards_map: Optional[Dict]) -> Match:
        data = parse_action_data(action_type, action_data, SETUP_PAYLOADS)
        resolver = CardResolver(self.card_lookup, cards_map)
        new_state, results = self.setup_handlers[action_type](match, game_state, player, data, resolver)

        recorded = data.model_dump(mode='json') if data is not None else {}
        recorded.update(results)
        summary = ActionSummary(
            action_id=str(uuid.uuid4()),
            player_id=player,
            action_type=action_type,
            timestamp=self.clock(),
            action_data=recorded,
        )
        new_state = new_state.with_action(summary)
        self._trace_action(match, new_state, summary)

        match.update_game_state(self._advance_setup(match, new_state))
        logger.debug("Match %s: %s %s -> %s", match.id, player.value, action_type.value, match.state.value)
        return self.repository.save(match)

    def _advance_setup(self, match: Match, game_state: GameState) -> GameState:
        setup = match.setup
        if match.state == MatchState.MATCH_APPROVAL and setup.both(SetupStep.APPROVED):
            match.transition_to(MatchState.PRE_GAME_SETUP)
            for player in PlayerIdentifier:
                deck_seed = f"{match.id}-{player.value}-deck"
                game_state = game_state.with_player_state(
                    player, shuffle_deck(game_state.get_player_state(player), deck_seed)
                )
            match.transition_to(MatchState.DRAWING_CARDS)
        elif match.state == MatchState.DRAWING_CARDS and setup.both(SetupStep.VALID_HAND):
            match.transition_to(MatchState.SET_PRIZE_CARDS)
        elif match.state == MatchState.SET_PRIZE_CARDS and setup.both(SetupStep.PRIZES_SET):
            match.transition_to(MatchState.SELECT_ACTIVE_POKEMON)
        elif match.state == MatchState.SELECT_ACTIVE_POKEMON and all(
                game_state.get_player_state(p).active_pokemon is not None for p in PlayerIdentifier):
            match.transition_to(MatchState.SELECT_BENCH_POKEMON)
        elif match.state == MatchState.SELECT_BENCH_POKEMON and setup.both(SetupStep.READY):
            match.transition_to(MatchState.FIRST_PLAYER_SELECTION)
        elif match.state == MatchState.FIRST_PLAYER_SELECTION and setup.both(SetupStep.FIRST_PLAYER_CONFIRMED):
            game_state = self._first_turn(game_state, match.first_player)
            match.transition_to(MatchState.PLAYER_TURN)
            logger.info("Match %s started, %s goes first", match.id, match.first_player.value)
        else:
            return game_state
        logger.info("Match %s moved to %s", match.id, match.state.value)
        return game_state

    def _approve_match(self, match, game_state, player, data, resolver) -> Tuple[GameState, Dict]:
        if match.setup.has(SetupStep.APPROVED, player):
            raise GameRuleViolation("Player has already approved the match")
        match.setup = match.setup.mark(SetupStep.APPROVED, player)
        return game_state, {}

    def _draw_initial_cards(self, match, game_state, player, data, resolver):
        if match.setup.has(SetupStep.VALID_HAND, player):
            raise GameRuleViolation("Player has already drawn a valid initial hand. Cannot draw again.")
        attempt = sum(1 for a in game_state.action_history
                      if a.player_id == player and a.action_type == A.DRAW_INITIAL_CARDS)
        player_state, is_valid = draw_opening_hand(game_state.get_player_state(player),
                                                   f"{match.id}-{player.value}-opening-{attempt}", resolver)
        if is_valid:
            match.setup = match.setup.mark(SetupStep.VALID_HAND, player)
        else:
            logger.info("%s has no Basic Pokemon in hand, redraw %d", player.value, attempt + 1)
        return game_state.with_player_state(player, player_state), {'hand_valid': is_valid, 'attempt': attempt + 1}

    def _set_prize_cards(self, match, game_state, player, data, resolver):
        if match.setup.has(SetupStep.PRIZES_SET, player):
            raise GameRuleViolation("Player has already set prize cards. Cannot set again.")
        player_state = set_prize_cards(game_state.get_player_state(player))
        match.setup = match.setup.mark(SetupStep.PRIZES_SET, player)
        return game_state.with_player_state(player, player_state), {'prize_count': len(player_state.prize_cards)}

    def _set_initial_active(self, match, game_state, player, data, resolver):
        player_state, active = place_active_pokemon(game_state.get_player_state(player), data.card_id, resolver)
        return game_state.with_player_state(player, player_state), {'instance_id': active.instance_id}

    def _bench_during_setup(self, match, game_state, player, data, resolver):
        if match.setup.has(SetupStep.READY, player):
            raise GameRuleViolation("Player has already completed initial setup")
        player_state, instance = play_basic_pokemon(game_state.get_player_state(player), data.card_id, resolver)
        return game_state.with_player_state(player, player_state), {'instance_id': instance.instance_id}

    def _complete_initial_setup(self, match, game_state, player, data, resolver):
        if match.setup.has(SetupStep.READY, player):
            raise GameRuleViolation("Player has already completed initial setup")
        match.setup = match.setup.mark(SetupStep.READY, player)
        if not match.setup.both(SetupStep.READY):
            return game_state, {}

        # Last player ready: toss for who goes first
        first_player, flip = flip_for_first_player(self.coin_resolver, match.id)
        match.first_player = first_player
        return game_state, {'first_player': first_player.value, 'coin_flip': flip.result}

    def _confirm_first_player(self, match, game_state, player, data, resolver):
        if match.setup.has(SetupStep.FIRST_PLAYER_CONFIRMED, player):
            raise GameRuleViolation("Player has already confirmed the first player")
        match.setup = match.setup.mark(SetupStep.FIRST_PLAYER_CONFIRMED, player)
        return game_state, {'first_player': match.first_player.value}
