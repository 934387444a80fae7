"""
Pokémon TCG Match Engine - Trainer Pipeline (effects/trainer.py)

PLAY_TRAINER: validate the action data against every effect, order the
effects by priority tier (discards first, draws last), execute, then move
the trainer card to the discard pile.
"""

from typing import Any, Callable, Dict, List, Tuple

from actions import evolve_pokemon
from cards.effects import TargetType, TrainerEffect, TrainerEffectType
from effects.common import (
    EffectContext,
    StatePair,
    add_to_bench,
    cards_of,
    draw_cards,
    get_pokemon,
    matches_filter,
    put_pokemon,
    remove_card,
    remove_cards,
    remove_energy,
    remove_from_play,
    require_energy_cards,
    seeded_shuffle,
    swap_active_with_bench,
    targets_opponent,
)
from errors import GameRuleViolation, MalformedInputError
from models import (
    DamageShieldEntry,
    EffectDuration,
    GameState,
    PlayerActionType,
    PlayerIdentifier,
    PokemonPosition,
    TrainerActionData,
)
import config
from utils.logger import setup_logger

logger = setup_logger(__name__)

T = TrainerEffectType

# Lower tiers run first. Anything not listed runs in tier 3.
TRAINER_EFFECT_PRIORITY: Dict[TrainerEffectType, int] = {
    T.DISCARD_HAND: 1,
    T.DISCARD_ENERGY: 1,
    T.OPPONENT_DISCARDS: 1,
    T.OPPONENT_SHUFFLES_HAND: 1,
    T.RETRIEVE_ENERGY: 2,
    T.SEARCH_DECK: 2,
    T.RETRIEVE_FROM_DISCARD: 2,
    T.LOOK_AT_DECK: 2,
    T.TRADE_CARDS: 2,
    T.HEAL: 3,
    T.REMOVE_ENERGY: 3,
    T.CURE_STATUS: 3,
    T.EVOLVE_POKEMON: 3,
    T.DEVOLVE_POKEMON: 3,
    T.RETURN_TO_HAND: 3,
    T.RETURN_TO_DECK: 3,
    T.PUT_INTO_PLAY: 3,
    T.REDUCE_DAMAGE: 3,
    T.SWITCH_ACTIVE: 4,
    T.FORCE_SWITCH: 4,
    T.DRAW_CARDS: 5,
    T.SHUFFLE_DECK: 5,
    T.OPPONENT_DRAWS: 5,
}
DEFAULT_PRIORITY = 3

ACTIVE_TARGETS = (TargetType.SELF, TargetType.ACTIVE_YOURS, TargetType.ACTIVE_OPPONENT, TargetType.DEFENDING)


def order_trainer_effects(effects: List[TrainerEffect]) -> List[TrainerEffect]:
    """Stable sort by priority tier."""
    return sorted(effects, key=lambda e: TRAINER_EFFECT_PRIORITY.get(e.effect_type, DEFAULT_PRIORITY))


def default_position(effect: TrainerEffect, data: TrainerActionData):
    """Pokémon slot an effect acts on: the chosen target, else the active for active-only effects."""
    if data.target is not None:
        return data.target
    if effect.target is None or effect.target in ACTIVE_TARGETS:
        return PokemonPosition.ACTIVE
    return None


# ============================================================================
# 1. VALIDATION
# ============================================================================

class TrainerEffectValidator:
    """Checks that action data carries what each trainer effect needs."""

    def validate(self, effects: List[TrainerEffect], data: TrainerActionData) -> List[str]:
        errors: List[str] = []
        if not data.card_id:
            errors.append("cardId is required")
        for index, effect in enumerate(effects):
            for reason in self.validate_effect(effect, data):
                errors.append(f"Effect {index}: {reason}")
        return errors

    def validate_effect(self, effect: TrainerEffect, data: TrainerActionData) -> List[str]:
        errors: List[str] = []
        etype = effect.effect_type

        if etype == T.SEARCH_DECK:
            errors.extend(_selection_errors(data.selected_card_ids, effect.value or 1, etype))

        elif etype == T.RETRIEVE_FROM_DISCARD:
            errors.extend(_selection_errors(data.selected_card_ids, effect.value or 1, etype))

        elif etype == T.RETRIEVE_ENERGY:
            errors.extend(_selection_errors(data.selected_card_ids,
                                            effect.value or config.DEFAULT_RETRIEVE_ENERGY_COUNT, etype))

        elif etype == T.DISCARD_HAND:
            if not data.hand_card_id and not data.discard_card_ids:
                errors.append("handCardId or discardCardIds is required for DISCARD_HAND effect")
            elif data.discard_card_ids and effect.value and len(data.discard_card_ids) != effect.value:
                errors.append(f"discardCardIds must contain exactly {effect.value} card(s)")

        elif etype == T.TRADE_CARDS:
            if not data.discard_card_ids:
                errors.append("discardCardIds is required for TRADE_CARDS effect")
            errors.extend(_selection_errors(data.selected_card_ids, effect.value or 1, etype))

        elif etype in (T.SWITCH_ACTIVE, T.FORCE_SWITCH):
            if data.bench_position is None:
                errors.append(f"benchPosition is required for {etype.value} effect")

        elif etype in (T.RETURN_TO_HAND, T.RETURN_TO_DECK):
            if data.target is None:
                errors.append(f"target is required for {etype.value} effect")
            elif data.target == PokemonPosition.ACTIVE and data.bench_position is None:
                errors.append("benchPosition is required when returning the active Pokemon")

        elif etype == T.EVOLVE_POKEMON:
            if data.target is None:
                errors.append("target is required for EVOLVE_POKEMON effect")
            if not data.evolution_card_id:
                errors.append("evolutionCardId is required for EVOLVE_POKEMON effect")

        elif etype == T.DEVOLVE_POKEMON:
            if data.target is None:
                errors.append("target is required for DEVOLVE_POKEMON effect")

        elif etype == T.PUT_INTO_PLAY:
            if not data.pokemon_card_id:
                errors.append("pokemonCardId is required for PUT_INTO_PLAY effect")

        elif etype == T.HEAL:
            if default_position(effect, data) is None:
                errors.append("target is required for HEAL effect")

        elif etype in (T.REMOVE_ENERGY, T.DISCARD_ENERGY):
            if data.target is None:
                errors.append(f"target is required for {etype.value} effect")
            if not data.energy_card_id:
                errors.append(f"energyCardId is required for {etype.value} effect")

        return errors


def _selection_errors(selected, limit: int, etype) -> List[str]:
    if not selected:
        return [f"selectedCardIds is required for {etype.value} effect"]
    if len(selected) > limit:
        return [f"selectedCardIds cannot contain more than {limit} card(s) for {etype.value}"]
    return []


# ============================================================================
# 2. EXECUTION
# ============================================================================

class TrainerExecutor:
    """Plays a trainer card from the hand."""

    def __init__(self, resolver, rule_engine, condition_evaluator, validator: TrainerEffectValidator = None):
        self.resolver = resolver
        self.rule_engine = rule_engine
        self.conditions = condition_evaluator
        self.validator = validator or TrainerEffectValidator()
        self.handlers: Dict[TrainerEffectType, Callable] = {
            T.DRAW_CARDS: self._draw_cards,
            T.SEARCH_DECK: self._search_deck,
            T.SHUFFLE_DECK: self._shuffle_deck,
            T.LOOK_AT_DECK: self._look_at_deck,
            T.DISCARD_HAND: self._discard_hand,
            T.RETRIEVE_FROM_DISCARD: self._retrieve_from_discard,
            T.OPPONENT_DISCARDS: self._opponent_discards,
            T.SWITCH_ACTIVE: self._switch_active,
            T.RETURN_TO_HAND: self._return_to_hand,
            T.RETURN_TO_DECK: self._return_to_deck,
            T.FORCE_SWITCH: self._force_switch,
            T.EVOLVE_POKEMON: self._evolve_pokemon,
            T.DEVOLVE_POKEMON: self._devolve_pokemon,
            T.PUT_INTO_PLAY: self._put_into_play,
            T.HEAL: self._heal,
            T.CURE_STATUS: self._cure_status,
            T.REMOVE_ENERGY: self._remove_energy,
            T.RETRIEVE_ENERGY: self._retrieve_energy,
            T.DISCARD_ENERGY: self._discard_energy,
            T.REDUCE_DAMAGE: self._reduce_damage,
            T.OPPONENT_DRAWS: self._opponent_draws,
            T.OPPONENT_SHUFFLES_HAND: self._opponent_shuffles_hand,
            T.TRADE_CARDS: self._trade_cards,
        }

    def supporter_played_this_turn(self, game_state: GameState, player: PlayerIdentifier) -> bool:
        for action in game_state.actions_this_turn():
            if action.player_id != player or action.action_type != PlayerActionType.PLAY_TRAINER:
                continue
            card_id = action.action_data.get('card_id')
            if card_id and self.resolver.get(card_id).is_supporter():
                return True
        return False

    def execute(self, game_state: GameState, player: PlayerIdentifier, data: TrainerActionData,
                action_id: str = "") -> Tuple[GameState, Dict[str, Any]]:
        """
        Returns:
            (new GameState, facts to record on the action)

        Raises:
            GameRuleViolation: card not playable
            MalformedInputError: action data does not fit the card's effects
        """
        if not data.card_id:
            raise MalformedInputError(["cardId is required"])
        player_state = game_state.get_player_state(player)
        if data.card_id not in player_state.hand:
            raise GameRuleViolation(f"Card {data.card_id} not found in hand")

        template = self.resolver.get(data.card_id)
        if not template.is_trainer():
            raise GameRuleViolation(f"{template.name} is not a Trainer card")
        if not template.trainer_effects:
            raise MalformedInputError(["Trainer card must have trainerEffects"])
        if template.is_supporter() and self.supporter_played_this_turn(game_state, player):
            raise GameRuleViolation("Only one Supporter card can be played per turn")

        errors = self.validator.validate(template.trainer_effects, data)
        if errors:
            raise MalformedInputError(errors)

        ctx = EffectContext(game_state, player, self.resolver, self.rule_engine, action_data=data,
                            seed_key=action_id or data.card_id)
        player_state = player_state.with_hand(remove_card(player_state.hand, data.card_id, "hand"))
        pair: StatePair = (player_state, game_state.get_opponent_state(player))

        for effect in order_trainer_effects(template.trainer_effects):
            if not self.conditions.evaluate(effect.required_conditions, game_state, player, pair[0], pair[1]):
                logger.debug("Skipping %s of %s: conditions not met", effect.effect_type.value, template.name)
                continue
            pair = self.handlers[effect.effect_type](effect, pair, ctx)

        player_state, opponent_state = pair
        player_state = player_state.with_discard_pile(player_state.discard_pile + (data.card_id,))
        logger.info("%s played %s", player.value, template.name)

        new_state = ctx.apply_ledgers(game_state.with_player_states(player, player_state, opponent_state))
        results = dict(ctx.results)
        if template.trainer_type is not None:
            results['trainer_type'] = template.trainer_type.value
        return new_state, results

    # ------------------------------------------------------------------
    # Deck & hand
    # ------------------------------------------------------------------

    def _check_filter(self, effect: TrainerEffect, card_ids, action: str) -> None:
        for card_id in card_ids:
            template = self.resolver.get(card_id)
            if not matches_filter(template, effect.card_type, energy_type=effect.energy_type):
                raise GameRuleViolation(f"Card {card_id} does not match the {action} criteria")

    def _draw_cards(self, effect, pair, ctx):
        return draw_cards(pair[0], effect.value or config.DEFAULT_DRAW_COUNT), pair[1]

    def _search_deck(self, effect, pair, ctx):
        player_state, opponent_state = pair
        selected = list(ctx.action_data.selected_card_ids or [])
        self._check_filter(effect, selected, "search")
        deck = seeded_shuffle(remove_cards(player_state.deck, selected, "deck"), ctx.seed_key)
        player_state = player_state.with_deck(deck)
        if effect.target == TargetType.BENCHED_YOURS:
            for card_id in selected:
                player_state = add_to_bench(player_state, self.resolver.get(card_id))
        else:
            player_state = player_state.with_hand(player_state.hand + tuple(selected))
        return player_state, opponent_state

    def _shuffle_deck(self, effect, pair, ctx):
        player_state, opponent_state = pair
        return player_state.with_deck(seeded_shuffle(player_state.deck, ctx.seed_key + "-shuffle")), opponent_state

    def _look_at_deck(self, effect, pair, ctx):
        # No state change; the revealed cards are recorded on the action for the client
        player_state, opponent_state = pair
        deck = opponent_state.deck if effect.target is not None and targets_opponent(effect.target) \
            else player_state.deck
        count = effect.value if effect.value is not None else len(deck)
        ctx.results['revealed_cards'] = list(deck[:count])
        return pair

    def _discard_hand(self, effect, pair, ctx):
        player_state, opponent_state = pair
        data = ctx.action_data
        discarded = list(data.discard_card_ids) if data.discard_card_ids else [data.hand_card_id]
        hand = remove_cards(player_state.hand, discarded, "hand")
        return player_state._replace(hand=hand, discard_pile=player_state.discard_pile + tuple(discarded)), opponent_state

    def _retrieve_from_discard(self, effect, pair, ctx):
        player_state, opponent_state = pair
        selected = list(ctx.action_data.selected_card_ids or [])
        self._check_filter(effect, selected, "retrieval")
        discard = remove_cards(player_state.discard_pile, selected, "discard pile")
        return player_state._replace(discard_pile=discard, hand=player_state.hand + tuple(selected)), opponent_state

    def _retrieve_energy(self, effect, pair, ctx):
        player_state, opponent_state = pair
        selected = list(ctx.action_data.selected_card_ids or [])
        require_energy_cards(self.resolver, selected, effect.energy_type)
        for card_id in selected:
            if self.resolver.get(card_id).is_special_energy:
                raise GameRuleViolation(f"Card {card_id} is not a basic Energy card")
        discard = remove_cards(player_state.discard_pile, selected, "discard pile")
        return player_state._replace(discard_pile=discard, hand=player_state.hand + tuple(selected)), opponent_state

    def _trade_cards(self, effect, pair, ctx):
        pair = self._discard_hand(effect, pair, ctx)
        return self._search_deck(effect, pair, ctx)

    def _opponent_discards(self, effect, pair, ctx):
        player_state, opponent_state = pair
        count = min(effect.value or 1, len(opponent_state.hand))
        chosen = list(seeded_shuffle(opponent_state.hand, ctx.seed_key + "-opponent-discard")[:count])
        hand = remove_cards(opponent_state.hand, chosen, "opponent's hand")
        return player_state, opponent_state._replace(hand=hand, discard_pile=opponent_state.discard_pile + tuple(chosen))

    def _opponent_draws(self, effect, pair, ctx):
        return pair[0], draw_cards(pair[1], effect.value or config.DEFAULT_DRAW_COUNT)

    def _opponent_shuffles_hand(self, effect, pair, ctx):
        player_state, opponent_state = pair
        deck = seeded_shuffle(opponent_state.deck + opponent_state.hand, ctx.seed_key + "-opponent-shuffle")
        opponent_state = opponent_state._replace(deck=deck, hand=())
        if effect.value:
            opponent_state = draw_cards(opponent_state, effect.value)
        return player_state, opponent_state

    # ------------------------------------------------------------------
    # Board
    # ------------------------------------------------------------------

    def _switch_active(self, effect, pair, ctx):
        player_state, opponent_state = pair
        if player_state.active_pokemon is None:
            raise GameRuleViolation("No active Pokemon to switch")
        outgoing = player_state.active_pokemon.with_cleared_status()
        return swap_active_with_bench(player_state, ctx.action_data.bench_position, outgoing), opponent_state

    def _force_switch(self, effect, pair, ctx):
        player_state, opponent_state = pair
        if opponent_state.active_pokemon is None:
            raise GameRuleViolation("Opponent has no active Pokemon")
        outgoing = opponent_state.active_pokemon.with_cleared_status()
        return player_state, swap_active_with_bench(opponent_state, ctx.action_data.bench_position, outgoing)

    def _take_off_board(self, pair, ctx):
        """Remove the targeted own Pokémon, promoting a replacement if it was active."""
        player_state, opponent_state = pair
        data = ctx.action_data
        pokemon = get_pokemon(player_state, data.target)
        if data.target == PokemonPosition.ACTIVE:
            if not player_state.bench:
                raise GameRuleViolation("Cannot remove your only Pokemon in play")
            player_state = swap_active_with_bench(player_state, data.bench_position)
        player_state = remove_from_play(player_state, player_state.find_pokemon_by_instance(pokemon.instance_id))
        return (player_state, opponent_state), pokemon

    def _return_to_hand(self, effect, pair, ctx):
        (player_state, opponent_state), pokemon = self._take_off_board(pair, ctx)
        return player_state.with_hand(player_state.hand + cards_of(pokemon)), opponent_state

    def _return_to_deck(self, effect, pair, ctx):
        (player_state, opponent_state), pokemon = self._take_off_board(pair, ctx)
        deck = seeded_shuffle(player_state.deck + cards_of(pokemon), ctx.seed_key + "-return")
        return player_state.with_deck(deck), opponent_state

    def _evolve_pokemon(self, effect, pair, ctx):
        data = ctx.action_data
        snapshot = ctx.game_state.with_player_states(ctx.player, pair[0], pair[1])
        player_state, evolved = evolve_pokemon(snapshot, ctx.player, data.target, data.evolution_card_id,
                                               self.resolver, self.rule_engine)
        ctx.results['evolved_instance_id'] = evolved.instance_id
        return player_state, pair[1]

    def _devolve_pokemon(self, effect, pair, ctx):
        is_opponent = targets_opponent(effect.target) if effect.target else False
        side = pair[1] if is_opponent else pair[0]
        pokemon = get_pokemon(side, ctx.action_data.target)
        if not pokemon.evolution_chain:
            raise GameRuleViolation("This Pokemon is not evolved")

        previous = self.resolver.get(pokemon.evolution_chain[0])
        devolved = pokemon.with_cleared_status()._replace(
            card_id=previous.card_id,
            max_hp=previous.hp,
            current_hp=max(0, previous.hp - pokemon.damage_taken),
            evolution_chain=pokemon.evolution_chain[1:],
            evolved_at=None,
        )
        pair = put_pokemon(pair, is_opponent, devolved)
        player_state, opponent_state = pair
        if is_opponent:
            return player_state, opponent_state.with_hand(opponent_state.hand + (pokemon.card_id,))
        return player_state.with_hand(player_state.hand + (pokemon.card_id,)), opponent_state

    def _put_into_play(self, effect, pair, ctx):
        player_state, opponent_state = pair
        card_id = ctx.action_data.pokemon_card_id
        discard = remove_card(player_state.discard_pile, card_id, "discard pile")
        player_state = add_to_bench(player_state.with_discard_pile(discard), self.resolver.get(card_id))
        return player_state, opponent_state

    def _heal(self, effect, pair, ctx):
        player_state, opponent_state = pair
        pokemon = get_pokemon(player_state, default_position(effect, ctx.action_data))
        return player_state.with_pokemon(pokemon.with_healing(effect.value or config.DEFAULT_HEAL_AMOUNT)), opponent_state

    def _cure_status(self, effect, pair, ctx):
        player_state, opponent_state = pair
        pokemon = get_pokemon(player_state, default_position(effect, ctx.action_data))
        return player_state.with_pokemon(pokemon.with_cleared_status()), opponent_state

    def _remove_energy(self, effect, pair, ctx):
        player_state, opponent_state = pair
        data = ctx.action_data
        pokemon = get_pokemon(opponent_state, data.target, "opponent's Pokemon")
        if self.rule_engine.is_effect_immune(pokemon):
            logger.debug("%s is immune to trainer effects", pokemon.instance_id)
            return pair
        opponent_state = opponent_state.with_pokemon(remove_energy(pokemon, [data.energy_card_id]))
        opponent_state = opponent_state.with_discard_pile(opponent_state.discard_pile + (data.energy_card_id,))
        return player_state, opponent_state

    def _discard_energy(self, effect, pair, ctx):
        player_state, opponent_state = pair
        data = ctx.action_data
        pokemon = get_pokemon(player_state, data.target)
        player_state = player_state.with_pokemon(remove_energy(pokemon, [data.energy_card_id]))
        return player_state.with_discard_pile(player_state.discard_pile + (data.energy_card_id,)), opponent_state

    def _reduce_damage(self, effect, pair, ctx):
        pokemon = get_pokemon(pair[0], default_position(effect, ctx.action_data))
        ctx.pending_reduction.append((ctx.player, pokemon.instance_id, DamageShieldEntry(
            amount=effect.value or 0, duration=EffectDuration.NEXT_TURN, turn_applied=ctx.turn_number,
            source=ctx.action_data.card_id)))
        return pair
