"""
Pokémon TCG Match Engine - Ability Pipeline (effects/ability.py)

USE_ABILITY: validate the action data against every declared effect, then
run the effects in declaration order. Effects whose required conditions
fail are skipped; the ability still counts as used.
"""

from typing import Callable, Dict, List

from cards.base import Ability, AbilityActivationType, UsageLimit
from cards.effects import (
    AbilityEffectType,
    EnergySource,
    SearchDestination,
    TargetType,
)
from effects.common import (
    EffectContext,
    StatePair,
    add_to_bench,
    apply_status,
    draw_cards,
    get_pokemon,
    matches_filter,
    needs_target_position,
    put_pokemon,
    refresh,
    remove_cards,
    remove_energy,
    require_energy_cards,
    resolve_targets,
    seeded_shuffle,
    swap_active_with_bench,
    targets_opponent,
)
from errors import GameRuleViolation, MalformedInputError
from models import (
    AbilityActionData,
    DamageShieldEntry,
    GameState,
    PlayerActionType,
    PlayerIdentifier,
)
from utils.logger import setup_logger

logger = setup_logger(__name__)

T = AbilityEffectType


# ============================================================================
# 1. VALIDATION
# ============================================================================

class AbilityEffectValidator:
    """Checks that action data carries what each effect needs."""

    def validate(self, ability: Ability, data: AbilityActionData) -> List[str]:
        errors: List[str] = []
        for index, effect in enumerate(ability.effects):
            for reason in self.validate_effect(effect, data):
                errors.append(f"Effect {index}: {reason}")
        return errors

    def validate_effect(self, effect, data: AbilityActionData) -> List[str]:
        errors: List[str] = []
        etype = effect.effect_type
        target = getattr(effect, 'target', None)

        if target is not None and needs_target_position(target) and data.target_pokemon is None:
            errors.append(f"targetPokemon is required for {etype} targeting {target.value}")

        if etype == T.ENERGY_ACCELERATION:
            if target != TargetType.SELF and data.target_pokemon is None and not needs_target_position(target):
                errors.append("targetPokemon is required when energy is not attached to this Pokemon")
            if effect.source in (EnergySource.HAND, EnergySource.DISCARD, EnergySource.SELF):
                errors.extend(self._selection_errors(data.selected_card_ids, effect.count, etype))
            elif effect.source == EnergySource.DECK and data.selected_card_ids:
                # Optional for deck searches (the engine picks), but never past the count
                errors.extend(self._selection_errors(data.selected_card_ids, effect.count, etype))

        elif etype == T.SEARCH_DECK:
            errors.extend(self._selection_errors(data.selected_card_ids, effect.count, etype))

        elif etype in (T.ATTACH_FROM_DISCARD, T.RETRIEVE_FROM_DISCARD):
            errors.extend(self._selection_errors(data.selected_card_ids, effect.count, etype))
            if etype == T.ATTACH_FROM_DISCARD and target != TargetType.SELF and data.target_pokemon is None \
                    and not needs_target_position(target):
                errors.append("targetPokemon is required for ATTACH_FROM_DISCARD")

        elif etype == T.SWITCH_POKEMON:
            if data.bench_position is None:
                errors.append("benchPosition is required for SWITCH_POKEMON")

        elif etype == T.DISCARD_FROM_HAND:
            if effect.count != 'all':
                if not data.hand_card_ids:
                    errors.append("handCardIds is required for DISCARD_FROM_HAND")
                elif len(data.hand_card_ids) != effect.count:
                    errors.append(f"handCardIds must contain exactly {effect.count} card(s)")

        return errors

    @staticmethod
    def _selection_errors(selected, count: int, etype: str) -> List[str]:
        if selected is None:
            return [f"selectedCardIds is required for {etype}"]
        if len(selected) > count:
            return [f"selectedCardIds cannot contain more than {count} card(s) for {etype}"]
        return []


# ============================================================================
# 2. EXECUTION
# ============================================================================

class AbilityExecutor:
    """Runs an activated ability against a GameState."""

    def __init__(self, resolver, rule_engine, condition_evaluator, validator: AbilityEffectValidator = None):
        self.resolver = resolver
        self.rule_engine = rule_engine
        self.conditions = condition_evaluator
        self.validator = validator or AbilityEffectValidator()
        self.handlers: Dict[str, Callable] = {
            T.HEAL: self._heal,
            T.PREVENT_DAMAGE: self._prevent_damage,
            T.STATUS_CONDITION: self._status_condition,
            T.ENERGY_ACCELERATION: self._energy_acceleration,
            T.SWITCH_POKEMON: self._switch_pokemon,
            T.DRAW_CARDS: self._draw_cards,
            T.SEARCH_DECK: self._search_deck,
            T.BOOST_ATTACK: self._passive_modifier,
            T.BOOST_HP: self._passive_modifier,
            T.REDUCE_DAMAGE: self._reduce_damage,
            T.DISCARD_FROM_HAND: self._discard_from_hand,
            T.ATTACH_FROM_DISCARD: self._attach_from_discard,
            T.RETRIEVE_FROM_DISCARD: self._retrieve_from_discard,
        }

    @staticmethod
    def used_this_turn(game_state: GameState, player: PlayerIdentifier, card_id: str) -> bool:
        if card_id in game_state.abilities_used(player):
            return True
        return any(
            a.player_id == player and a.action_type == PlayerActionType.USE_ABILITY
            and a.action_data.get('card_id') == card_id
            for a in game_state.actions_this_turn()
        )

    def execute(self, game_state: GameState, player: PlayerIdentifier, data: AbilityActionData,
                action_id: str = "") -> GameState:
        """
        Raises:
            GameRuleViolation: Pokémon/ability missing, not usable, or already used
            MalformedInputError: action data does not fit the ability's effects
        """
        player_state = game_state.get_player_state(player)
        opponent_state = game_state.get_opponent_state(player)

        pokemon = get_pokemon(player_state, data.target)
        if data.pokemon_instance_id and data.pokemon_instance_id != pokemon.instance_id:
            raise GameRuleViolation(f"Pokemon at {data.target.value} is not instance {data.pokemon_instance_id}")
        if pokemon.card_id != data.card_id:
            raise GameRuleViolation(f"Pokemon at {data.target.value} is not card {data.card_id}")

        template = self.resolver.get(pokemon.card_id)
        ability = template.ability
        if ability is None:
            raise GameRuleViolation(f"{template.name} has no ability")
        if ability.activation_type != AbilityActivationType.ACTIVATED:
            raise GameRuleViolation(f"{ability.name} is a {ability.activation_type.value.lower()} ability and cannot be used")
        if ability.usage_limit == UsageLimit.ONCE_PER_TURN and self.used_this_turn(game_state, player, data.card_id):
            raise GameRuleViolation(f"{ability.name} can only be used once per turn")

        errors = self.validator.validate(ability, data)
        if errors:
            raise MalformedInputError(errors)

        ctx = EffectContext(game_state, player, self.resolver, self.rule_engine, action_data=data,
                            source_instance_id=pokemon.instance_id, seed_key=action_id)
        pair: StatePair = (player_state, opponent_state)
        for effect in ability.effects:
            source = ctx.source_pokemon(pair[0])
            if not self.conditions.evaluate(effect.required_conditions, game_state, player, pair[0], pair[1],
                                            source_pokemon=source):
                logger.debug("Skipping %s of %s: conditions not met", effect.effect_type, ability.name)
                continue
            pair = self.handlers[effect.effect_type](effect, pair, ctx)

        logger.info("%s used %s (%s)", player.value, ability.name, template.card_id)
        new_state = game_state.with_player_states(player, pair[0], pair[1])
        new_state = ctx.apply_ledgers(new_state)
        return new_state.with_ability_used(player, data.card_id)

    # ------------------------------------------------------------------
    # Handlers: (effect, (player_state, opponent_state), ctx) -> pair
    # ------------------------------------------------------------------

    def _targets(self, effect, pair: StatePair, ctx: EffectContext):
        data = ctx.action_data
        return resolve_targets(effect.target, pair[0], pair[1], ctx.source_pokemon(pair[0]), data.target_pokemon)

    def _heal(self, effect, pair, ctx):
        for is_opponent, pokemon in self._targets(effect, pair, ctx):
            pair = put_pokemon(pair, is_opponent, refresh(pair, is_opponent, pokemon).with_healing(effect.amount))
        return pair

    def _prevent_damage(self, effect, pair, ctx):
        for is_opponent, pokemon in self._targets(effect, pair, ctx):
            owner = ctx.opponent if is_opponent else ctx.player
            ctx.pending_prevention.append((owner, pokemon.instance_id, DamageShieldEntry(
                amount=effect.amount, duration=effect.duration, turn_applied=ctx.turn_number,
                source=ctx.action_data.card_id)))
        return pair

    def _reduce_damage(self, effect, pair, ctx):
        for is_opponent, pokemon in self._targets(effect, pair, ctx):
            owner = ctx.opponent if is_opponent else ctx.player
            ctx.pending_reduction.append((owner, pokemon.instance_id, DamageShieldEntry(
                amount=effect.amount, duration=effect.duration, turn_applied=ctx.turn_number,
                source=effect.source or ctx.action_data.card_id)))
        return pair

    def _status_condition(self, effect, pair, ctx):
        targets = self._targets(effect, pair, ctx)
        if not targets:
            raise GameRuleViolation("No Pokemon to apply the status condition to")
        for is_opponent, pokemon in targets:
            updated = apply_status(refresh(pair, is_opponent, pokemon), effect.status_condition,
                                   self.rule_engine, ctx.turn_number, effect.poison_damage)
            pair = put_pokemon(pair, is_opponent, updated)
        return pair

    def _energy_target(self, effect, pair, ctx):
        data = ctx.action_data
        if effect.target == TargetType.SELF:
            target = ctx.source_pokemon(pair[0])
        elif data.target_pokemon is not None:
            target = get_pokemon(pair[1] if targets_opponent(effect.target) else pair[0], data.target_pokemon)
        else:
            targets = self._targets(effect, pair, ctx)
            target = targets[0][1] if targets else None
        if target is None:
            raise GameRuleViolation("No Pokemon to attach energy to")
        return targets_opponent(effect.target), target

    def _energy_acceleration(self, effect, pair, ctx):
        player_state, opponent_state = pair
        selected = list(ctx.action_data.selected_card_ids or [])

        if effect.source == EnergySource.DECK:
            if not selected:
                selected = [c for c in player_state.deck
                            if matches_filter(self.resolver.get(c), energy_type=effect.energy_type)
                            and self.resolver.get(c).is_energy()][:effect.count]
            require_energy_cards(self.resolver, selected, effect.energy_type)
            deck = remove_cards(player_state.deck, selected, "deck")
            player_state = player_state.with_deck(seeded_shuffle(deck, ctx.seed_key))
        elif effect.source == EnergySource.DISCARD:
            require_energy_cards(self.resolver, selected, effect.energy_type)
            player_state = player_state.with_discard_pile(remove_cards(player_state.discard_pile, selected, "discard pile"))
        elif effect.source == EnergySource.HAND:
            require_energy_cards(self.resolver, selected, effect.energy_type)
            player_state = player_state.with_hand(remove_cards(player_state.hand, selected, "hand"))
        else:
            require_energy_cards(self.resolver, selected, effect.energy_type)
            source = ctx.source_pokemon(player_state)
            player_state = player_state.with_pokemon(remove_energy(source, selected))

        pair = (player_state, opponent_state)
        is_opponent, target = self._energy_target(effect, pair, ctx)
        target = refresh(pair, is_opponent, target)
        return put_pokemon(pair, is_opponent, target.with_attached_energy(target.attached_energy + tuple(selected)))

    def _switch_pokemon(self, effect, pair, ctx):
        player_state, opponent_state = pair
        if player_state.active_pokemon is None:
            raise GameRuleViolation("No active Pokemon to switch")
        outgoing = player_state.active_pokemon.with_cleared_status()
        return swap_active_with_bench(player_state, ctx.action_data.bench_position, outgoing), opponent_state

    def _draw_cards(self, effect, pair, ctx):
        return draw_cards(pair[0], effect.count), pair[1]

    def _search_deck(self, effect, pair, ctx):
        player_state, opponent_state = pair
        selected = list(ctx.action_data.selected_card_ids or [])
        for card_id in selected:
            if not matches_filter(self.resolver.get(card_id), effect.card_type, effect.pokemon_type):
                raise GameRuleViolation(f"Card {card_id} does not match the search criteria")
        deck = seeded_shuffle(remove_cards(player_state.deck, selected, "deck"), ctx.seed_key)
        player_state = player_state.with_deck(deck)

        if effect.destination == SearchDestination.BENCH:
            for card_id in selected:
                player_state = add_to_bench(player_state, self.resolver.get(card_id))
        else:
            player_state = player_state.with_hand(player_state.hand + tuple(selected))
        return player_state, opponent_state

    def _passive_modifier(self, effect, pair, ctx):
        # Boosts are read from PASSIVE abilities during damage calculation
        logger.debug("%s has no immediate effect", effect.effect_type)
        return pair

    def _discard_from_hand(self, effect, pair, ctx):
        player_state, opponent_state = pair
        if effect.count == 'all':
            discarded = [c for c in player_state.hand
                         if effect.card_type is None or self.resolver.get(c).card_type == effect.card_type]
        else:
            discarded = list(ctx.action_data.hand_card_ids or [])
            for card_id in discarded:
                if effect.card_type is not None and self.resolver.get(card_id).card_type != effect.card_type:
                    raise GameRuleViolation(f"Card {card_id} is not a {effect.card_type.value} card")
        hand = remove_cards(player_state.hand, discarded, "hand")
        player_state = player_state._replace(hand=hand, discard_pile=player_state.discard_pile + tuple(discarded))
        return player_state, opponent_state

    def _attach_from_discard(self, effect, pair, ctx):
        player_state, opponent_state = pair
        selected = list(ctx.action_data.selected_card_ids or [])
        require_energy_cards(self.resolver, selected, effect.energy_type)
        player_state = player_state.with_discard_pile(remove_cards(player_state.discard_pile, selected, "discard pile"))
        pair = (player_state, opponent_state)
        is_opponent, target = self._energy_target(effect, pair, ctx)
        target = refresh(pair, is_opponent, target)
        return put_pokemon(pair, is_opponent, target.with_attached_energy(target.attached_energy + tuple(selected)))

    def _retrieve_from_discard(self, effect, pair, ctx):
        player_state, opponent_state = pair
        selected = list(ctx.action_data.selected_card_ids or [])
        for card_id in selected:
            if not matches_filter(self.resolver.get(card_id), effect.card_type, effect.pokemon_type):
                raise GameRuleViolation(f"Card {card_id} does not match the retrieval criteria")
        discard = remove_cards(player_state.discard_pile, selected, "discard pile")
        return player_state._replace(discard_pile=discard, hand=player_state.hand + tuple(selected)), opponent_state
