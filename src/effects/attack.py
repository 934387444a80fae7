"""
Pokémon TCG Match Engine - Attack Pipeline (effects/attack.py)

ATTACK and GENERATE_COIN_FLIP.

Damage Order of Operations (STRICT)
1. Base damage (coin-flip damage policy when the attack flips)
2. Conditional DAMAGE_MODIFIER effects
3. Passive BOOST_ATTACK abilities of the attacker's side
4. Weakness, then resistance
5. Defender card rules (immunity, reduction, increase)
6. Prevention ledger, then reduction ledger
7. Floor at 0
"""

import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from actions import award_prizes, needs_new_active, resolve_knockouts
from cards.base import AbilityActivationType, Attack
from cards.effects import (
    AttackEffectType,
    BoostAttackEffect,
    EnergySource,
    TargetType,
)
from coin_flips import AttackCoinFlipParser, CoinFlipResolver
from effects.common import (
    EffectContext,
    StatePair,
    apply_status,
    get_pokemon,
    remove_cards,
    remove_energy,
    require_energy_cards,
    seeded_shuffle,
    swap_active_with_bench,
)
from errors import GameRuleViolation, MalformedInputError, SelectionRequiredError
from models import (
    AttackActionData,
    CardInstance,
    CoinFlipConfiguration,
    CoinFlipContext,
    CoinFlipResult,
    CoinFlipState,
    DamageShieldEntry,
    EnergyType,
    GameState,
    PlayerActionType,
    PlayerIdentifier,
    SelectionRequiredPayload,
    SelectionRequirement,
    StatusEffect,
    TurnPhase,
)
import config
from utils.logger import setup_logger

logger = setup_logger(__name__)

T = AttackEffectType

ATTACK_BLOCKING_STATUSES = (StatusEffect.ASLEEP, StatusEffect.PARALYZED)


# ============================================================================
# 1. COST & MODIFIER HELPERS
# ============================================================================

def can_pay_energy_cost(cost: Sequence[EnergyType], attached_types: Sequence[Optional[EnergyType]],
                        cost_delta: int = 0) -> bool:
    """
    Typed costs need energy of that type; COLORLESS is paid by any energy.
    A negative cost_delta removes Colorless requirements first.
    """
    pool = list(attached_types)
    colorless = 0
    for energy_type in cost:
        if energy_type == EnergyType.COLORLESS:
            colorless += 1
            continue
        if energy_type not in pool:
            return False
        pool.remove(energy_type)
    colorless = max(0, colorless + cost_delta)
    return len(pool) >= colorless


def apply_weakness(damage: int, modifier: Optional[str]) -> int:
    text = (modifier or "").strip()
    if text.startswith('+'):
        return damage + int(text[1:])
    match = re.search(r'\d+', text)
    return damage * (int(match.group()) if match else config.WEAKNESS_MULTIPLIER)


def apply_resistance(damage: int, modifier: Optional[str]) -> int:
    match = re.search(r'\d+', modifier or "")
    return damage - (int(match.group()) if match else config.DEFAULT_RESISTANCE)


def apply_shields(game_state: GameState, owner: PlayerIdentifier, defender: CardInstance, damage: int) -> int:
    """Prevention first (all, or any hit of N or less), then flat reduction."""
    prevention = game_state.get_damage_prevention(owner, defender.instance_id)
    if prevention is not None and (prevention.amount == 'all' or damage <= prevention.amount):
        return 0
    reduction = game_state.get_damage_reduction(owner, defender.instance_id)
    if reduction is not None and reduction.amount != 'all':
        damage -= reduction.amount
    return max(0, damage)


# ============================================================================
# 2. VALIDATION
# ============================================================================

class AttackEffectValidator:
    """Checks that action data carries what each attack effect needs."""

    def validate(self, attack: Attack, data: AttackActionData) -> List[str]:
        errors: List[str] = []
        for index, effect in enumerate(attack.effects):
            for reason in self.validate_effect(effect, data):
                errors.append(f"Effect {index}: {reason}")
        return errors

    def validate_effect(self, effect, data: AttackActionData) -> List[str]:
        errors: List[str] = []
        etype = effect.effect_type

        if etype == T.ENERGY_ACCELERATION:
            if effect.target not in (TargetType.SELF, TargetType.BENCHED_YOURS):
                errors.append("ENERGY_ACCELERATION target must be SELF or BENCHED_YOURS")
            if effect.target == TargetType.BENCHED_YOURS and data.target_pokemon is None:
                errors.append("targetPokemon is required for ENERGY_ACCELERATION to a benched Pokemon")
            if effect.source in (EnergySource.HAND, EnergySource.DISCARD) and not data.selected_card_ids:
                errors.append(f"selectedCardIds is required for ENERGY_ACCELERATION from {effect.source.value}")
            elif data.selected_card_ids and len(data.selected_card_ids) > effect.count:
                errors.append(f"selectedCardIds cannot contain more than {effect.count} card(s)")

        elif etype == T.SWITCH_POKEMON:
            if data.bench_position is None:
                errors.append("benchPosition is required for SWITCH_POKEMON")

        return errors


# ============================================================================
# 3. EXECUTION
# ============================================================================

class AttackExecutor:
    """Declares, pays for and resolves attacks, including coin-flip attacks."""

    def __init__(self, resolver, rule_engine, condition_evaluator,
                 coin_resolver: CoinFlipResolver = None, parser: AttackCoinFlipParser = None,
                 validator: AttackEffectValidator = None):
        self.resolver = resolver
        self.rule_engine = rule_engine
        self.conditions = condition_evaluator
        self.coins = coin_resolver or CoinFlipResolver()
        self.parser = parser or AttackCoinFlipParser()
        self.validator = validator or AttackEffectValidator()
        self.post_handlers = {
            T.DISCARD_ENERGY: self._discard_defender_energy,
            T.STATUS_CONDITION: self._status_condition,
            T.HEAL: self._heal,
            T.PREVENT_DAMAGE: self._prevent_damage,
            T.RECOIL_DAMAGE: self._recoil_damage,
            T.ENERGY_ACCELERATION: self._energy_acceleration,
            T.SWITCH_POKEMON: self._switch_pokemon,
        }

    # ------------------------------------------------------------------
    # Declaration
    # ------------------------------------------------------------------

    def execute(self, game_state: GameState, player: PlayerIdentifier, data: AttackActionData,
                match_id: str = "", action_id: str = "") -> Tuple[GameState, Dict[str, Any]]:
        """
        Declare an attack.

        Returns:
            (new GameState, facts to record on the action: knockout, prize
            count, coin flip pending, energy paid)

        Raises:
            GameRuleViolation: attack not usable or not affordable
            MalformedInputError: action data does not fit the attack's effects
            SelectionRequiredError: discard cost needs a choice of energy
        """
        player_state = game_state.get_player_state(player)
        attacker = player_state.active_pokemon
        if attacker is None:
            raise GameRuleViolation("No active Pokemon to attack with")
        if game_state.coin_flip_state is not None:
            raise GameRuleViolation("A coin flip is already pending")

        template = self.resolver.get(attacker.card_id)
        if data.attack_index < 0 or data.attack_index >= len(template.attacks):
            raise GameRuleViolation(f"Invalid attack index {data.attack_index}")
        attack = template.attacks[data.attack_index]

        for status in ATTACK_BLOCKING_STATUSES:
            if attacker.has_status(status):
                raise GameRuleViolation(f"Cannot attack while {status.value.capitalize()}")
        if not self.rule_engine.can_attack(attacker, attack.name):
            raise GameRuleViolation(f"{template.name} cannot use {attack.name}")

        attached_types = [self.resolver.energy_type_of(e) for e in attacker.attached_energy]
        if not can_pay_energy_cost(attack.energy_cost, attached_types, self.rule_engine.attack_cost_delta(attacker)):
            raise GameRuleViolation(f"Insufficient energy to use {attack.name}")

        errors = self.validator.validate(attack, data)
        if errors:
            raise MalformedInputError(errors)

        paid = self._discard_cost(attack, attacker, data, game_state, player)
        results: Dict[str, Any] = {'attack_name': attack.name}
        if paid:
            attacker = remove_energy(attacker, paid)
            player_state = player_state.with_pokemon(attacker)
            player_state = player_state.with_discard_pile(player_state.discard_pile + tuple(paid))
            game_state = game_state.with_player_state(player, player_state)
            results['discarded_energy'] = paid

        if attacker.has_status(StatusEffect.CONFUSED):
            flip = self.coins.generate_coin_flip(match_id, game_state.turn_number, f"{action_id}-confusion", 0)
            results['confusion_flip'] = flip.result
            if flip.is_tails():
                logger.info("%s is confused and hurt itself", template.name)
                attacker = attacker.with_damage(config.CONFUSION_SELF_DAMAGE)
                game_state = game_state.with_player_state(player, player_state.with_pokemon(attacker))
                return self._finish(game_state, player, results)

        coin_config = self.parser.parse(attack.text, attack.damage)
        if coin_config is not None:
            flip_state = CoinFlipState(
                context=CoinFlipContext.ATTACK,
                configuration=coin_config,
                attack_index=data.attack_index,
                pokemon_instance_id=attacker.instance_id,
                action_id=action_id or None,
            )
            logger.debug("%s declared %s, waiting for coin flip", player.value, attack.name)
            results['coin_flip_pending'] = True
            return game_state.with_coin_flip_state(flip_state).with_phase(TurnPhase.ATTACK), results

        return self._resolve(game_state, player, attack, data, action_id, results)

    def _discard_cost(self, attack: Attack, attacker: CardInstance, data: AttackActionData,
                      game_state: GameState, player: PlayerIdentifier) -> List[str]:
        """Energy paid for SELF discard effects."""
        paid: List[str] = []
        remaining = list(attacker.attached_energy)
        selected = list(data.selected_energy_ids or [])
        for effect in attack.effects:
            if effect.effect_type != T.DISCARD_ENERGY or effect.target != TargetType.SELF:
                continue
            candidates = [e for e in remaining
                          if effect.energy_type is None or self.resolver.energy_type_of(e) == effect.energy_type]
            if effect.amount == 'all':
                chosen = candidates
            elif len(candidates) < effect.amount:
                raise GameRuleViolation(f"Not enough energy attached to discard {effect.amount} for {attack.name}")
            elif selected:
                chosen = [e for e in selected if e in candidates][:effect.amount]
                if len(chosen) != effect.amount:
                    raise GameRuleViolation(f"Must select exactly {effect.amount} attached energy card(s) to discard")
                for energy_id in chosen:
                    selected.remove(energy_id)
            elif len(candidates) == effect.amount:
                chosen = candidates
            else:
                raise SelectionRequiredError(SelectionRequiredPayload(
                    message=f"Select {effect.amount} energy card(s) to discard for {attack.name}",
                    requirement=SelectionRequirement(amount=effect.amount, energy_type=effect.energy_type,
                                                     target=attacker.instance_id),
                    available_energy=candidates,
                ))
            for energy_id in chosen:
                remaining.remove(energy_id)
            paid.extend(chosen)
        return paid

    # ------------------------------------------------------------------
    # Coin flips
    # ------------------------------------------------------------------

    def generate_coin_flip(self, game_state: GameState, player: PlayerIdentifier,
                           match_id: str = "") -> Tuple[GameState, Dict[str, Any]]:
        """
        Produce the pending flip results (first call) and record the
        submitting player's approval. The attack resolves once the flip is
        complete and both players have approved.
        """
        flip_state = game_state.coin_flip_state
        if flip_state is None:
            raise GameRuleViolation("No coin flip is pending")

        owner = game_state.current_player
        owner_state = game_state.get_player_state(owner)
        attacker = owner_state.find_pokemon_by_instance(flip_state.pokemon_instance_id) \
            if flip_state.pokemon_instance_id else owner_state.active_pokemon
        coin_count = self.coins.calculate_coin_count(flip_state.configuration, owner_state, attacker,
                                                     self.resolver.energy_type_of)

        if not self.coins.is_complete(flip_state, coin_count):
            flip_state = self.coins.flip_until_complete(flip_state, match_id, game_state.turn_number, coin_count)
        flip_state = flip_state.with_approval(player)
        results: Dict[str, Any] = {
            'coin_flip_results': [r.result for r in flip_state.results],
            'heads': flip_state.get_heads_count(),
        }

        if not flip_state.has_both_approvals():
            return game_state.with_coin_flip_state(flip_state), results

        game_state = game_state.with_coin_flip_state(None)
        declaration = self._declaring_action(game_state, owner)
        data = AttackActionData.model_validate(declaration.action_data) if declaration is not None \
            else AttackActionData(attack_index=flip_state.attack_index)
        attack = self.resolver.get(attacker.card_id).attacks[flip_state.attack_index]
        action_id = declaration.action_id if declaration is not None else (flip_state.action_id or "")
        results['attack_name'] = attack.name
        return self._resolve(game_state, owner, attack, data, action_id, results,
                             flip_state.configuration, list(flip_state.results))

    @staticmethod
    def _declaring_action(game_state: GameState, player: PlayerIdentifier):
        for action in reversed(game_state.actions_this_turn()):
            if action.player_id == player and action.action_type == PlayerActionType.ATTACK:
                return action
        return None

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _resolve(self, game_state: GameState, player: PlayerIdentifier, attack: Attack, data: AttackActionData,
                 action_id: str, results: Dict[str, Any], coin_config: Optional[CoinFlipConfiguration] = None,
                 coin_results: Sequence[CoinFlipResult] = ()) -> Tuple[GameState, Dict[str, Any]]:
        opponent = player.opponent()
        player_state = game_state.get_player_state(player)
        opponent_state = game_state.get_opponent_state(player)
        attacker = player_state.active_pokemon
        defender = opponent_state.active_pokemon
        if defender is None:
            raise GameRuleViolation("Opponent has no active Pokemon to attack")

        if coin_config is not None and not self.coins.should_attack_proceed(coin_config, coin_results):
            logger.info("%s: coin flip failed, attack does nothing", attack.name)
            results['damage'] = 0
            return self._finish(game_state, player, results)

        ctx = EffectContext(game_state, player, self.resolver, self.rule_engine, action_data=data,
                            source_instance_id=attacker.instance_id, coin_flip_results=coin_results,
                            seed_key=action_id)

        damage = self.calculate_damage(game_state, player, attack, attacker, defender, coin_config, coin_results)
        results['damage'] = damage
        defender = defender.with_damage(damage)
        pair: StatePair = (player_state, opponent_state.with_pokemon(defender))

        if coin_config is not None:
            pair = self._status_on_flip(attack, pair, ctx, coin_results)

        defender_immune = self.rule_engine.is_effect_immune(defender)
        for effect in attack.effects:
            if effect.effect_type == T.DAMAGE_MODIFIER:
                continue
            if effect.effect_type == T.DISCARD_ENERGY and effect.target == TargetType.SELF:
                continue
            if getattr(effect, 'target', None) in (TargetType.DEFENDING, TargetType.ACTIVE_OPPONENT) and defender_immune:
                logger.debug("%s is immune to the effects of attacks", defender.instance_id)
                continue
            if not self.conditions.evaluate(effect.required_conditions, game_state, player, pair[0], pair[1],
                                            coin_flip_results=coin_results, source_pokemon=ctx.source_pokemon(pair[0])):
                continue
            pair = self.post_handlers[effect.effect_type](effect, pair, ctx)

        if coin_config is not None:
            recoil = self.coins.self_damage(coin_config, coin_results)
            if recoil:
                pair = self._damage_attacker(pair, ctx, recoil)

        game_state = ctx.apply_ledgers(game_state.with_player_states(player, pair[0], pair[1]))
        logger.info("%s used %s for %d damage", player.value, attack.name, damage)
        return self._finish(game_state, player, results, opponent)

    def calculate_damage(self, game_state: GameState, player: PlayerIdentifier, attack: Attack,
                         attacker: CardInstance, defender: CardInstance,
                         coin_config: Optional[CoinFlipConfiguration] = None,
                         coin_results: Sequence[CoinFlipResult] = ()) -> int:
        damage = attack.base_damage()
        if coin_config is not None:
            damage = self.coins.calculate_damage(coin_config, list(coin_results), damage)
        if damage <= 0:
            return 0

        player_state = game_state.get_player_state(player)
        opponent_state = game_state.get_opponent_state(player)
        for effect in attack.effects:
            if effect.effect_type == T.DAMAGE_MODIFIER and self.conditions.evaluate(
                    effect.required_conditions, game_state, player, player_state, opponent_state,
                    coin_flip_results=coin_results, source_pokemon=attacker):
                damage += effect.modifier
        damage += self._passive_boost(game_state, player, attacker)

        attacker_template = self.resolver.get(attacker.card_id)
        defender_template = self.resolver.get(defender.card_id)
        attacker_type = attacker_template.pokemon_type
        if defender_template.weakness and defender_template.weakness.type == attacker_type:
            damage = apply_weakness(damage, defender_template.weakness.modifier)
        if defender_template.resistance and defender_template.resistance.type == attacker_type:
            damage = apply_resistance(damage, defender_template.resistance.modifier)

        damage = self.rule_engine.modify_incoming_damage(defender, max(0, damage))
        return apply_shields(game_state, player.opponent(), defender, damage)

    def _passive_boost(self, game_state: GameState, player: PlayerIdentifier, attacker: CardInstance) -> int:
        player_state = game_state.get_player_state(player)
        opponent_state = game_state.get_opponent_state(player)
        attacker_type = self.resolver.get(attacker.card_id).pokemon_type
        boost = 0
        for holder in player_state.all_pokemon_in_play():
            ability = self.resolver.get(holder.card_id).ability
            if ability is None or ability.activation_type != AbilityActivationType.PASSIVE:
                continue
            for effect in ability.effects:
                if not isinstance(effect, BoostAttackEffect):
                    continue
                if effect.target == TargetType.SELF and not holder.same_instance(attacker):
                    continue
                if effect.affected_types and attacker_type not in effect.affected_types:
                    continue
                if self.conditions.evaluate(effect.required_conditions, game_state, player, player_state,
                                            opponent_state, source_pokemon=holder):
                    boost += effect.modifier
        return boost

    def _finish(self, game_state: GameState, player: PlayerIdentifier, results: Dict[str, Any],
                opponent: Optional[PlayerIdentifier] = None) -> Tuple[GameState, Dict[str, Any]]:
        """Knockouts, prize bookkeeping and the next phase."""
        opponent = opponent or player.opponent()
        game_state, knockouts = resolve_knockouts(game_state, self.rule_engine)
        results['is_knocked_out'] = False
        results['prize_count'] = 0
        for record in knockouts:
            if record.owner == opponent:
                results['is_knocked_out'] = True
                results['prize_count'] += record.prize_count
                results.setdefault('knocked_out', []).append(record.card_id)
            else:
                # The attacker's own knockout pays out to the opponent at once
                game_state = game_state.with_player_state(
                    opponent, award_prizes(game_state.get_player_state(opponent), record.prize_count)
                )

        if any(needs_new_active(game_state.get_player_state(p)) for p in PlayerIdentifier):
            return game_state.with_phase(TurnPhase.SELECT_ACTIVE_POKEMON), results
        return game_state.with_phase(TurnPhase.END), results

    # ------------------------------------------------------------------
    # Post-damage handlers: (effect, (player_state, opponent_state), ctx) -> pair
    # ------------------------------------------------------------------

    def _status_on_flip(self, attack: Attack, pair: StatePair, ctx: EffectContext,
                        coin_results: Sequence[CoinFlipResult]) -> StatePair:
        parsed = self.parser.parse_status_on_flip(attack.text)
        if parsed is None:
            return pair
        side, status = parsed
        hit = any(r.result == side for r in coin_results)
        defender = pair[1].active_pokemon
        if not hit or defender is None or self.rule_engine.is_effect_immune(defender):
            return pair
        return pair[0], pair[1].with_pokemon(apply_status(defender, status, self.rule_engine, ctx.turn_number))

    def _damage_attacker(self, pair: StatePair, ctx: EffectContext, amount: int) -> StatePair:
        attacker = ctx.source_pokemon(pair[0])
        return pair[0].with_pokemon(attacker.with_damage(amount)), pair[1]

    def _discard_defender_energy(self, effect, pair, ctx):
        player_state, opponent_state = pair
        defender = opponent_state.active_pokemon
        if defender is None:
            return pair
        candidates = [e for e in defender.attached_energy
                      if effect.energy_type is None or self.resolver.energy_type_of(e) == effect.energy_type]
        if effect.amount == 'all':
            chosen = candidates
        else:
            selected = [e for e in (ctx.action_data.selected_card_ids or []) if e in candidates]
            chosen = (selected or candidates)[:effect.amount]
        opponent_state = opponent_state.with_pokemon(remove_energy(defender, chosen))
        return player_state, opponent_state.with_discard_pile(opponent_state.discard_pile + tuple(chosen))

    def _status_condition(self, effect, pair, ctx):
        if effect.target == TargetType.SELF:
            attacker = ctx.source_pokemon(pair[0])
            updated = apply_status(attacker, effect.status_condition, self.rule_engine, ctx.turn_number,
                                   effect.poison_damage)
            return pair[0].with_pokemon(updated), pair[1]
        defender = pair[1].active_pokemon
        if defender is None:
            return pair
        updated = apply_status(defender, effect.status_condition, self.rule_engine, ctx.turn_number,
                               effect.poison_damage)
        return pair[0], pair[1].with_pokemon(updated)

    def _heal(self, effect, pair, ctx):
        attacker = ctx.source_pokemon(pair[0])
        return pair[0].with_pokemon(attacker.with_healing(effect.amount)), pair[1]

    def _prevent_damage(self, effect, pair, ctx):
        attacker = ctx.source_pokemon(pair[0])
        ctx.pending_prevention.append((ctx.player, attacker.instance_id, DamageShieldEntry(
            amount=effect.amount, duration=effect.duration, turn_applied=ctx.turn_number,
            source=attacker.card_id)))
        return pair

    def _recoil_damage(self, effect, pair, ctx):
        return self._damage_attacker(pair, ctx, effect.amount)

    def _energy_acceleration(self, effect, pair, ctx):
        player_state, opponent_state = pair
        selected = list(ctx.action_data.selected_card_ids or [])

        if effect.source == EnergySource.DECK:
            if not selected:
                selected = [c for c in player_state.deck
                            if self.resolver.get(c).is_energy()
                            and (effect.energy_type is None or self.resolver.energy_type_of(c) == effect.energy_type)
                            ][:effect.count]
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
            raise GameRuleViolation("Attacks cannot move energy from the attacking Pokemon to itself")

        if effect.target == TargetType.BENCHED_YOURS:
            target = get_pokemon(player_state, ctx.action_data.target_pokemon, "benched Pokemon")
        else:
            target = ctx.source_pokemon(player_state)
        target = target.with_attached_energy(target.attached_energy + tuple(selected))
        return player_state.with_pokemon(target), opponent_state

    def _switch_pokemon(self, effect, pair, ctx):
        player_state, opponent_state = pair
        outgoing = player_state.active_pokemon
        if outgoing is None or outgoing.is_knocked_out:
            return pair
        return swap_active_with_bench(player_state, ctx.action_data.bench_position, outgoing), opponent_state
