"""
Pokémon TCG Match Engine - Shared Effect Helpers (effects/common.py)

Zone and board operations used by every execution pipeline. All helpers take
PlayerGameState values and return new ones; rule violations raise
GameRuleViolation before anything is returned.
"""

import random
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from cards.base import CardTemplate
from cards.effects import OPPONENT_TARGETS, TargetType
from errors import GameRuleViolation
from models import (
    CardInstance,
    CardType,
    DamageShieldEntry,
    EnergyType,
    GameState,
    PlayerGameState,
    PlayerIdentifier,
    PokemonPosition,
    renumber_bench,
)
import config

StatePair = Tuple[PlayerGameState, PlayerGameState]


# ============================================================================
# 1. EXECUTION CONTEXT
# ============================================================================

class EffectContext:
    """
    Per-action data handed to every effect handler.

    Handlers thread (player_state, opponent_state); ledger changes they
    produce are queued here and applied to the GameState once all effects
    have run. Facts worth recording on the action (an evolved
    instance, a knockout) go into `results`.
    """

    def __init__(self, game_state: GameState, player: PlayerIdentifier, resolver, rule_engine,
                 action_data=None, source_instance_id: Optional[str] = None,
                 coin_flip_results=None, seed_key: str = ""):
        self.game_state = game_state
        self.player = player
        self.resolver = resolver
        self.rule_engine = rule_engine
        self.action_data = action_data
        self.source_instance_id = source_instance_id
        self.coin_flip_results = list(coin_flip_results or [])
        self.seed_key = seed_key
        self.pending_prevention: List[Tuple[PlayerIdentifier, str, DamageShieldEntry]] = []
        self.pending_reduction: List[Tuple[PlayerIdentifier, str, DamageShieldEntry]] = []
        self.results: Dict[str, Any] = {}

    @property
    def opponent(self) -> PlayerIdentifier:
        return self.player.opponent()

    @property
    def turn_number(self) -> int:
        return self.game_state.turn_number

    def source_pokemon(self, player_state: PlayerGameState) -> Optional[CardInstance]:
        if self.source_instance_id is None:
            return player_state.active_pokemon
        return player_state.find_pokemon_by_instance(self.source_instance_id)

    def apply_ledgers(self, game_state: GameState) -> GameState:
        for owner, instance_id, entry in self.pending_prevention:
            game_state = game_state.with_damage_prevention(owner, instance_id, entry)
        for owner, instance_id, entry in self.pending_reduction:
            game_state = game_state.with_damage_reduction(owner, instance_id, entry)
        return game_state


# ============================================================================
# 2. ZONE OPERATIONS
# ============================================================================

def remove_card(zone: Sequence[str], card_id: str, zone_name: str) -> Tuple[str, ...]:
    """Remove one copy of card_id from a zone."""
    cards = list(zone)
    if card_id not in cards:
        raise GameRuleViolation(f"Card {card_id} not found in {zone_name}")
    cards.remove(card_id)
    return tuple(cards)


def remove_cards(zone: Sequence[str], card_ids: Iterable[str], zone_name: str) -> Tuple[str, ...]:
    cards = tuple(zone)
    for card_id in card_ids:
        cards = remove_card(cards, card_id, zone_name)
    return cards


def draw_cards(player_state: PlayerGameState, count: int) -> PlayerGameState:
    """Draw up to `count` cards from the top of the deck."""
    count = max(0, min(count, len(player_state.deck)))
    return player_state._replace(
        deck=player_state.deck[count:],
        hand=player_state.hand + player_state.deck[:count],
    )


def seeded_shuffle(cards: Sequence[str], seed_key: str) -> Tuple[str, ...]:
    shuffled = list(cards)
    random.Random(seed_key).shuffle(shuffled)
    return tuple(shuffled)


def new_instance_id() -> str:
    return str(uuid.uuid4())


def create_card_instance(template: CardTemplate, position: PokemonPosition) -> CardInstance:
    return CardInstance(
        instance_id=new_instance_id(),
        card_id=template.card_id,
        position=position,
        current_hp=template.hp,
        max_hp=template.hp,
    )


def add_to_bench(player_state: PlayerGameState, template: CardTemplate) -> PlayerGameState:
    if len(player_state.bench) >= config.MAX_BENCH_SIZE:
        raise GameRuleViolation(f"Bench is full (maximum {config.MAX_BENCH_SIZE} Pokemon)")
    if not template.is_basic_pokemon():
        raise GameRuleViolation(f"{template.name} is not a Basic Pokemon")
    instance = create_card_instance(template, PokemonPosition.bench(len(player_state.bench)))
    return player_state.with_bench(player_state.bench + (instance,))


def matches_filter(template: CardTemplate, card_type: Optional[CardType] = None,
                   pokemon_type: Optional[EnergyType] = None, energy_type: Optional[EnergyType] = None) -> bool:
    if card_type is not None and template.card_type != card_type:
        return False
    if pokemon_type is not None and template.pokemon_type != pokemon_type:
        return False
    if energy_type is not None and (not template.is_energy() or template.energy_type != energy_type):
        return False
    return True


def require_energy_cards(resolver, card_ids: Iterable[str], energy_type: Optional[EnergyType] = None) -> None:
    for card_id in card_ids:
        template = resolver.get(card_id)
        if not template.is_energy():
            raise GameRuleViolation(f"Card {card_id} is not an Energy card")
        if energy_type is not None and template.energy_type != energy_type:
            raise GameRuleViolation(f"Card {card_id} is not {energy_type.value} Energy")


# ============================================================================
# 3. BOARD OPERATIONS
# ============================================================================

def get_pokemon(player_state: PlayerGameState, position: Optional[PokemonPosition], label: str = "Pokemon") -> CardInstance:
    pokemon = player_state.find_pokemon(position)
    if pokemon is None:
        where = position.value if position is not None else "unspecified position"
        raise GameRuleViolation(f"No {label} at {where}")
    return pokemon


def remove_energy(pokemon: CardInstance, energy_ids: Iterable[str]) -> CardInstance:
    attached = list(pokemon.attached_energy)
    for energy_id in energy_ids:
        if energy_id not in attached:
            raise GameRuleViolation(f"Energy {energy_id} is not attached to {pokemon.instance_id}")
        attached.remove(energy_id)
    return pokemon.with_attached_energy(attached)


def swap_active_with_bench(player_state: PlayerGameState, bench_position: PokemonPosition,
                           outgoing: Optional[CardInstance] = None) -> PlayerGameState:
    """
    Promote the Pokémon at `bench_position` to active.

    The outgoing active (or `outgoing`, when the caller already modified it)
    goes to the end of the bench; the remaining bench is renumbered.
    """
    index = bench_position.bench_index if bench_position is not None else None
    if index is None or index >= len(player_state.bench):
        raise GameRuleViolation(f"No benched Pokemon at {bench_position.value if bench_position else None}")
    incoming = player_state.bench[index]
    outgoing = outgoing if outgoing is not None else player_state.active_pokemon

    bench = [p for i, p in enumerate(player_state.bench) if i != index]
    if outgoing is not None:
        bench.append(outgoing)
    return player_state._replace(
        active_pokemon=incoming.with_position(PokemonPosition.ACTIVE),
        bench=renumber_bench(bench),
    )


def promote_to_active(player_state: PlayerGameState, bench_position: PokemonPosition) -> PlayerGameState:
    if player_state.active_pokemon is not None:
        raise GameRuleViolation("Active Pokemon is already set")
    return swap_active_with_bench(player_state, bench_position)


def remove_from_play(player_state: PlayerGameState, pokemon: CardInstance) -> PlayerGameState:
    """Take a Pokémon off the board (no zone bookkeeping)."""
    if pokemon.same_instance(player_state.active_pokemon):
        return player_state.with_active_pokemon(None)
    bench = [p for p in player_state.bench if p.instance_id != pokemon.instance_id]
    if len(bench) == len(player_state.bench):
        raise GameRuleViolation(f"Pokemon {pokemon.instance_id} is not in play")
    return player_state.with_bench(renumber_bench(bench))


def apply_status(pokemon: CardInstance, status, rule_engine, turn_number: int,
                 poison_damage: Optional[int] = None) -> CardInstance:
    """Add a status unless a card rule makes the Pokémon immune to it."""
    if rule_engine is not None and rule_engine.is_status_immune(pokemon, status):
        return pokemon
    return pokemon.with_status_effect(status, poison_damage=poison_damage, turn_number=turn_number)


def cards_of(pokemon: CardInstance) -> Tuple[str, ...]:
    """Every physical card making up an in-play Pokémon."""
    return (pokemon.card_id,) + pokemon.evolution_chain + pokemon.attached_energy


def knock_out(player_state: PlayerGameState, pokemon: CardInstance) -> PlayerGameState:
    """Move a knocked-out Pokémon and everything attached to the discard pile."""
    player_state = remove_from_play(player_state, pokemon)
    return player_state.with_discard_pile(player_state.discard_pile + cards_of(pokemon))


# ============================================================================
# 4. TARGETING
# ============================================================================

def resolve_targets(
    target: TargetType,
    player_state: PlayerGameState,
    opponent_state: PlayerGameState,
    source: Optional[CardInstance],
    position: Optional[PokemonPosition] = None,
) -> List[Tuple[bool, CardInstance]]:
    """
    Pokémon an effect applies to, as (belongs_to_opponent, pokemon) pairs.
    Single-target bench effects use `position`.
    """
    if target == TargetType.SELF:
        return [(False, source)] if source is not None else []
    if target == TargetType.ACTIVE_YOURS:
        return [(False, player_state.active_pokemon)] if player_state.active_pokemon else []
    if target == TargetType.BENCHED_YOURS:
        return [(False, get_pokemon(player_state, position, "benched Pokemon"))]
    if target == TargetType.ALL_YOURS:
        return [(False, p) for p in player_state.all_pokemon_in_play()]
    if target in (TargetType.DEFENDING, TargetType.ACTIVE_OPPONENT):
        return [(True, opponent_state.active_pokemon)] if opponent_state.active_pokemon else []
    if target == TargetType.BENCHED_OPPONENT:
        return [(True, get_pokemon(opponent_state, position, "opponent's benched Pokemon"))]
    if target == TargetType.ALL_OPPONENT:
        return [(True, p) for p in opponent_state.all_pokemon_in_play()]
    return []


def needs_target_position(target: TargetType) -> bool:
    return target in (TargetType.BENCHED_YOURS, TargetType.BENCHED_OPPONENT)


def targets_opponent(target: TargetType) -> bool:
    return target in OPPONENT_TARGETS


def put_pokemon(pair: StatePair, belongs_to_opponent: bool, pokemon: CardInstance) -> StatePair:
    player_state, opponent_state = pair
    if belongs_to_opponent:
        return player_state, opponent_state.with_pokemon(pokemon)
    return player_state.with_pokemon(pokemon), opponent_state


def refresh(pair: StatePair, belongs_to_opponent: bool, pokemon: CardInstance) -> CardInstance:
    """Latest version of `pokemon` after earlier handlers ran."""
    side = pair[1] if belongs_to_opponent else pair[0]
    latest = side.find_pokemon_by_instance(pokemon.instance_id)
    return latest if latest is not None else pokemon
