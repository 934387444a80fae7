"""
Pokémon TCG Match Engine - Action Primitives (actions.py)
Atomic state-modification functions called by engine.py.

These are the "vocabulary" of a turn: drawing, benching, attaching energy,
retreating, evolving, taking prizes and the between-turns checkup. Every
function takes snapshots and returns new ones; rule violations raise
GameRuleViolation (a ValueError) before anything is built.
"""

from typing import List, Tuple

from pydantic import BaseModel

from effects.common import (
    add_to_bench,
    draw_cards,
    get_pokemon,
    knock_out,
    promote_to_active,
    remove_card,
    swap_active_with_bench,
)
from errors import GameRuleViolation, SelectionRequiredError
from models import (
    CardInstance,
    GameState,
    PlayerActionType,
    PlayerGameState,
    PlayerIdentifier,
    PokemonPosition,
    RetreatActionData,
    SelectionRequiredPayload,
    SelectionRequirement,
    StatusEffect,
    TurnPhase,
)
import config
from utils.logger import setup_logger

logger = setup_logger(__name__)

RETREAT_BLOCKING_STATUSES = (StatusEffect.ASLEEP, StatusEffect.CONFUSED, StatusEffect.PARALYZED)


# ============================================================================
# 1. DECK & HAND
# ============================================================================

class DeckOutError(GameRuleViolation):
    """
    Raised when attempting to draw from an empty deck.
    Engine catches this and awards the game to the opponent.
    """
    pass


def draw_card(player_state: PlayerGameState) -> PlayerGameState:
    """
    Draw the top card of the deck into the hand.

    Raises:
        DeckOutError: If the deck is empty
    """
    if not player_state.deck:
        raise DeckOutError("Cannot draw from an empty deck")
    return draw_cards(player_state, 1)


def take_prize(player_state: PlayerGameState, prize_index: int = 0) -> PlayerGameState:
    """Move one prize card into the hand."""
    if not player_state.prize_cards:
        raise GameRuleViolation("No prize cards remaining")
    if prize_index < 0 or prize_index >= len(player_state.prize_cards):
        raise GameRuleViolation(f"Invalid prize index {prize_index}")
    prize = player_state.prize_cards[prize_index]
    prizes = player_state.prize_cards[:prize_index] + player_state.prize_cards[prize_index + 1:]
    return player_state._replace(prize_cards=prizes, hand=player_state.hand + (prize,))


def award_prizes(player_state: PlayerGameState, count: int) -> PlayerGameState:
    """Take `count` prizes from the top of the prize pile (no player choice)."""
    for _ in range(min(count, len(player_state.prize_cards))):
        player_state = take_prize(player_state, 0)
    return player_state


# ============================================================================
# 2. BOARD
# ============================================================================

def play_basic_pokemon(player_state: PlayerGameState, card_id: str, resolver) -> Tuple[PlayerGameState, CardInstance]:
    """
    Put a Basic Pokémon from the hand onto the bench.

    Returns:
        (new player state, the new in-play instance)
    """
    template = resolver.get(card_id)
    if not template.is_pokemon():
        raise GameRuleViolation(f"Card {card_id} is not a Pokemon card")
    hand = remove_card(player_state.hand, card_id, "hand")
    player_state = add_to_bench(player_state.with_hand(hand), template)
    return player_state, player_state.bench[-1]


def set_active_pokemon(player_state: PlayerGameState, target: PokemonPosition) -> PlayerGameState:
    """Promote a benched Pokémon into an empty active slot."""
    if target == PokemonPosition.ACTIVE:
        raise GameRuleViolation("Target must be a benched Pokemon")
    return promote_to_active(player_state, target)


def attachments_allowed(player_state: PlayerGameState, rule_engine) -> int:
    extra = sum(rule_engine.extra_energy_attachments(p) for p in player_state.all_pokemon_in_play())
    return 1 + extra


def attach_energy(
    game_state: GameState,
    player: PlayerIdentifier,
    energy_card_id: str,
    target: PokemonPosition,
    resolver,
    rule_engine,
) -> Tuple[PlayerGameState, int]:
    """
    Attach an energy card from the hand to one of the player's Pokémon.

    One attachment per turn, plus one per EXTRA_ENERGY_ATTACHMENT rule in play.

    Returns:
        (new player state, attachments remaining this turn)
    """
    player_state = game_state.get_player_state(player)
    template = resolver.get(energy_card_id)
    if not template.is_energy():
        raise GameRuleViolation(f"Card {energy_card_id} is not an Energy card")

    allowed = attachments_allowed(player_state, rule_engine)
    used = sum(
        1 for a in game_state.actions_this_turn()
        if a.player_id == player and a.action_type == PlayerActionType.ATTACH_ENERGY
    )
    if used >= allowed:
        raise GameRuleViolation("Energy has already been attached this turn")

    pokemon = get_pokemon(player_state, target)
    hand = remove_card(player_state.hand, energy_card_id, "hand")
    pokemon = pokemon.with_attached_energy(pokemon.attached_energy + (energy_card_id,))
    player_state = player_state.with_hand(hand).with_pokemon(pokemon)
    return player_state, allowed - used - 1


# ============================================================================
# 3. RETREAT
# ============================================================================

def has_retreated_this_turn(game_state: GameState, player: PlayerIdentifier) -> bool:
    return any(
        a.player_id == player and a.action_type == PlayerActionType.RETREAT
        for a in game_state.actions_this_turn()
    )


def retreat(
    game_state: GameState,
    player: PlayerIdentifier,
    data: RetreatActionData,
    resolver,
    rule_engine,
) -> Tuple[PlayerGameState, List[str]]:
    """
    Swap the active Pokémon with a benched one, paying the retreat cost.

    Rules are checked in order: blocking status, CANNOT_RETREAT, one retreat
    per turn, FREE_RETREAT, available energy, energy selection.

    Args:
        game_state: Current snapshot
        player: Retreating player
        data: Bench slot to promote and the energy paid
        resolver: CardResolver for the active's template
        rule_engine: CardRuleEngine

    Returns:
        (new player state, energy card ids discarded)

    Raises:
        GameRuleViolation: A retreat rule is broken
        SelectionRequiredError: Cost > 0 and no energy was selected
    """
    player_state = game_state.get_player_state(player)
    active = player_state.active_pokemon
    if active is None:
        raise GameRuleViolation("No active Pokemon to retreat")
    if data.target == PokemonPosition.ACTIVE:
        raise GameRuleViolation("Retreat target must be a benched Pokemon")
    get_pokemon(player_state, data.target, "benched Pokemon")

    for status in RETREAT_BLOCKING_STATUSES:
        if active.has_status(status):
            raise GameRuleViolation(f"Cannot retreat while {status.value.capitalize()}")
    if not rule_engine.can_retreat(active):
        raise GameRuleViolation("This Pokemon cannot retreat")
    if has_retreated_this_turn(game_state, player):
        raise GameRuleViolation("Already retreated this turn")

    selected = list(data.selected_energy_ids or [])
    if rule_engine.has_free_retreat(active):
        if selected:
            raise GameRuleViolation("No energy selection needed for free retreat")
        cost = 0
    else:
        cost = resolver.get(active.card_id).retreat_cost

    attached = list(active.attached_energy)
    if len(attached) < cost:
        raise GameRuleViolation(f"Insufficient energy to retreat (cost {cost}, attached {len(attached)})")

    if cost > 0 and not selected:
        raise SelectionRequiredError(SelectionRequiredPayload(
            message=f"Select {cost} energy card(s) to discard for the retreat cost",
            requirement=SelectionRequirement(amount=cost, target=active.instance_id),
            available_energy=attached,
        ))
    if len(selected) != cost:
        raise GameRuleViolation(f"Must select exactly {cost} energy card(s) to retreat")
    for energy_id in selected:
        if energy_id not in attached:
            raise GameRuleViolation(f"Energy {energy_id} is not attached to the active Pokemon")
        attached.remove(energy_id)

    outgoing = active.with_attached_energy(attached).with_cleared_status()
    player_state = swap_active_with_bench(player_state, data.target, outgoing)
    player_state = player_state.with_discard_pile(player_state.discard_pile + tuple(selected))
    logger.debug("%s retreated %s paying %d energy", player.value, active.card_id, len(selected))
    return player_state, selected


# ============================================================================
# 4. EVOLUTION
# ============================================================================

def has_evolved_this_turn(game_state: GameState, player: PlayerIdentifier, pokemon: CardInstance) -> bool:
    """
    True if this Pokémon already evolved this turn, through EVOLVE_POKEMON
    or an evolving trainer card.
    """
    if pokemon.evolved_at == game_state.turn_number:
        return True
    for action in reversed(game_state.action_history):
        if action.action_type == PlayerActionType.END_TURN:
            break
        if action.player_id != player:
            continue
        if action.action_type not in (PlayerActionType.EVOLVE_POKEMON, PlayerActionType.PLAY_TRAINER):
            continue
        if action.action_data.get('evolution_card_id') and \
                action.action_data.get('evolved_instance_id') == pokemon.instance_id:
            return True
    return False


def was_played_this_turn(game_state: GameState, player: PlayerIdentifier, pokemon: CardInstance) -> bool:
    return any(
        a.player_id == player and a.action_type == PlayerActionType.PLAY_POKEMON
        and a.action_data.get('instance_id') == pokemon.instance_id
        for a in game_state.actions_this_turn()
    )


def evolve_pokemon(
    game_state: GameState,
    player: PlayerIdentifier,
    target: PokemonPosition,
    evolution_card_id: str,
    resolver,
    rule_engine,
) -> Tuple[PlayerGameState, CardInstance]:
    """
    Place an evolution card from the hand on top of an in-play Pokémon.

    The in-play identity, position and energy carry over. Damage taken is
    preserved against the new max HP (floored at 0); special conditions are
    cleared.

    Returns:
        (new player state, the evolved instance)

    Raises:
        GameRuleViolation: If the evolution is not allowed
    """
    player_state = game_state.get_player_state(player)
    if evolution_card_id not in player_state.hand:
        raise GameRuleViolation(f"Card {evolution_card_id} not found in hand")
    pokemon = get_pokemon(player_state, target)

    if has_evolved_this_turn(game_state, player, pokemon):
        raise GameRuleViolation(
            "Cannot evolve this Pokemon again this turn. Each Pokemon can only be evolved once per turn."
        )
    if was_played_this_turn(game_state, player, pokemon) and not rule_engine.can_evolve_turn_one(pokemon):
        raise GameRuleViolation("Cannot evolve a Pokemon that was played this turn")
    if not rule_engine.can_evolve(pokemon):
        raise GameRuleViolation("This Pokemon cannot evolve")

    evolution = resolver.get(evolution_card_id)
    current = resolver.get(pokemon.card_id)
    if not evolution.is_pokemon() or evolution.is_basic_pokemon():
        raise GameRuleViolation(f"{evolution.name} is not an evolution card")
    if evolution.evolves_from != current.name:
        raise GameRuleViolation(
            f"{evolution.name} cannot evolve from {current.name} (requires {evolution.evolves_from})"
        )

    evolved = pokemon.with_evolution(evolution.card_id, evolution.hp, game_state.turn_number)
    hand = remove_card(player_state.hand, evolution_card_id, "hand")
    player_state = player_state.with_hand(hand).with_pokemon(evolved)
    logger.debug("%s evolved %s into %s", player.value, current.name, evolution.name)
    return player_state, evolved


# ============================================================================
# 5. KNOCKOUTS & BETWEEN TURNS
# ============================================================================

class KnockoutRecord(BaseModel):
    model_config = {"frozen": True}

    owner: PlayerIdentifier
    instance_id: str
    card_id: str
    prize_count: int


def resolve_knockouts(game_state: GameState, rule_engine) -> Tuple[GameState, List[KnockoutRecord]]:
    """Move every Pokémon at 0 HP (both players) to its owner's discard pile."""
    records: List[KnockoutRecord] = []
    for owner in (PlayerIdentifier.PLAYER1, PlayerIdentifier.PLAYER2):
        player_state = game_state.get_player_state(owner)
        for pokemon in player_state.all_pokemon_in_play():
            if not pokemon.is_knocked_out:
                continue
            records.append(KnockoutRecord(
                owner=owner,
                instance_id=pokemon.instance_id,
                card_id=pokemon.card_id,
                prize_count=rule_engine.prize_count_for_knockout(pokemon),
            ))
            player_state = knock_out(player_state, pokemon)
            logger.info("%s's %s was knocked out", owner.value, pokemon.card_id)
        game_state = game_state.with_player_state(owner, player_state)
    return game_state, records


def needs_new_active(player_state: PlayerGameState) -> bool:
    return player_state.active_pokemon is None and len(player_state.bench) > 0


def _checkup_flip(coin_resolver, match_id: str, game_state: GameState, owner: PlayerIdentifier,
                  status: StatusEffect) -> bool:
    flip = coin_resolver.generate_coin_flip(
        match_id, game_state.turn_number, f"checkup-{owner.value}-{status.value}", 0
    )
    return flip.is_heads()


def status_checkup(game_state: GameState, match_id: str, coin_resolver) -> GameState:
    """
    Between-turns damage and recovery for both active Pokémon.

    Poison deals its stored amount, burn deals 20 then flips to recover,
    sleep flips to wake up, and paralysis lifts for the player whose turn
    just ended.
    """
    ending = game_state.current_player
    for owner in (ending, ending.opponent()):
        player_state = game_state.get_player_state(owner)
        active = player_state.active_pokemon
        if active is None or not active.status_effects:
            continue

        if active.has_status(StatusEffect.POISONED):
            active = active.with_damage(active.poison_damage_amount or config.DEFAULT_POISON_DAMAGE)
        if active.has_status(StatusEffect.BURNED):
            active = active.with_damage(config.BURN_DAMAGE)
            if _checkup_flip(coin_resolver, match_id, game_state, owner, StatusEffect.BURNED):
                active = active.without_status_effect(StatusEffect.BURNED)
        if active.has_status(StatusEffect.ASLEEP):
            if _checkup_flip(coin_resolver, match_id, game_state, owner, StatusEffect.ASLEEP):
                active = active.without_status_effect(StatusEffect.ASLEEP)
        if active.has_status(StatusEffect.PARALYZED) and owner == ending:
            clears_at = active.paralysis_clears_at_turn
            if clears_at is None or game_state.turn_number >= clears_at:
                active = active.without_status_effect(StatusEffect.PARALYZED)

        game_state = game_state.with_player_state(owner, player_state.with_pokemon(active))
    return game_state


def end_turn(game_state: GameState, match_id: str, coin_resolver, rule_engine) -> Tuple[GameState, List[KnockoutRecord]]:
    """
    Between-turns processing.

    Status checkup, knockouts from status damage (prizes awarded to the
    opponent automatically), shield expiry, ability-usage reset, then the
    next player's turn begins.

    Returns:
        (GameState of the next turn, knockouts from status damage)
    """
    game_state = status_checkup(game_state, match_id, coin_resolver)
    game_state, knockouts = resolve_knockouts(game_state, rule_engine)
    for record in knockouts:
        taker = record.owner.opponent()
        game_state = game_state.with_player_state(
            taker, award_prizes(game_state.get_player_state(taker), record.prize_count)
        )

    next_turn = game_state.turn_number + 1
    game_state = (game_state
                  .with_expired_shields(next_turn)
                  .with_ability_usage_reset()
                  .with_coin_flip_state(None)
                  .with_turn_number(next_turn)
                  .with_current_player(game_state.current_player.opponent()))

    if any(needs_new_active(game_state.get_player_state(p)) for p in PlayerIdentifier):
        return game_state.with_phase(TurnPhase.SELECT_ACTIVE_POKEMON), knockouts
    return game_state.with_phase(TurnPhase.DRAW), knockouts
