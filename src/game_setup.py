"""
Pokémon TCG Match Engine - Game Setup

Pre-game steps between match approval and turn 1, as pure functions over
PlayerGameState. The engine drives them one player action at a time:

1. Both players approve; each deck is shuffled
2. Draw 7 cards (redraw while the hand has no Basic Pokémon)
3. Set aside 6 prize cards
4. Choose an active Pokémon, then bench Basics
5. Flip a coin for the first player; both players confirm

Usage:
    from game_setup import build_player_state, draw_opening_hand

    player_state = build_player_state(deck_card_ids)
    player_state, is_valid = draw_opening_hand(player_state, "match-1-PLAYER1-opening-0", resolver)
"""

from typing import Sequence, Tuple

from effects.common import create_card_instance, draw_cards, remove_card, seeded_shuffle
from errors import GameRuleViolation
from models import CardInstance, CoinFlipResult, PlayerGameState, PlayerIdentifier, PokemonPosition
import config
from utils.logger import setup_logger

logger = setup_logger(__name__)


def build_player_state(deck_card_ids: Sequence[str]) -> PlayerGameState:
    """Empty board around an unshuffled deck."""
    if not deck_card_ids:
        raise GameRuleViolation("Deck must contain at least one card")
    return PlayerGameState(deck=tuple(deck_card_ids))


def shuffle_deck(player_state: PlayerGameState, seed_key: str) -> PlayerGameState:
    return player_state.with_deck(seeded_shuffle(player_state.deck, seed_key))


def has_basic_pokemon(hand: Sequence[str], resolver) -> bool:
    return any(resolver.get(card_id).is_basic_pokemon() for card_id in hand)


def draw_opening_hand(player_state: PlayerGameState, seed_key: str, resolver) -> Tuple[PlayerGameState, bool]:
    """
    Draw a fresh opening hand.

    Any previous hand goes back into the deck, which is reshuffled with
    `seed_key` before the top 7 are drawn. A hand without a Basic Pokémon is
    a mulligan: the player draws again with a new seed.

    Returns:
        (new player state, True if the hand holds a Basic Pokémon)
    """
    deck = seeded_shuffle(player_state.deck + player_state.hand, seed_key)
    player_state = draw_cards(player_state._replace(deck=deck, hand=()), config.INITIAL_HAND_SIZE)
    return player_state, has_basic_pokemon(player_state.hand, resolver)


def set_prize_cards(player_state: PlayerGameState) -> PlayerGameState:
    """Move the top 6 cards of the deck into the prize zone."""
    needed = config.MAX_PRIZE_CARDS
    if player_state.get_deck_count() < needed:
        raise GameRuleViolation(
            f"Not enough cards in deck. Need {needed} prize cards, "
            f"but only {player_state.get_deck_count()} cards remaining."
        )
    return player_state._replace(deck=player_state.deck[needed:], prize_cards=player_state.deck[:needed])


def place_active_pokemon(player_state: PlayerGameState, card_id: str, resolver) -> Tuple[PlayerGameState, CardInstance]:
    """Put a Basic Pokémon from the hand into the empty active slot."""
    if player_state.active_pokemon is not None:
        raise GameRuleViolation("Cannot set active Pokemon when one already exists")
    if card_id not in player_state.hand:
        raise GameRuleViolation("Card must be in hand")
    template = resolver.get(card_id)
    if not template.is_pokemon():
        raise GameRuleViolation("Only Pokemon cards can be played as the active Pokemon")
    if not template.is_basic_pokemon():
        raise GameRuleViolation(f"Cannot play {template.stage.value} Pokemon directly. Only Basic Pokemon can be placed.")

    active = create_card_instance(template, PokemonPosition.ACTIVE)
    hand = remove_card(player_state.hand, card_id, "hand")
    return player_state.with_hand(hand).with_active_pokemon(active), active


def flip_for_first_player(coin_resolver, match_id: str) -> Tuple[PlayerIdentifier, CoinFlipResult]:
    """Heads: PLAYER1 goes first. Same match id, same result."""
    result = coin_resolver.generate_coin_flip(match_id, config.MIN_TURN_NUMBER, config.FIRST_PLAYER_FLIP_ID, 0)
    first = PlayerIdentifier.PLAYER1 if result.is_heads() else PlayerIdentifier.PLAYER2
    logger.info("Match %s: coin toss %s, %s goes first", match_id, result.result, first.value)
    return first, result
