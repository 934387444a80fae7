"""
Test Suite: Trainer Cards
Playing trainer cards from the hand: validation, effect ordering and the
individual effect handlers.
"""

import pytest
import sys
sys.path.insert(0, 'src')

from cards.effects import TrainerEffect, TrainerEffectType
from effects.trainer import TrainerExecutor, order_trainer_effects
from errors import GameRuleViolation, MalformedInputError
from models import (
    PlayerIdentifier,
    PokemonPosition,
    StatusEffect,
    TrainerActionData,
)

P1 = PlayerIdentifier.PLAYER1
T = TrainerEffectType


@pytest.fixture
def executor(resolver, rules, conditions):
    return TrainerExecutor(resolver, rules, conditions)


def with_hand(state, *cards, discard=None):
    p1 = state.player1_state.with_hand(tuple(cards))
    if discard is not None:
        p1 = p1.with_discard_pile(tuple(discard))
    return state.with_player1_state(p1)


def play(executor, state, card_id, **fields):
    return executor.execute(state, P1, TrainerActionData(card_id=card_id, **fields), "action-1")


class TestPlayingCards:
    """Hand checks and the trainer's own movement."""

    def test_card_moves_to_discard(self, executor, battle_state, make_pokemon):
        damaged = make_pokemon("charmander", damage=40)
        state = battle_state.with_player1_state(battle_state.player1_state.with_active_pokemon(damaged))
        new_state, results = play(executor, state, "potion")
        p1 = new_state.player1_state
        assert p1.active_pokemon.current_hp == 40
        assert "potion" not in p1.hand
        assert p1.discard_pile == ("potion",)
        assert results['trainer_type'] == "ITEM"

    def test_card_must_be_in_hand(self, executor, battle_state):
        with pytest.raises(GameRuleViolation, match="not found in hand"):
            play(executor, battle_state, "switch", bench_position=PokemonPosition.BENCH_0)

    def test_card_must_be_a_trainer(self, executor, battle_state):
        with pytest.raises(GameRuleViolation, match="is not a Trainer card"):
            play(executor, battle_state, "charmeleon")

    def test_card_without_effects(self, executor, battle_state):
        state = with_hand(battle_state, "broken-card")
        with pytest.raises(MalformedInputError) as exc:
            play(executor, state, "broken-card")
        assert exc.value.reasons == ["Trainer card must have trainerEffects"]

    def test_missing_bench_position(self, executor, battle_state):
        state = with_hand(battle_state, "switch")
        with pytest.raises(MalformedInputError) as exc:
            play(executor, state, "switch")
        assert exc.value.reasons == ["Effect 0: benchPosition is required for SWITCH_ACTIVE effect"]

    def test_failed_play_leaves_state_alone(self, executor, battle_state):
        state = with_hand(battle_state, "switch")
        with pytest.raises(MalformedInputError):
            play(executor, state, "switch")
        assert state.player1_state.hand == ("switch",)

    def test_heal_never_exceeds_max(self, executor, battle_state):
        new_state, _ = play(executor, battle_state, "potion")
        assert new_state.player1_state.active_pokemon.current_hp == 50


class TestEffectOrder:
    """Discards resolve before draws regardless of printed order."""

    def test_priority_tiers(self):
        effects = [
            TrainerEffect(effect_type=T.DRAW_CARDS, value=3),
            TrainerEffect(effect_type=T.SWITCH_ACTIVE),
            TrainerEffect(effect_type=T.DISCARD_HAND),
            TrainerEffect(effect_type=T.SEARCH_DECK, value=1),
        ]
        assert [e.effect_type for e in order_trainer_effects(effects)] == [
            T.DISCARD_HAND, T.SEARCH_DECK, T.SWITCH_ACTIVE, T.DRAW_CARDS,
        ]

    def test_discard_cannot_take_drawn_cards(self, executor, battle_state):
        state = with_hand(battle_state, "research", "fire-energy")
        # grass-energy only exists in the deck until the draw runs
        with pytest.raises(GameRuleViolation, match="not found in hand"):
            play(executor, state, "research", discard_card_ids=["grass-energy"])

    def test_discard_then_draw(self, executor, battle_state):
        state = with_hand(battle_state, "research", "fire-energy")
        new_state, _ = play(executor, state, "research", discard_card_ids=["fire-energy"])
        p1 = new_state.player1_state
        assert p1.hand == ("grass-energy",) * 3
        assert p1.discard_pile == ("fire-energy", "research")
        assert p1.get_deck_count() == 7


class TestSupporters:

    def test_draw(self, executor, battle_state):
        new_state, results = play(executor, battle_state, "hilda")
        p1 = new_state.player1_state
        assert p1.get_hand_count() == 5
        assert results['trainer_type'] == "SUPPORTER"

    def test_boss_drags_up_bench(self, executor, battle_state):
        state = with_hand(battle_state, "boss")
        new_state, _ = play(executor, state, "boss", bench_position=PokemonPosition.BENCH_0)
        p2 = new_state.player2_state
        assert p2.active_pokemon.card_id == "pikachu"
        assert [p.card_id for p in p2.bench] == ["squirtle"]

    def test_one_supporter_per_turn(self, engine, store_match, battle_state):
        state = with_hand(battle_state, "hilda", "boss")
        match_id = store_match(state)
        engine.execute_turn_action(match_id, "alice", "PLAY_TRAINER", {"cardId": "hilda"})
        with pytest.raises(GameRuleViolation, match="Only one Supporter"):
            engine.execute_turn_action(match_id, "alice", "PLAY_TRAINER",
                                       {"cardId": "boss", "benchPosition": "BENCH_0"})


class TestEffectHandlers:

    def test_switch_clears_status(self, executor, battle_state, make_pokemon):
        confused = make_pokemon("charmander", statuses=[StatusEffect.CONFUSED])
        p1 = battle_state.player1_state.with_active_pokemon(confused).with_hand(("switch",))
        new_state, _ = play(executor, battle_state.with_player1_state(p1), "switch",
                            bench_position=PokemonPosition.BENCH_0)
        p1 = new_state.player1_state
        assert p1.active_pokemon.card_id == "squirtle"
        assert p1.bench[0].instance_id == confused.instance_id
        assert not p1.bench[0].has_status()

    def test_search_deck(self, executor, battle_state):
        p1 = battle_state.player1_state._replace(hand=("ultra-ball", "fire-energy", "potion"),
                                                 deck=("grass-energy", "pikachu"))
        new_state, _ = play(executor, battle_state.with_player1_state(p1), "ultra-ball",
                            selected_card_ids=["pikachu"], discard_card_ids=["fire-energy", "potion"])
        p1 = new_state.player1_state
        assert p1.hand == ("pikachu",)
        assert p1.deck == ("grass-energy",)
        assert p1.discard_pile == ("fire-energy", "potion", "ultra-ball")

    def test_look_at_deck_reveals_top_cards(self, executor, battle_state):
        p1 = battle_state.player1_state._replace(hand=("pokegear",),
                                                 deck=("pikachu", "potion", "fire-energy", "switch", "hilda"))
        new_state, results = play(executor, battle_state.with_player1_state(p1), "pokegear")
        assert results['revealed_cards'] == ["pikachu", "potion", "fire-energy"]
        assert new_state.player1_state.deck == p1.deck
        assert new_state.player1_state.discard_pile == ("pokegear",)

    def test_search_filter(self, executor, battle_state):
        p1 = battle_state.player1_state._replace(hand=("ultra-ball", "fire-energy", "potion"))
        with pytest.raises(GameRuleViolation, match="does not match the search criteria"):
            play(executor, battle_state.with_player1_state(p1), "ultra-ball",
                 selected_card_ids=["grass-energy"], discard_card_ids=["fire-energy", "potion"])

    def test_discard_count_must_match(self, executor, battle_state):
        state = with_hand(battle_state, "ultra-ball", "fire-energy", "potion")
        with pytest.raises(MalformedInputError) as exc:
            play(executor, state, "ultra-ball", selected_card_ids=["pikachu"], discard_card_ids=["potion"])
        assert exc.value.reasons == ["Effect 1: discardCardIds must contain exactly 2 card(s)"]

    def test_retrieve_energy(self, executor, battle_state):
        state = with_hand(battle_state, "energy-retrieval", discard=["fire-energy", "water-energy", "potion"])
        new_state, _ = play(executor, state, "energy-retrieval", selected_card_ids=["fire-energy", "water-energy"])
        p1 = new_state.player1_state
        assert sorted(p1.hand) == ["fire-energy", "water-energy"]
        assert p1.discard_pile == ("potion", "energy-retrieval")

    def test_retrieve_energy_rejects_non_energy(self, executor, battle_state):
        state = with_hand(battle_state, "energy-retrieval", discard=["potion"])
        with pytest.raises(GameRuleViolation, match="is not an Energy card"):
            play(executor, state, "energy-retrieval", selected_card_ids=["potion"])

    def test_retrieve_limit(self, executor, battle_state):
        state = with_hand(battle_state, "energy-retrieval", discard=["fire-energy"] * 3)
        with pytest.raises(MalformedInputError):
            play(executor, state, "energy-retrieval", selected_card_ids=["fire-energy"] * 3)

    def test_retrieve_pokemon_from_discard(self, executor, battle_state):
        state = with_hand(battle_state, "night-stretcher", discard=["pikachu", "fire-energy"])
        new_state, _ = play(executor, state, "night-stretcher", selected_card_ids=["pikachu"])
        p1 = new_state.player1_state
        assert p1.hand == ("pikachu",)
        assert p1.discard_pile == ("fire-energy", "night-stretcher")

    def test_cure_status(self, executor, battle_state, make_pokemon):
        poisoned = make_pokemon("charmander", statuses=[StatusEffect.POISONED, StatusEffect.ASLEEP])
        p1 = battle_state.player1_state.with_active_pokemon(poisoned).with_hand(("full-heal",))
        new_state, _ = play(executor, battle_state.with_player1_state(p1), "full-heal")
        cured = new_state.player1_state.active_pokemon
        assert not cured.has_status()
        assert cured.poison_damage_amount is None

    def test_remove_opponent_energy(self, executor, battle_state, make_pokemon):
        p2 = battle_state.player2_state.with_active_pokemon(make_pokemon("squirtle", energy=["water-energy"]))
        state = with_hand(battle_state.with_player2_state(p2), "crushing-hammer")
        new_state, _ = play(executor, state, "crushing-hammer", target=PokemonPosition.ACTIVE,
                            energy_card_id="water-energy")
        p2 = new_state.player2_state
        assert p2.active_pokemon.attached_energy == ()
        assert p2.discard_pile == ("water-energy",)

    def test_remove_energy_needs_inputs(self, executor, battle_state):
        state = with_hand(battle_state, "crushing-hammer")
        with pytest.raises(MalformedInputError) as exc:
            play(executor, state, "crushing-hammer")
        assert exc.value.reasons == [
            "Effect 0: target is required for REMOVE_ENERGY effect",
            "Effect 0: energyCardId is required for REMOVE_ENERGY effect",
        ]
