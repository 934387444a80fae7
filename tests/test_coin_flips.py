"""
Test Suite: Coin Flips
Attack-text parsing, deterministic flip generation and flip damage.
"""

import pytest
import sys
sys.path.insert(0, 'src')

from coin_flips import AttackCoinFlipParser, CoinFlipResolver, parse_base_damage
from models import (
    CoinFlipConfiguration,
    CoinFlipContext,
    CoinFlipCountType,
    CoinFlipResult,
    CoinFlipState,
    DamageCalculationType,
    StatusEffect,
    VariableCoinCountSource,
)
import config


def flips(*results):
    return [CoinFlipResult(flip_index=i, result=r, seed=i) for i, r in enumerate(results)]


@pytest.fixture
def parser():
    return AttackCoinFlipParser()


@pytest.fixture
def resolver():
    return CoinFlipResolver()


class TestParser:

    def test_no_flip(self, parser):
        assert parser.parse("Discard an Energy attached to this Pokémon.", "30") is None
        assert parser.parse(None, "30") is None

    def test_does_nothing_on_tails(self, parser):
        configuration = parser.parse("Flip a coin. If tails, this attack does nothing.", "50")
        assert configuration.count_type == CoinFlipCountType.FIXED
        assert configuration.fixed_count == 1
        assert configuration.damage_calculation_type == DamageCalculationType.BASE_DAMAGE
        assert configuration.base_damage == 50

    def test_multiple_coins(self, parser):
        configuration = parser.parse("Flip 3 coins. This attack does 20 damage times the number of heads.", "20×")
        assert configuration.fixed_count == 3
        assert configuration.damage_calculation_type == DamageCalculationType.MULTIPLY_BY_HEADS
        assert configuration.damage_per_head == 20

    def test_until_tails(self, parser):
        configuration = parser.parse(
            "Flip a coin until you get tails. This attack does 30 damage times the number of heads.", "30×")
        assert configuration.count_type == CoinFlipCountType.UNTIL_TAILS
        assert configuration.damage_per_head == 30

    def test_per_energy(self, parser):
        configuration = parser.parse(
            "Flip a coin for each Energy attached to this Pokémon. "
            "This attack does 50 damage times the number of heads.", "50×")
        assert configuration.count_type == CoinFlipCountType.VARIABLE
        assert configuration.variable_source == VariableCoinCountSource.ENERGY_ATTACHED

    def test_bonus_with_self_damage(self, parser):
        configuration = parser.parse(
            "Flip a coin. If heads, this attack does 10 damage plus 20 more damage; "
            "if tails, this Pokémon does 10 damage to itself.", "10+")
        assert configuration.damage_calculation_type == DamageCalculationType.CONDITIONAL_BONUS
        assert configuration.base_damage == 10
        assert configuration.conditional_bonus == 20
        assert configuration.self_damage_on_tails == 10

    def test_status_on_heads(self, parser):
        text = "Flip a coin. If heads, the Defending Pokémon is now Paralyzed."
        configuration = parser.parse(text, "10")
        assert configuration.damage_calculation_type == DamageCalculationType.STATUS_EFFECT_ONLY
        assert parser.parse_status_on_flip(text) == ('heads', StatusEffect.PARALYZED)

    def test_base_damage_parsing(self):
        assert parse_base_damage("30+") == 30
        assert parse_base_damage("20×") == 20
        assert parse_base_damage("") == 0


class TestDeterminism:

    def test_same_inputs_same_result(self, resolver):
        first = resolver.generate_coin_flip("match-1", 3, "action-1", 0)
        second = resolver.generate_coin_flip("match-1", 3, "action-1", 0)
        assert first == second

    def test_seed_is_non_negative(self, resolver):
        for index in range(20):
            assert resolver.generate_seed("m", 1, f"a-{index}", index) >= 0

    def test_seeded_random_in_unit_interval(self, resolver):
        for seed in (0, 1, 12345, 2 ** 31 - 1):
            assert 0 <= resolver.seeded_random(seed) < 1

    def test_result_follows_seeded_value(self, resolver):
        for index in range(5):
            flip = resolver.generate_coin_flip("match-1", 1, "action-1", index)
            expected = 'heads' if resolver.seeded_random(flip.seed) >= 0.5 else 'tails'
            assert flip.result == expected
            assert flip.flip_index == index


class TestCoinCount:

    def test_fixed(self, resolver):
        configuration = CoinFlipConfiguration(count_type=CoinFlipCountType.FIXED, fixed_count=2)
        assert resolver.calculate_coin_count(configuration) == 2

    def test_until_tails_capped(self, resolver):
        configuration = CoinFlipConfiguration(count_type=CoinFlipCountType.UNTIL_TAILS,
                                              damage_calculation_type=DamageCalculationType.MULTIPLY_BY_HEADS,
                                              damage_per_head=10)
        assert resolver.calculate_coin_count(configuration) == config.MAX_COIN_FLIPS

    def test_variable_from_energy(self, resolver, make_pokemon):
        configuration = CoinFlipConfiguration(count_type=CoinFlipCountType.VARIABLE,
                                              variable_source=VariableCoinCountSource.ENERGY_ATTACHED)
        pokemon = make_pokemon("charmander", energy=["fire-energy"] * 3)
        assert resolver.calculate_coin_count(configuration, pokemon=pokemon) == 3

    def test_fixed_count_bounds(self):
        with pytest.raises(ValueError):
            CoinFlipConfiguration(count_type=CoinFlipCountType.FIXED, fixed_count=0)

    def test_flip_until_complete_stops_on_tails(self, resolver):
        configuration = CoinFlipConfiguration(count_type=CoinFlipCountType.UNTIL_TAILS,
                                              damage_calculation_type=DamageCalculationType.MULTIPLY_BY_HEADS,
                                              damage_per_head=10)
        state = CoinFlipState(context=CoinFlipContext.ATTACK, configuration=configuration, attack_index=0,
                              action_id="action-1")
        done = resolver.flip_until_complete(state, "match-1", 1, config.MAX_COIN_FLIPS)
        assert 1 <= len(done.results) <= config.MAX_COIN_FLIPS
        if len(done.results) < config.MAX_COIN_FLIPS:
            assert done.results[-1].is_tails()
            assert all(r.is_heads() for r in done.results[:-1])


class TestFlipDamage:

    def test_base_damage_needs_all_heads(self, resolver):
        configuration = CoinFlipConfiguration(count_type=CoinFlipCountType.FIXED, fixed_count=1, base_damage=50)
        assert resolver.calculate_damage(configuration, flips('heads')) == 50
        assert resolver.calculate_damage(configuration, flips('tails')) == 0
        assert not resolver.should_attack_proceed(configuration, flips('tails'))

    def test_multiply_by_heads(self, resolver):
        configuration = CoinFlipConfiguration(count_type=CoinFlipCountType.FIXED, fixed_count=3,
                                              damage_calculation_type=DamageCalculationType.MULTIPLY_BY_HEADS,
                                              damage_per_head=20)
        assert resolver.calculate_damage(configuration, flips('heads', 'tails', 'heads')) == 40

    def test_conditional_bonus(self, resolver):
        configuration = CoinFlipConfiguration(count_type=CoinFlipCountType.FIXED, fixed_count=1,
                                              damage_calculation_type=DamageCalculationType.CONDITIONAL_BONUS,
                                              base_damage=10, conditional_bonus=20, self_damage_on_tails=10)
        assert resolver.calculate_damage(configuration, flips('heads')) == 30
        assert resolver.calculate_damage(configuration, flips('tails')) == 10
        assert resolver.self_damage(configuration, flips('tails')) == 10
        assert resolver.self_damage(configuration, flips('heads')) == 0
