"""
Pokémon TCG Match Engine - Coin Flips (coin_flips.py)

Two pieces:
- AttackCoinFlipParser turns printed attack text into a CoinFlipConfiguration.
- CoinFlipResolver produces deterministic flip results and turns them into
  coin counts and damage.

Flips are seeded from (match id, turn, action id, flip index), so replaying
an action history reproduces every result.
"""

import re
from typing import List, Optional, Tuple

import config
from models import (
    CardInstance,
    CoinFlipConfiguration,
    CoinFlipCountType,
    CoinFlipResult,
    CoinFlipState,
    DamageCalculationType,
    PlayerGameState,
    StatusEffect,
    VariableCoinCountSource,
)
from utils.logger import setup_logger

logger = setup_logger(__name__)

STATUS_WORDS = {
    'asleep': StatusEffect.ASLEEP,
    'confused': StatusEffect.CONFUSED,
    'paralyzed': StatusEffect.PARALYZED,
    'poisoned': StatusEffect.POISONED,
    'burned': StatusEffect.BURNED,
}

_MULTI_COIN = re.compile(r'flip (\d+) coins?.*?does (\d+) damage times the number of heads')
_TIMES_HEADS = re.compile(r'does (\d+) damage times the number of heads')
_BONUS = re.compile(r'if heads.*?does (\d+) damage plus (\d+) more damage')
_PLUS_MORE = re.compile(r'if heads.*?(\d+) more damage')
_SELF_DAMAGE = re.compile(r'does (\d+) damage to itself')
_STATUS_ON_FLIP = re.compile(r'if (heads|tails).*?is now (asleep|confused|paralyzed|poisoned|burned)')
_FIRST_NUMBER = re.compile(r'\d+')


def parse_base_damage(damage: Optional[str]) -> int:
    """First integer in a printed damage string ('30+' -> 30, '' -> 0)."""
    match = _FIRST_NUMBER.search(damage or "")
    return int(match.group()) if match else 0


# ============================================================================
# 1. PARSER
# ============================================================================

class AttackCoinFlipParser:
    """Recognises the coin-flip wordings used on attacks."""

    @staticmethod
    def requires_coin_flip(text: Optional[str]) -> bool:
        return bool(text) and 'flip' in text.lower() and 'coin' in text.lower()

    def parse(self, attack_text: Optional[str], damage: Optional[str] = "") -> Optional[CoinFlipConfiguration]:
        """
        Args:
            attack_text: Printed attack text
            damage: Printed damage string

        Returns:
            CoinFlipConfiguration, or None if the attack flips no coins
        """
        if not self.requires_coin_flip(attack_text):
            return None

        text = attack_text.lower()
        base_damage = parse_base_damage(damage)

        # "Flip a coin. If tails, this attack does nothing."
        if 'flip a coin' in text and 'if tails' in text and 'does nothing' in text:
            return CoinFlipConfiguration(
                count_type=CoinFlipCountType.FIXED,
                fixed_count=1,
                damage_calculation_type=DamageCalculationType.BASE_DAMAGE,
                base_damage=base_damage,
            )

        # "Flip 3 coins. This attack does 20 damage times the number of heads."
        match = _MULTI_COIN.search(text)
        if match:
            return CoinFlipConfiguration(
                count_type=CoinFlipCountType.FIXED,
                fixed_count=min(int(match.group(1)), config.MAX_COIN_FLIPS),
                damage_calculation_type=DamageCalculationType.MULTIPLY_BY_HEADS,
                damage_per_head=int(match.group(2)),
            )

        # "Flip a coin until you get tails. This attack does 30 damage times the number of heads."
        if 'until you get tails' in text:
            match = _TIMES_HEADS.search(text)
            if match:
                return CoinFlipConfiguration(
                    count_type=CoinFlipCountType.UNTIL_TAILS,
                    damage_calculation_type=DamageCalculationType.MULTIPLY_BY_HEADS,
                    damage_per_head=int(match.group(1)),
                )

        # "Flip a coin for each Energy attached to this Pokémon. ... times the number of heads."
        if 'for each' in text and 'energy attached' in text:
            match = _TIMES_HEADS.search(text)
            if match:
                return CoinFlipConfiguration(
                    count_type=CoinFlipCountType.VARIABLE,
                    variable_source=VariableCoinCountSource.ENERGY_ATTACHED,
                    damage_calculation_type=DamageCalculationType.MULTIPLY_BY_HEADS,
                    damage_per_head=int(match.group(1)),
                )

        # "Flip a coin. If heads, this attack does 10 damage plus 20 more damage; if tails, ..."
        match = _BONUS.search(text) or _PLUS_MORE.search(text)
        if match:
            bonus = int(match.group(match.lastindex))
            self_damage = _SELF_DAMAGE.search(text)
            return CoinFlipConfiguration(
                count_type=CoinFlipCountType.FIXED,
                fixed_count=1,
                damage_calculation_type=DamageCalculationType.CONDITIONAL_BONUS,
                base_damage=int(match.group(1)) if match.re is _BONUS else base_damage,
                conditional_bonus=bonus,
                self_damage_on_tails=int(self_damage.group(1)) if self_damage else None,
            )

        # "Flip a coin. If heads, the Defending Pokémon is now Paralyzed."
        if 'flip a coin' in text and _STATUS_ON_FLIP.search(text):
            return CoinFlipConfiguration(
                count_type=CoinFlipCountType.FIXED,
                fixed_count=1,
                damage_calculation_type=DamageCalculationType.STATUS_EFFECT_ONLY,
                base_damage=base_damage,
            )

        if 'flip a coin' in text:
            return CoinFlipConfiguration(
                count_type=CoinFlipCountType.FIXED,
                fixed_count=1,
                damage_calculation_type=DamageCalculationType.BASE_DAMAGE,
                base_damage=base_damage,
            )

        logger.debug("Unrecognised coin flip text: %s", attack_text)
        return None

    def parse_status_on_flip(self, attack_text: Optional[str]) -> Optional[Tuple[str, StatusEffect]]:
        """('heads'|'tails', status) for "If heads, ... is now Paralyzed" texts."""
        if not attack_text:
            return None
        match = _STATUS_ON_FLIP.search(attack_text.lower())
        if not match:
            return None
        return match.group(1), STATUS_WORDS[match.group(2)]


# ============================================================================
# 2. RESOLVER
# ============================================================================

class CoinFlipResolver:
    """Deterministic flip generation and damage interpretation."""

    def calculate_coin_count(
        self,
        configuration: CoinFlipConfiguration,
        player_state: Optional[PlayerGameState] = None,
        pokemon: Optional[CardInstance] = None,
        energy_type_of=None,
    ) -> int:
        """
        Number of coins to flip. UNTIL_TAILS returns the flip cap.

        Args:
            configuration: Parsed coin-flip rules
            player_state: Attacking player's zones (VARIABLE sources)
            pokemon: Attacking Pokémon (VARIABLE sources)
            energy_type_of: Callable resolving an energy card id to its type
        """
        if configuration.count_type == CoinFlipCountType.FIXED:
            return configuration.fixed_count
        if configuration.count_type == CoinFlipCountType.UNTIL_TAILS:
            return config.MAX_COIN_FLIPS

        source = configuration.variable_source
        if source == VariableCoinCountSource.ENERGY_ATTACHED:
            count = len(pokemon.attached_energy) if pokemon else 0
        elif source == VariableCoinCountSource.ENERGY_TYPE_ATTACHED:
            count = 0
            if pokemon and energy_type_of is not None:
                count = sum(1 for e in pokemon.attached_energy if energy_type_of(e) == configuration.energy_type)
        elif source == VariableCoinCountSource.BENCH_POKEMON:
            count = len(player_state.bench) if player_state else 0
        elif source == VariableCoinCountSource.DAMAGE_COUNTERS:
            count = pokemon.damage_counters if pokemon else 0
        elif source == VariableCoinCountSource.HAND_SIZE:
            count = player_state.get_hand_count() if player_state else 0
        else:
            count = 0
        return min(count, config.MAX_COIN_FLIPS)

    @staticmethod
    def generate_seed(match_id: str, turn_number: int, action_id: str, flip_index: int) -> int:
        seed_string = f"{match_id}-{turn_number}-{action_id}-{flip_index}"
        value = 0
        for char in seed_string:
            value = (value * 31 + ord(char)) & 0xFFFFFFFF
        if value >= 2 ** 31:
            value -= 2 ** 32
        return abs(value)

    @staticmethod
    def seeded_random(seed: int) -> float:
        state = (config.LCG_MULTIPLIER * (seed % config.LCG_MODULUS) + config.LCG_INCREMENT) % config.LCG_MODULUS
        return state / config.LCG_MODULUS

    def generate_coin_flip(self, match_id: str, turn_number: int, action_id: str, flip_index: int) -> CoinFlipResult:
        seed = self.generate_seed(match_id, turn_number, action_id, flip_index)
        result = 'heads' if self.seeded_random(seed) >= 0.5 else 'tails'
        return CoinFlipResult(flip_index=flip_index, result=result, seed=seed)

    def is_complete(self, state: CoinFlipState, coin_count: int) -> bool:
        """Completion including VARIABLE flips, given the computed coin count."""
        if state.configuration.count_type == CoinFlipCountType.VARIABLE:
            return len(state.results) >= coin_count
        if state.configuration.count_type == CoinFlipCountType.UNTIL_TAILS:
            return state.is_complete() or len(state.results) >= coin_count
        return state.is_complete()

    def flip_until_complete(self, state: CoinFlipState, match_id: str, turn_number: int,
                            coin_count: int) -> CoinFlipState:
        """Record flips until the state is complete."""
        action_id = state.action_id or "coin-flip"
        while not self.is_complete(state, coin_count):
            state = state.with_result(
                self.generate_coin_flip(match_id, turn_number, action_id, len(state.results))
            )
        return state

    def calculate_damage(self, configuration: CoinFlipConfiguration, results: List[CoinFlipResult],
                         base_damage: Optional[int] = None) -> int:
        base = configuration.base_damage if base_damage is None else base_damage
        heads = sum(1 for r in results if r.is_heads())
        tails = len(results) - heads
        calc = configuration.damage_calculation_type

        if calc == DamageCalculationType.BASE_DAMAGE:
            return 0 if tails > 0 else base
        if calc == DamageCalculationType.MULTIPLY_BY_HEADS:
            return (configuration.damage_per_head or 0) * heads
        if calc == DamageCalculationType.CONDITIONAL_BONUS:
            if tails == 0 and heads > 0:
                return base + (configuration.conditional_bonus or 0)
            return base
        return base

    def self_damage(self, configuration: CoinFlipConfiguration, results: List[CoinFlipResult]) -> int:
        if configuration.self_damage_on_tails and any(r.is_tails() for r in results):
            return configuration.self_damage_on_tails
        return 0

    def should_attack_proceed(self, configuration: CoinFlipConfiguration, results: List[CoinFlipResult]) -> bool:
        if configuration.damage_calculation_type == DamageCalculationType.BASE_DAMAGE:
            return not any(r.is_tails() for r in results)
        return True
