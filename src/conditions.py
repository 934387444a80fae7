"""
Pokémon TCG Match Engine - Condition Evaluator (conditions.py)

Decides whether a conditional effect ("If heads, ...", "If this Pokémon has
any damage counters on it, ...") applies in the current state.

Match modes:
- ALL:         every listed condition must hold (default)
- FIRST_MATCH: the first listed condition alone decides, later ones are
               ignored. Kept for card data authored against that behaviour.
"""

from enum import Enum
from typing import Optional, Sequence, TYPE_CHECKING

from cards.effects import Condition, ConditionType
from models import CardInstance, CoinFlipResult, GameState, PlayerGameState, PlayerIdentifier, StatusEffect
from utils.logger import setup_logger

if TYPE_CHECKING:
    from cards.registry import CardResolver

logger = setup_logger(__name__)


class ConditionMatchMode(str, Enum):
    ALL = "ALL"
    FIRST_MATCH = "FIRST_MATCH"


OPPONENT_STATUS_CONDITIONS = {
    ConditionType.OPPONENT_CONFUSED: StatusEffect.CONFUSED,
    ConditionType.OPPONENT_PARALYZED: StatusEffect.PARALYZED,
    ConditionType.OPPONENT_POISONED: StatusEffect.POISONED,
    ConditionType.OPPONENT_BURNED: StatusEffect.BURNED,
    ConditionType.OPPONENT_ASLEEP: StatusEffect.ASLEEP,
}


class ConditionEvaluator:
    """
    Evaluates `required_conditions` lists against a game state.

    Energy-type checks resolve attached energy card ids through the card
    resolver; without one, SELF_HAS_ENERGY_TYPE is never satisfied.
    """

    def __init__(self, resolver: Optional['CardResolver'] = None,
                 mode: ConditionMatchMode = ConditionMatchMode.ALL):
        self.resolver = resolver
        self.mode = mode

    def evaluate(
        self,
        conditions: Sequence[Condition],
        game_state: Optional[GameState],
        player: PlayerIdentifier,
        player_state: PlayerGameState,
        opponent_state: PlayerGameState,
        coin_flip_results: Optional[Sequence[CoinFlipResult]] = None,
        source_pokemon: Optional[CardInstance] = None,
    ) -> bool:
        """
        Args:
            conditions: Conditions attached to the effect
            game_state: Current snapshot (may be None in isolated checks)
            player: Player whose effect is evaluated
            player_state: That player's zones
            opponent_state: The opponent's zones
            coin_flip_results: Results of the flip tied to this effect
            source_pokemon: Pokémon owning the effect; defaults to the active

        Returns:
            True if the effect applies. An empty list is always True.
        """
        if not conditions:
            return True

        if self.mode == ConditionMatchMode.FIRST_MATCH:
            return self._evaluate_one(conditions[0], player_state, opponent_state,
                                      coin_flip_results, source_pokemon)

        return all(
            self._evaluate_one(condition, player_state, opponent_state, coin_flip_results, source_pokemon)
            for condition in conditions
        )

    def _evaluate_one(
        self,
        condition: Condition,
        player_state: PlayerGameState,
        opponent_state: PlayerGameState,
        coin_flip_results: Optional[Sequence[CoinFlipResult]],
        source_pokemon: Optional[CardInstance],
    ) -> bool:
        ctype = condition.condition_type
        value = condition.value
        own = source_pokemon or player_state.active_pokemon
        defending = opponent_state.active_pokemon

        if ctype == ConditionType.ALWAYS:
            return True

        if ctype == ConditionType.COIN_FLIP_SUCCESS:
            return bool(coin_flip_results) and any(r.is_heads() for r in coin_flip_results)

        if ctype == ConditionType.COIN_FLIP_FAILURE:
            return bool(coin_flip_results) and any(r.is_tails() for r in coin_flip_results)

        if ctype == ConditionType.SELF_HAS_DAMAGE:
            return own is not None and own.current_hp < own.max_hp

        if ctype == ConditionType.SELF_NO_DAMAGE:
            return own is not None and own.current_hp == own.max_hp

        if ctype == ConditionType.OPPONENT_HAS_DAMAGE:
            return defending is not None and defending.current_hp < defending.max_hp

        if ctype == ConditionType.SELF_MINIMUM_DAMAGE:
            minimum = value.minimum_amount if value and value.minimum_amount is not None else 0
            return own is not None and own.damage_taken >= minimum

        if ctype == ConditionType.SELF_MINIMUM_ENERGY:
            minimum = value.minimum_amount if value and value.minimum_amount is not None else 1
            return own is not None and len(own.attached_energy) >= minimum

        if ctype == ConditionType.SELF_HAS_ENERGY_TYPE:
            return self._has_energy_type(own, condition)

        if ctype == ConditionType.SELF_HAS_STATUS:
            return own is not None and own.has_status(value.status_condition if value else None)

        if ctype == ConditionType.OPPONENT_HAS_STATUS:
            return defending is not None and defending.has_status(value.status_condition if value else None)

        if ctype in OPPONENT_STATUS_CONDITIONS:
            return defending is not None and defending.has_status(OPPONENT_STATUS_CONDITIONS[ctype])

        if ctype == ConditionType.SELF_HAS_BENCHED:
            return len(player_state.bench) > 0

        if ctype == ConditionType.OPPONENT_HAS_BENCHED:
            return len(opponent_state.bench) > 0

        logger.warning("Unknown condition type %s, treating as not met", ctype)
        return False

    def _has_energy_type(self, pokemon: Optional[CardInstance], condition: Condition) -> bool:
        value = condition.value
        if pokemon is None or value is None or value.energy_type is None:
            return False
        if self.resolver is None:
            logger.warning("SELF_HAS_ENERGY_TYPE evaluated without a card resolver")
            return False
        minimum = value.minimum_amount or 1
        matching = sum(1 for energy_id in pokemon.attached_energy
                       if self.resolver.energy_type_of(energy_id) == value.energy_type)
        return matching >= minimum
