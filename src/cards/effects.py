"""
Pokémon TCG Match Engine - Effect Definitions (cards/effects.py)

Static, template-level descriptions of what abilities, trainer cards and
attacks do. Nothing here is runtime state: the executors in `effects/`
interpret these definitions against a GameState.

Ability and attack effects are tagged variants (one model per effect type,
discriminated on `effect_type`). Trainer effects share one shape because
every trainer effect takes the same target/value/card-type parameters.
"""

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from models import CardType, EffectDuration, EnergyType, StatusEffect


# ============================================================================
# 1. SHARED PARAMETER ENUMS
# ============================================================================

class TargetType(str, Enum):
    """Who an effect applies to."""
    SELF = "SELF"
    ACTIVE_YOURS = "ACTIVE_YOURS"
    BENCHED_YOURS = "BENCHED_YOURS"
    ALL_YOURS = "ALL_YOURS"
    DEFENDING = "DEFENDING"
    ACTIVE_OPPONENT = "ACTIVE_OPPONENT"
    BENCHED_OPPONENT = "BENCHED_OPPONENT"
    ALL_OPPONENT = "ALL_OPPONENT"


OPPONENT_TARGETS = frozenset({
    TargetType.DEFENDING,
    TargetType.ACTIVE_OPPONENT,
    TargetType.BENCHED_OPPONENT,
    TargetType.ALL_OPPONENT,
})


class EnergySource(str, Enum):
    """Zone energy is taken from for acceleration effects."""
    DECK = "DECK"
    DISCARD = "DISCARD"
    HAND = "HAND"
    SELF = "SELF"


class SearchDestination(str, Enum):
    HAND = "HAND"
    BENCH = "BENCH"


class Selector(str, Enum):
    """Who picks the cards an effect moves."""
    CHOICE = "CHOICE"
    RANDOM = "RANDOM"
    ALL = "ALL"


# ============================================================================
# 2. CONDITIONS
# ============================================================================

class ConditionType(str, Enum):
    """Gates evaluated before a conditional effect runs."""
    ALWAYS = "ALWAYS"
    COIN_FLIP_SUCCESS = "COIN_FLIP_SUCCESS"
    COIN_FLIP_FAILURE = "COIN_FLIP_FAILURE"
    SELF_HAS_DAMAGE = "SELF_HAS_DAMAGE"
    SELF_NO_DAMAGE = "SELF_NO_DAMAGE"
    SELF_HAS_STATUS = "SELF_HAS_STATUS"
    SELF_MINIMUM_DAMAGE = "SELF_MINIMUM_DAMAGE"
    SELF_HAS_ENERGY_TYPE = "SELF_HAS_ENERGY_TYPE"
    SELF_MINIMUM_ENERGY = "SELF_MINIMUM_ENERGY"
    SELF_HAS_BENCHED = "SELF_HAS_BENCHED"
    OPPONENT_HAS_DAMAGE = "OPPONENT_HAS_DAMAGE"
    OPPONENT_HAS_STATUS = "OPPONENT_HAS_STATUS"
    OPPONENT_CONFUSED = "OPPONENT_CONFUSED"
    OPPONENT_PARALYZED = "OPPONENT_PARALYZED"
    OPPONENT_POISONED = "OPPONENT_POISONED"
    OPPONENT_BURNED = "OPPONENT_BURNED"
    OPPONENT_ASLEEP = "OPPONENT_ASLEEP"
    OPPONENT_HAS_BENCHED = "OPPONENT_HAS_BENCHED"


class ConditionValue(BaseModel):
    model_config = {"frozen": True}

    status_condition: Optional[StatusEffect] = None
    energy_type: Optional[EnergyType] = None
    minimum_amount: Optional[int] = None


class Condition(BaseModel):
    model_config = {"frozen": True}

    condition_type: ConditionType
    value: Optional[ConditionValue] = None


# ============================================================================
# 3. ABILITY / ATTACK EFFECT VARIANTS
# ============================================================================

class AbilityEffectType(str, Enum):
    HEAL = "HEAL"
    PREVENT_DAMAGE = "PREVENT_DAMAGE"
    STATUS_CONDITION = "STATUS_CONDITION"
    ENERGY_ACCELERATION = "ENERGY_ACCELERATION"
    SWITCH_POKEMON = "SWITCH_POKEMON"
    DRAW_CARDS = "DRAW_CARDS"
    SEARCH_DECK = "SEARCH_DECK"
    BOOST_ATTACK = "BOOST_ATTACK"
    BOOST_HP = "BOOST_HP"
    REDUCE_DAMAGE = "REDUCE_DAMAGE"
    DISCARD_FROM_HAND = "DISCARD_FROM_HAND"
    ATTACH_FROM_DISCARD = "ATTACH_FROM_DISCARD"
    RETRIEVE_FROM_DISCARD = "RETRIEVE_FROM_DISCARD"


class AttackEffectType(str, Enum):
    DISCARD_ENERGY = "DISCARD_ENERGY"
    STATUS_CONDITION = "STATUS_CONDITION"
    DAMAGE_MODIFIER = "DAMAGE_MODIFIER"
    HEAL = "HEAL"
    PREVENT_DAMAGE = "PREVENT_DAMAGE"
    RECOIL_DAMAGE = "RECOIL_DAMAGE"
    ENERGY_ACCELERATION = "ENERGY_ACCELERATION"
    SWITCH_POKEMON = "SWITCH_POKEMON"


class EffectBase(BaseModel):
    model_config = {"frozen": True}

    required_conditions: List[Condition] = Field(default_factory=list)


class HealEffect(EffectBase):
    effect_type: Literal['HEAL'] = 'HEAL'
    target: TargetType = TargetType.SELF
    amount: int = Field(..., gt=0)


class PreventDamageEffect(EffectBase):
    effect_type: Literal['PREVENT_DAMAGE'] = 'PREVENT_DAMAGE'
    target: TargetType = TargetType.SELF
    duration: EffectDuration = EffectDuration.NEXT_TURN
    amount: Union[int, Literal['all']] = 'all'


class StatusConditionEffect(EffectBase):
    effect_type: Literal['STATUS_CONDITION'] = 'STATUS_CONDITION'
    target: TargetType = TargetType.DEFENDING
    status_condition: StatusEffect
    poison_damage: Optional[int] = Field(None, description="10 or 20 when POISONED")


class EnergyAccelerationEffect(EffectBase):
    effect_type: Literal['ENERGY_ACCELERATION'] = 'ENERGY_ACCELERATION'
    target: TargetType = TargetType.SELF
    source: EnergySource
    count: int = Field(1, ge=1)
    energy_type: Optional[EnergyType] = None
    selector: Selector = Selector.CHOICE


class SwitchPokemonEffect(EffectBase):
    effect_type: Literal['SWITCH_POKEMON'] = 'SWITCH_POKEMON'
    selector: Selector = Selector.CHOICE


class DrawCardsEffect(EffectBase):
    effect_type: Literal['DRAW_CARDS'] = 'DRAW_CARDS'
    count: int = Field(..., ge=1)


class SearchDeckEffect(EffectBase):
    effect_type: Literal['SEARCH_DECK'] = 'SEARCH_DECK'
    count: int = Field(..., ge=1)
    destination: SearchDestination = SearchDestination.HAND
    card_type: Optional[CardType] = None
    pokemon_type: Optional[EnergyType] = None
    selector: Selector = Selector.CHOICE


class BoostAttackEffect(EffectBase):
    effect_type: Literal['BOOST_ATTACK'] = 'BOOST_ATTACK'
    target: TargetType = TargetType.SELF
    modifier: int
    affected_types: Optional[List[EnergyType]] = None


class BoostHpEffect(EffectBase):
    effect_type: Literal['BOOST_HP'] = 'BOOST_HP'
    target: TargetType = TargetType.SELF
    modifier: int


class ReduceDamageEffect(EffectBase):
    effect_type: Literal['REDUCE_DAMAGE'] = 'REDUCE_DAMAGE'
    target: TargetType = TargetType.SELF
    amount: int = Field(..., gt=0)
    duration: EffectDuration = EffectDuration.NEXT_TURN
    source: Optional[str] = None


class DiscardFromHandEffect(EffectBase):
    effect_type: Literal['DISCARD_FROM_HAND'] = 'DISCARD_FROM_HAND'
    count: Union[int, Literal['all']] = 1
    selector: Selector = Selector.CHOICE
    card_type: Optional[CardType] = None


class AttachFromDiscardEffect(EffectBase):
    effect_type: Literal['ATTACH_FROM_DISCARD'] = 'ATTACH_FROM_DISCARD'
    target: TargetType = TargetType.SELF
    energy_type: Optional[EnergyType] = None
    count: int = Field(1, ge=1)
    selector: Selector = Selector.CHOICE


class RetrieveFromDiscardEffect(EffectBase):
    effect_type: Literal['RETRIEVE_FROM_DISCARD'] = 'RETRIEVE_FROM_DISCARD'
    count: int = Field(1, ge=1)
    selector: Selector = Selector.CHOICE
    card_type: Optional[CardType] = None
    pokemon_type: Optional[EnergyType] = None


class DiscardEnergyEffect(EffectBase):
    effect_type: Literal['DISCARD_ENERGY'] = 'DISCARD_ENERGY'
    target: TargetType = TargetType.SELF
    amount: Union[int, Literal['all']] = 1
    energy_type: Optional[EnergyType] = None

    @field_validator('target')
    @classmethod
    def validate_target(cls, v):
        if v not in (TargetType.SELF, TargetType.DEFENDING):
            raise ValueError("Discard energy target must be SELF or DEFENDING")
        return v


class DamageModifierEffect(EffectBase):
    effect_type: Literal['DAMAGE_MODIFIER'] = 'DAMAGE_MODIFIER'
    modifier: int


class RecoilDamageEffect(EffectBase):
    effect_type: Literal['RECOIL_DAMAGE'] = 'RECOIL_DAMAGE'
    amount: int = Field(..., gt=0)


AbilityEffect = Annotated[
    Union[
        HealEffect,
        PreventDamageEffect,
        StatusConditionEffect,
        EnergyAccelerationEffect,
        SwitchPokemonEffect,
        DrawCardsEffect,
        SearchDeckEffect,
        BoostAttackEffect,
        BoostHpEffect,
        ReduceDamageEffect,
        DiscardFromHandEffect,
        AttachFromDiscardEffect,
        RetrieveFromDiscardEffect,
    ],
    Field(discriminator='effect_type'),
]

AttackEffect = Annotated[
    Union[
        DiscardEnergyEffect,
        StatusConditionEffect,
        DamageModifierEffect,
        HealEffect,
        PreventDamageEffect,
        RecoilDamageEffect,
        EnergyAccelerationEffect,
        SwitchPokemonEffect,
    ],
    Field(discriminator='effect_type'),
]


# ============================================================================
# 4. TRAINER EFFECTS
# ============================================================================

class TrainerEffectType(str, Enum):
    DRAW_CARDS = "DRAW_CARDS"
    SEARCH_DECK = "SEARCH_DECK"
    SHUFFLE_DECK = "SHUFFLE_DECK"
    LOOK_AT_DECK = "LOOK_AT_DECK"
    DISCARD_HAND = "DISCARD_HAND"
    RETRIEVE_FROM_DISCARD = "RETRIEVE_FROM_DISCARD"
    OPPONENT_DISCARDS = "OPPONENT_DISCARDS"
    SWITCH_ACTIVE = "SWITCH_ACTIVE"
    RETURN_TO_HAND = "RETURN_TO_HAND"
    RETURN_TO_DECK = "RETURN_TO_DECK"
    FORCE_SWITCH = "FORCE_SWITCH"
    EVOLVE_POKEMON = "EVOLVE_POKEMON"
    DEVOLVE_POKEMON = "DEVOLVE_POKEMON"
    PUT_INTO_PLAY = "PUT_INTO_PLAY"
    HEAL = "HEAL"
    CURE_STATUS = "CURE_STATUS"
    REMOVE_ENERGY = "REMOVE_ENERGY"
    RETRIEVE_ENERGY = "RETRIEVE_ENERGY"
    DISCARD_ENERGY = "DISCARD_ENERGY"
    REDUCE_DAMAGE = "REDUCE_DAMAGE"
    OPPONENT_DRAWS = "OPPONENT_DRAWS"
    OPPONENT_SHUFFLES_HAND = "OPPONENT_SHUFFLES_HAND"
    TRADE_CARDS = "TRADE_CARDS"


class TrainerEffect(BaseModel):
    model_config = {"frozen": True}

    effect_type: TrainerEffectType
    target: Optional[TargetType] = None
    value: Optional[int] = Field(None, description="Count or amount, meaning depends on effect_type")
    card_type: Optional[CardType] = None
    energy_type: Optional[EnergyType] = None
    required_conditions: List[Condition] = Field(default_factory=list)
    description: Optional[str] = None
