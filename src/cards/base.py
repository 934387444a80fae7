"""
Pokémon TCG Match Engine - Card Templates (cards/base.py)
Static card data the engine reads through the card lookup collaborator.

A CardTemplate is the printed card: one model covers Pokémon, Trainer and
Energy cards, with the fields of the other kinds left empty.
"""

import re
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from cards.effects import AbilityEffect, AttackEffect, TrainerEffect
from cards.rules import CardRule
from models import CardType, EnergyType, EvolutionStage, TrainerType


# ============================================================================
# 1. ATTACKS & ABILITIES
# ============================================================================

class AbilityActivationType(str, Enum):
    PASSIVE = "PASSIVE"          # always on, read by other mechanics
    TRIGGERED = "TRIGGERED"      # fires on a game event
    ACTIVATED = "ACTIVATED"      # used with USE_ABILITY


class UsageLimit(str, Enum):
    ONCE_PER_TURN = "ONCE_PER_TURN"
    UNLIMITED = "UNLIMITED"


class Attack(BaseModel):
    model_config = {"frozen": True}

    name: str
    energy_cost: List[EnergyType] = Field(default_factory=list, description="COLORLESS is paid by any energy")
    damage: str = Field("", description="Printed damage: '30', '30+', '20×' or ''")
    text: str = ""
    effects: List[AttackEffect] = Field(default_factory=list)

    def base_damage(self) -> int:
        match = re.search(r'\d+', self.damage or "")
        return int(match.group()) if match else 0


class Ability(BaseModel):
    model_config = {"frozen": True}

    name: str
    text: str = ""
    activation_type: AbilityActivationType = AbilityActivationType.ACTIVATED
    usage_limit: UsageLimit = UsageLimit.ONCE_PER_TURN
    effects: List[AbilityEffect]
    trigger_event: Optional[str] = None

    @field_validator('effects')
    @classmethod
    def validate_effects(cls, v):
        if not v:
            raise ValueError("Ability must have at least one effect")
        return v

    @model_validator(mode='after')
    def validate_trigger(self):
        if self.activation_type == AbilityActivationType.TRIGGERED and not self.trigger_event:
            raise ValueError("Triggered abilities require a trigger event")
        return self


# ============================================================================
# 2. WEAKNESS / RESISTANCE
# ============================================================================

class Weakness(BaseModel):
    model_config = {"frozen": True}

    type: EnergyType
    modifier: str = Field("×2", description="'×2' doubles, '+20' adds")


class Resistance(BaseModel):
    model_config = {"frozen": True}

    type: EnergyType
    modifier: str = Field("-30", description="Subtracted from incoming damage")


# ============================================================================
# 3. CARD TEMPLATE
# ============================================================================

class CardTemplate(BaseModel):
    model_config = {"frozen": True}

    # Identity
    card_id: str
    name: str
    card_type: CardType

    # Pokémon
    pokemon_type: Optional[EnergyType] = None
    stage: Optional[EvolutionStage] = None
    evolves_from: Optional[str] = None
    hp: Optional[int] = None
    retreat_cost: int = 0
    weakness: Optional[Weakness] = None
    resistance: Optional[Resistance] = None
    attacks: List[Attack] = Field(default_factory=list)
    ability: Optional[Ability] = None
    card_rules: List[CardRule] = Field(default_factory=list)

    # Trainer
    trainer_type: Optional[TrainerType] = None
    trainer_effects: List[TrainerEffect] = Field(default_factory=list)

    # Energy
    energy_type: Optional[EnergyType] = None
    is_special_energy: bool = False

    @model_validator(mode='after')
    def validate_card(self):
        if self.card_type == CardType.POKEMON and (self.hp is None or self.hp <= 0):
            raise ValueError(f"Pokemon card {self.card_id} requires positive hp")
        if self.card_type == CardType.ENERGY and self.energy_type is None:
            raise ValueError(f"Energy card {self.card_id} requires energy_type")
        if self.retreat_cost < 0:
            raise ValueError("Retreat cost cannot be negative")
        return self

    def is_pokemon(self) -> bool:
        return self.card_type == CardType.POKEMON

    def is_trainer(self) -> bool:
        return self.card_type == CardType.TRAINER

    def is_energy(self) -> bool:
        return self.card_type == CardType.ENERGY

    def is_basic_pokemon(self) -> bool:
        return self.is_pokemon() and self.stage in (None, EvolutionStage.BASIC)

    def is_supporter(self) -> bool:
        return self.is_trainer() and self.trainer_type == TrainerType.SUPPORTER
