"""
Pokémon TCG Match Engine - Static Card Rules (cards/rules.py)

Always-on modifiers and restrictions printed on a card ("This Pokémon can't
retreat", "Prevent all damage done to this Pokémon by attacks", ...).

When several rules touch the same decision they are applied from the
highest priority tier down; rules sharing a tier keep declaration order.
"""

from enum import Enum
from typing import Dict, List, Optional, Sequence, TYPE_CHECKING

from pydantic import BaseModel, Field, model_validator

from models import CardInstance, EnergyType, StatusEffect
from utils.logger import setup_logger

if TYPE_CHECKING:
    from cards.registry import CardResolver

logger = setup_logger(__name__)


# ============================================================================
# 1. RULE DEFINITIONS
# ============================================================================

class CardRuleType(str, Enum):
    # Movement
    CANNOT_RETREAT = "CANNOT_RETREAT"
    FORCED_SWITCH = "FORCED_SWITCH"
    FREE_RETREAT = "FREE_RETREAT"
    # Attack
    CANNOT_ATTACK = "CANNOT_ATTACK"
    ATTACK_COST_MODIFICATION = "ATTACK_COST_MODIFICATION"
    ATTACK_RESTRICTION = "ATTACK_RESTRICTION"
    # Damage
    DAMAGE_IMMUNITY = "DAMAGE_IMMUNITY"
    DAMAGE_REDUCTION_RULE = "DAMAGE_REDUCTION_RULE"
    INCREASED_DAMAGE_TAKEN = "INCREASED_DAMAGE_TAKEN"
    # Status
    STATUS_IMMUNITY = "STATUS_IMMUNITY"
    EFFECT_IMMUNITY = "EFFECT_IMMUNITY"
    CANNOT_BE_CONFUSED = "CANNOT_BE_CONFUSED"
    # Prize
    EXTRA_PRIZE_CARDS = "EXTRA_PRIZE_CARDS"
    NO_PRIZE_CARDS = "NO_PRIZE_CARDS"
    # Evolution
    CAN_EVOLVE_TURN_ONE = "CAN_EVOLVE_TURN_ONE"
    CANNOT_EVOLVE = "CANNOT_EVOLVE"
    SKIP_EVOLUTION_STAGE = "SKIP_EVOLUTION_STAGE"
    # Play
    PLAY_RESTRICTION = "PLAY_RESTRICTION"
    ONCE_PER_GAME = "ONCE_PER_GAME"
    DISCARD_AFTER_USE = "DISCARD_AFTER_USE"
    # Energy
    ENERGY_COST_REDUCTION = "ENERGY_COST_REDUCTION"
    EXTRA_ENERGY_ATTACHMENT = "EXTRA_ENERGY_ATTACHMENT"
    ENERGY_TYPE_CHANGE = "ENERGY_TYPE_CHANGE"


class RulePriority(str, Enum):
    HIGHEST = "HIGHEST"
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"
    LOWEST = "LOWEST"

    @property
    def numeric_value(self) -> int:
        return PRIORITY_VALUES[self]


PRIORITY_VALUES: Dict[RulePriority, int] = {
    RulePriority.HIGHEST: 5,
    RulePriority.HIGH: 4,
    RulePriority.NORMAL: 3,
    RulePriority.LOW: 2,
    RulePriority.LOWEST: 1,
}

RULE_CATEGORIES: Dict[str, List[CardRuleType]] = {
    'movement': [CardRuleType.CANNOT_RETREAT, CardRuleType.FORCED_SWITCH, CardRuleType.FREE_RETREAT],
    'attack': [CardRuleType.CANNOT_ATTACK, CardRuleType.ATTACK_COST_MODIFICATION, CardRuleType.ATTACK_RESTRICTION],
    'damage': [CardRuleType.DAMAGE_IMMUNITY, CardRuleType.DAMAGE_REDUCTION_RULE, CardRuleType.INCREASED_DAMAGE_TAKEN],
    'status': [CardRuleType.STATUS_IMMUNITY, CardRuleType.EFFECT_IMMUNITY, CardRuleType.CANNOT_BE_CONFUSED],
    'prize': [CardRuleType.EXTRA_PRIZE_CARDS, CardRuleType.NO_PRIZE_CARDS],
    'evolution': [CardRuleType.CAN_EVOLVE_TURN_ONE, CardRuleType.CANNOT_EVOLVE, CardRuleType.SKIP_EVOLUTION_STAGE],
    'play': [CardRuleType.PLAY_RESTRICTION, CardRuleType.ONCE_PER_GAME, CardRuleType.DISCARD_AFTER_USE],
    'energy': [CardRuleType.ENERGY_COST_REDUCTION, CardRuleType.EXTRA_ENERGY_ATTACHMENT, CardRuleType.ENERGY_TYPE_CHANGE],
}


def get_rule_category(rule_type: CardRuleType) -> Optional[str]:
    for category, rule_types in RULE_CATEGORIES.items():
        if rule_type in rule_types:
            return category
    return None


class RuleMetadata(BaseModel):
    """Rule parameters. Only the fields relevant to the rule type are set."""
    model_config = {"frozen": True}

    prize_count: Optional[int] = None
    cost_reduction: Optional[int] = None
    cost_modifier: Optional[int] = None
    reduction_amount: Optional[int] = None
    damage_increase: Optional[int] = None
    extra_attachments: Optional[int] = None
    immune_statuses: List[StatusEffect] = Field(default_factory=list, description="Empty = all statuses")
    attack_names: List[str] = Field(default_factory=list)
    energy_type: Optional[EnergyType] = None
    condition: Optional[str] = None


class CardRule(BaseModel):
    model_config = {"frozen": True}

    rule_type: CardRuleType
    priority: RulePriority = RulePriority.NORMAL
    metadata: RuleMetadata = Field(default_factory=RuleMetadata)
    description: Optional[str] = None

    @model_validator(mode='after')
    def validate_metadata(self):
        md = self.metadata
        if self.rule_type == CardRuleType.EXTRA_PRIZE_CARDS and (md.prize_count is None or md.prize_count < 1):
            raise ValueError("EXTRA_PRIZE_CARDS requires prize_count of at least 1")
        if md.cost_reduction is not None and md.cost_reduction < 0:
            raise ValueError("cost_reduction cannot be negative")
        if md.reduction_amount is not None and md.reduction_amount < 0:
            raise ValueError("reduction_amount cannot be negative")
        if md.extra_attachments is not None and md.extra_attachments < 1:
            raise ValueError("extra_attachments must be at least 1")
        return self

    @property
    def category(self) -> Optional[str]:
        return get_rule_category(self.rule_type)


class CardRuleFactory:
    """Builders with each rule type's default priority."""

    @staticmethod
    def cannot_retreat(condition: Optional[str] = None) -> CardRule:
        return CardRule(rule_type=CardRuleType.CANNOT_RETREAT, priority=RulePriority.HIGH,
                        metadata=RuleMetadata(condition=condition))

    @staticmethod
    def free_retreat(condition: Optional[str] = None) -> CardRule:
        return CardRule(rule_type=CardRuleType.FREE_RETREAT, priority=RulePriority.NORMAL,
                        metadata=RuleMetadata(condition=condition))

    @staticmethod
    def cannot_attack(condition: Optional[str] = None) -> CardRule:
        return CardRule(rule_type=CardRuleType.CANNOT_ATTACK, priority=RulePriority.HIGH,
                        metadata=RuleMetadata(condition=condition))

    @staticmethod
    def attack_restriction(attack_names: Sequence[str]) -> CardRule:
        return CardRule(rule_type=CardRuleType.ATTACK_RESTRICTION,
                        metadata=RuleMetadata(attack_names=list(attack_names)))

    @staticmethod
    def damage_immunity(condition: Optional[str] = None) -> CardRule:
        return CardRule(rule_type=CardRuleType.DAMAGE_IMMUNITY, priority=RulePriority.HIGH,
                        metadata=RuleMetadata(condition=condition))

    @staticmethod
    def damage_reduction(amount: int) -> CardRule:
        return CardRule(rule_type=CardRuleType.DAMAGE_REDUCTION_RULE,
                        metadata=RuleMetadata(reduction_amount=amount))

    @staticmethod
    def increased_damage_taken(amount: int) -> CardRule:
        return CardRule(rule_type=CardRuleType.INCREASED_DAMAGE_TAKEN,
                        metadata=RuleMetadata(damage_increase=amount))

    @staticmethod
    def status_immunity(statuses: Sequence[StatusEffect] = ()) -> CardRule:
        return CardRule(rule_type=CardRuleType.STATUS_IMMUNITY, priority=RulePriority.HIGH,
                        metadata=RuleMetadata(immune_statuses=list(statuses)))

    @staticmethod
    def effect_immunity() -> CardRule:
        return CardRule(rule_type=CardRuleType.EFFECT_IMMUNITY)

    @staticmethod
    def extra_prize_cards(count: int = 1) -> CardRule:
        return CardRule(rule_type=CardRuleType.EXTRA_PRIZE_CARDS, metadata=RuleMetadata(prize_count=count))

    @staticmethod
    def no_prize_cards() -> CardRule:
        return CardRule(rule_type=CardRuleType.NO_PRIZE_CARDS)

    @staticmethod
    def can_evolve_turn_one() -> CardRule:
        return CardRule(rule_type=CardRuleType.CAN_EVOLVE_TURN_ONE)

    @staticmethod
    def cannot_evolve() -> CardRule:
        return CardRule(rule_type=CardRuleType.CANNOT_EVOLVE)

    @staticmethod
    def once_per_game() -> CardRule:
        return CardRule(rule_type=CardRuleType.ONCE_PER_GAME, priority=RulePriority.HIGHEST)

    @staticmethod
    def energy_cost_reduction(amount: int) -> CardRule:
        return CardRule(rule_type=CardRuleType.ENERGY_COST_REDUCTION, metadata=RuleMetadata(cost_reduction=amount))

    @staticmethod
    def extra_energy_attachment(count: int = 1) -> CardRule:
        return CardRule(rule_type=CardRuleType.EXTRA_ENERGY_ATTACHMENT,
                        metadata=RuleMetadata(extra_attachments=count))


def sort_by_priority(rules: Sequence[CardRule]) -> List[CardRule]:
    """Highest tier first; stable within a tier."""
    return sorted(rules, key=lambda r: -r.priority.numeric_value)


# ============================================================================
# 2. RULE ENGINE
# ============================================================================

class CardRuleEngine:
    """
    Answers rule questions about an in-play Pokémon by reading the static
    rules on its card template.
    """

    def __init__(self, resolver: 'CardResolver'):
        self.resolver = resolver

    def rules_for(self, pokemon: Optional[CardInstance]) -> List[CardRule]:
        if pokemon is None:
            return []
        return sort_by_priority(self.resolver.get(pokemon.card_id).card_rules)

    def rules_of_type(self, pokemon: Optional[CardInstance], rule_type: CardRuleType) -> List[CardRule]:
        return [r for r in self.rules_for(pokemon) if r.rule_type == rule_type]

    def has_rule(self, pokemon: Optional[CardInstance], rule_type: CardRuleType) -> bool:
        return bool(self.rules_of_type(pokemon, rule_type))

    # Movement

    def can_retreat(self, pokemon: CardInstance) -> bool:
        return not self.has_rule(pokemon, CardRuleType.CANNOT_RETREAT)

    def has_free_retreat(self, pokemon: CardInstance) -> bool:
        return self.has_rule(pokemon, CardRuleType.FREE_RETREAT)

    # Attack

    def can_attack(self, pokemon: CardInstance, attack_name: Optional[str] = None) -> bool:
        if self.has_rule(pokemon, CardRuleType.CANNOT_ATTACK):
            return False
        if attack_name is not None:
            for rule in self.rules_of_type(pokemon, CardRuleType.ATTACK_RESTRICTION):
                if attack_name in rule.metadata.attack_names:
                    return False
        return True

    def attack_cost_delta(self, pokemon: CardInstance) -> int:
        """Net change to attack energy costs (negative = cheaper)."""
        delta = 0
        for rule in self.rules_for(pokemon):
            if rule.rule_type == CardRuleType.ATTACK_COST_MODIFICATION:
                delta += rule.metadata.cost_modifier or 0
            elif rule.rule_type == CardRuleType.ENERGY_COST_REDUCTION:
                delta -= rule.metadata.cost_reduction or 0
        return delta

    # Damage

    def modify_incoming_damage(self, pokemon: CardInstance, damage: int) -> int:
        for rule in self.rules_for(pokemon):
            if rule.rule_type == CardRuleType.DAMAGE_IMMUNITY:
                logger.debug("Damage to %s prevented by immunity", pokemon.instance_id)
                return 0
            if rule.rule_type == CardRuleType.DAMAGE_REDUCTION_RULE:
                damage -= rule.metadata.reduction_amount or 0
            elif rule.rule_type == CardRuleType.INCREASED_DAMAGE_TAKEN:
                damage += rule.metadata.damage_increase or 0
        return max(0, damage)

    # Status

    def is_status_immune(self, pokemon: CardInstance, status: StatusEffect) -> bool:
        if status == StatusEffect.CONFUSED and self.has_rule(pokemon, CardRuleType.CANNOT_BE_CONFUSED):
            return True
        for rule in self.rules_of_type(pokemon, CardRuleType.STATUS_IMMUNITY):
            if not rule.metadata.immune_statuses or status in rule.metadata.immune_statuses:
                return True
        return False

    def is_effect_immune(self, pokemon: CardInstance) -> bool:
        return self.has_rule(pokemon, CardRuleType.EFFECT_IMMUNITY)

    # Prize

    def prize_count_for_knockout(self, pokemon: CardInstance) -> int:
        if self.has_rule(pokemon, CardRuleType.NO_PRIZE_CARDS):
            return 0
        extra = sum(r.metadata.prize_count or 0 for r in self.rules_of_type(pokemon, CardRuleType.EXTRA_PRIZE_CARDS))
        return 1 + extra

    # Evolution

    def can_evolve(self, pokemon: CardInstance) -> bool:
        return not self.has_rule(pokemon, CardRuleType.CANNOT_EVOLVE)

    def can_evolve_turn_one(self, pokemon: CardInstance) -> bool:
        return self.has_rule(pokemon, CardRuleType.CAN_EVOLVE_TURN_ONE)

    # Energy

    def extra_energy_attachments(self, pokemon: Optional[CardInstance]) -> int:
        return sum(r.metadata.extra_attachments or 0
                   for r in self.rules_of_type(pokemon, CardRuleType.EXTRA_ENERGY_ATTACHMENT))
