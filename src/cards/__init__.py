"""
Pokémon TCG Match Engine - Cards Module
Static card definitions, card rules and the card lookup boundary.
"""

from cards.base import (
    Ability,
    AbilityActivationType,
    Attack,
    CardTemplate,
    Resistance,
    UsageLimit,
    Weakness,
)
from cards.registry import CardLookup, CardResolver, InMemoryCardCatalog
from cards.rules import CardRule, CardRuleEngine, CardRuleFactory, CardRuleType, RulePriority

__all__ = [
    'Ability',
    'AbilityActivationType',
    'Attack',
    'CardTemplate',
    'Resistance',
    'UsageLimit',
    'Weakness',
    'CardLookup',
    'CardResolver',
    'InMemoryCardCatalog',
    'CardRule',
    'CardRuleEngine',
    'CardRuleFactory',
    'CardRuleType',
    'RulePriority',
]
