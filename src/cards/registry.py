"""
Pokémon TCG Match Engine - Card Registry
Boundary to the static card catalog.

The engine only needs `get_card_entity(card_id) -> CardTemplate`. Within a
single action, lookups go through a CardResolver that serves a caller
supplied id -> template map first and falls back to the catalog for
anything missing.

Usage:
    catalog = InMemoryCardCatalog.from_json("cards.json")
    resolver = CardResolver(catalog, cards_map={"sv1-1": template})
    template = resolver.get("sv1-1")
"""

import json
from typing import Dict, Iterable, List, Mapping, Optional, Protocol

from cards.base import CardTemplate
from errors import NotFoundError
from models import EnergyType
from utils.logger import setup_logger

logger = setup_logger(__name__)


class CardLookup(Protocol):
    """External card catalog collaborator."""

    def get_card_entity(self, card_id: str) -> CardTemplate:
        ...


# ============================================================================
# IN-MEMORY CATALOG
# ============================================================================

class InMemoryCardCatalog:
    """CardLookup backed by a dict of templates."""

    def __init__(self, templates: Iterable[CardTemplate] = ()):
        self._templates: Dict[str, CardTemplate] = {}
        for template in templates:
            self.register(template)

    @classmethod
    def from_dicts(cls, card_data: Iterable[Mapping]) -> 'InMemoryCardCatalog':
        return cls(CardTemplate.model_validate(data) for data in card_data)

    @classmethod
    def from_json(cls, json_path: str) -> 'InMemoryCardCatalog':
        """
        Load a catalog from a JSON file shaped {"cards": [...]}.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        with open(json_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        catalog = cls.from_dicts(data.get('cards', []))
        logger.info("Loaded %d cards from %s", len(catalog), json_path)
        return catalog

    def register(self, template: CardTemplate) -> None:
        self._templates[template.card_id] = template

    def get_card_entity(self, card_id: str) -> CardTemplate:
        template = self._templates.get(card_id)
        if template is None:
            raise NotFoundError(f"Card {card_id} not found")
        return template

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, card_id: str) -> bool:
        return card_id in self._templates


# ============================================================================
# PER-ACTION RESOLVER
# ============================================================================

class CardResolver:
    """Batch map first, catalog second. Fetched templates are memoised."""

    def __init__(self, lookup: CardLookup, cards_map: Optional[Mapping[str, CardTemplate]] = None):
        self.lookup = lookup
        self._cache: Dict[str, CardTemplate] = dict(cards_map or {})

    def get(self, card_id: str) -> CardTemplate:
        template = self._cache.get(card_id)
        if template is None:
            template = self.lookup.get_card_entity(card_id)
            if template is None:
                raise NotFoundError(f"Card {card_id} not found")
            self._cache[card_id] = template
        return template

    def get_many(self, card_ids: Iterable[str]) -> List[CardTemplate]:
        return [self.get(card_id) for card_id in card_ids]

    def energy_type_of(self, card_id: str) -> Optional[EnergyType]:
        """Energy type of an energy card, None for anything else."""
        template = self.get(card_id)
        return template.energy_type if template.is_energy() else None
