"""
Pokémon TCG Match Engine - Match Repository (repository.py)

The engine loads and saves Match aggregates through this interface. Per-match
serialisation of concurrent requests is the repository's job.
"""

from typing import Dict, Optional, Protocol

from models import Match


class MatchRepository(Protocol):
    def find_by_id(self, match_id: str) -> Optional[Match]:
        ...

    def save(self, match: Match) -> Match:
        ...


class InMemoryMatchRepository:
    """Dictionary-backed repository. Stores and returns deep copies."""

    def __init__(self):
        self._matches: Dict[str, Match] = {}

    def find_by_id(self, match_id: str) -> Optional[Match]:
        match = self._matches.get(match_id)
        return match.model_copy(deep=True) if match is not None else None

    def save(self, match: Match) -> Match:
        self._matches[match.id] = match.model_copy(deep=True)
        return match

    def __len__(self) -> int:
        return len(self._matches)
