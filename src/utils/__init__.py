"""
Utility modules for the Pokémon TCG Match Engine.
"""

from utils.logger import setup_logger

__all__ = [
    'setup_logger',
]
