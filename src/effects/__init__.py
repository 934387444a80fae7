"""
Pokémon TCG Match Engine - Effect Executors
Ability, trainer and attack resolution against immutable GameStates.

Executors are imported from their own modules (effects.ability, effects.trainer,
effects.attack); actions depends on effects.common, so this package stays empty.
"""
