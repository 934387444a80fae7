"""
Pokémon TCG Match Engine - Configuration (config.py)
Game constants and runtime switches shared by every engine module.
"""

import os

# ============================================================================
# BOARD LIMITS
# ============================================================================

MAX_BENCH_SIZE = 5
MAX_PRIZE_CARDS = 6
MIN_TURN_NUMBER = 1

# ============================================================================
# MATCH SETUP
# ============================================================================

INITIAL_HAND_SIZE = 7
FIRST_PLAYER_FLIP_ID = "first-player"

# ============================================================================
# COIN FLIPS
# ============================================================================

MAX_COIN_FLIPS = 10          # cap for "until tails" and fixed counts
LCG_MULTIPLIER = 1664525
LCG_INCREMENT = 1013904223
LCG_MODULUS = 2 ** 32

# ============================================================================
# DAMAGE & STATUS
# ============================================================================

DAMAGE_COUNTER_VALUE = 10
DEFAULT_POISON_DAMAGE = 10
HEAVY_POISON_DAMAGE = 20
VALID_POISON_DAMAGE = (DEFAULT_POISON_DAMAGE, HEAVY_POISON_DAMAGE)
BURN_DAMAGE = 20
WEAKNESS_MULTIPLIER = 2
DEFAULT_RESISTANCE = 30
CONFUSION_SELF_DAMAGE = 30

# ============================================================================
# EFFECT DEFAULTS
# ============================================================================

DEFAULT_HEAL_AMOUNT = 20
DEFAULT_RETRIEVE_ENERGY_COUNT = 2
DEFAULT_DRAW_COUNT = 1

# ============================================================================
# LOGGING
# ============================================================================

LOG_DIR = os.environ.get("TCG_ENGINE_LOG_DIR", "logs")
LOG_LEVEL = os.environ.get("TCG_ENGINE_LOG_LEVEL", "DEBUG")
XRAY_ENABLED = os.environ.get("TCG_ENGINE_XRAY", "0") == "1"
XRAY_DIR = os.path.join(LOG_DIR, "xrays")
