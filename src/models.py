"""
Pokémon TCG Match Engine - Data Layer (models.py)
Defines the immutable "Snapshot" of a match.

Every runtime model here is frozen. Mutators never touch `self`: each
`with_*` method builds a new instance (re-running validation) and returns it,
so any GameState handed out can be replayed, compared or shared freely.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

import config


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FrozenModel(BaseModel):
    """Base for immutable snapshot models."""

    model_config = {"frozen": True}

    def _replace(self, **changes):
        """Return a validated copy with the given fields swapped."""
        data = {name: getattr(self, name) for name in type(self).model_fields}
        data.update(changes)
        return type(self)(**data)


# ============================================================================
# 1. ENUMS
# ============================================================================

class MatchState(str, Enum):
    """Match lifecycle states."""
    CREATED = "CREATED"
    WAITING_FOR_PLAYERS = "WAITING_FOR_PLAYERS"
    DECK_VALIDATION = "DECK_VALIDATION"
    MATCH_APPROVAL = "MATCH_APPROVAL"
    PRE_GAME_SETUP = "PRE_GAME_SETUP"
    DRAWING_CARDS = "DRAWING_CARDS"
    SET_PRIZE_CARDS = "SET_PRIZE_CARDS"
    SELECT_ACTIVE_POKEMON = "SELECT_ACTIVE_POKEMON"
    SELECT_BENCH_POKEMON = "SELECT_BENCH_POKEMON"
    FIRST_PLAYER_SELECTION = "FIRST_PLAYER_SELECTION"
    PLAYER_TURN = "PLAYER_TURN"
    BETWEEN_TURNS = "BETWEEN_TURNS"
    MATCH_ENDED = "MATCH_ENDED"
    CANCELLED = "CANCELLED"


class TurnPhase(str, Enum):
    """Phases inside a PLAYER_TURN."""
    DRAW = "DRAW"
    MAIN_PHASE = "MAIN_PHASE"
    ATTACK = "ATTACK"
    END = "END"
    SELECT_ACTIVE_POKEMON = "SELECT_ACTIVE_POKEMON"


class PlayerIdentifier(str, Enum):
    """Seat of a player inside a match."""
    PLAYER1 = "PLAYER1"
    PLAYER2 = "PLAYER2"

    def opponent(self) -> 'PlayerIdentifier':
        return PlayerIdentifier.PLAYER2 if self == PlayerIdentifier.PLAYER1 else PlayerIdentifier.PLAYER1


class PlayerActionType(str, Enum):
    """Every action a player can submit."""
    # Turn actions
    DRAW_CARD = "DRAW_CARD"
    PLAY_POKEMON = "PLAY_POKEMON"
    SET_ACTIVE_POKEMON = "SET_ACTIVE_POKEMON"
    ATTACH_ENERGY = "ATTACH_ENERGY"
    PLAY_TRAINER = "PLAY_TRAINER"
    EVOLVE_POKEMON = "EVOLVE_POKEMON"
    RETREAT = "RETREAT"
    USE_ABILITY = "USE_ABILITY"
    ATTACK = "ATTACK"
    GENERATE_COIN_FLIP = "GENERATE_COIN_FLIP"
    END_TURN = "END_TURN"
    SELECT_PRIZE = "SELECT_PRIZE"
    DRAW_PRIZE = "DRAW_PRIZE"
    CONCEDE = "CONCEDE"

    # Setup actions
    APPROVE_MATCH = "APPROVE_MATCH"
    DRAW_INITIAL_CARDS = "DRAW_INITIAL_CARDS"
    SET_PRIZE_CARDS = "SET_PRIZE_CARDS"
    COMPLETE_INITIAL_SETUP = "COMPLETE_INITIAL_SETUP"
    CONFIRM_FIRST_PLAYER = "CONFIRM_FIRST_PLAYER"


class ActionValidationError(str, Enum):
    """Reasons the state machine rejects an action."""
    INVALID_STATE = "INVALID_STATE"
    NOT_PLAYER_TURN = "NOT_PLAYER_TURN"
    INVALID_PHASE = "INVALID_PHASE"


class PokemonPosition(str, Enum):
    """Board slot of an in-play Pokémon."""
    ACTIVE = "ACTIVE"
    BENCH_0 = "BENCH_0"
    BENCH_1 = "BENCH_1"
    BENCH_2 = "BENCH_2"
    BENCH_3 = "BENCH_3"
    BENCH_4 = "BENCH_4"

    @classmethod
    def bench(cls, index: int) -> 'PokemonPosition':
        return cls(f"BENCH_{index}")

    @property
    def bench_index(self) -> Optional[int]:
        if self == PokemonPosition.ACTIVE:
            return None
        return int(self.value.split("_")[1])


class EnergyType(str, Enum):
    """Energy types for cost and weakness/resistance."""
    GRASS = "GRASS"
    FIRE = "FIRE"
    WATER = "WATER"
    LIGHTNING = "LIGHTNING"
    PSYCHIC = "PSYCHIC"
    FIGHTING = "FIGHTING"
    DARKNESS = "DARKNESS"
    METAL = "METAL"
    FAIRY = "FAIRY"
    DRAGON = "DRAGON"
    COLORLESS = "COLORLESS"


class CardType(str, Enum):
    """Card supertype classification."""
    POKEMON = "POKEMON"
    TRAINER = "TRAINER"
    ENERGY = "ENERGY"


class EvolutionStage(str, Enum):
    BASIC = "BASIC"
    STAGE_1 = "STAGE_1"
    STAGE_2 = "STAGE_2"


class TrainerType(str, Enum):
    ITEM = "ITEM"
    SUPPORTER = "SUPPORTER"
    STADIUM = "STADIUM"
    TOOL = "TOOL"


class StatusEffect(str, Enum):
    """Special conditions on an in-play Pokémon."""
    ASLEEP = "ASLEEP"
    CONFUSED = "CONFUSED"
    PARALYZED = "PARALYZED"
    POISONED = "POISONED"
    BURNED = "BURNED"


# Asleep, Confused and Paralyzed replace one another; Poisoned and Burned stack.
ROTATION_STATUSES = frozenset({StatusEffect.ASLEEP, StatusEffect.CONFUSED, StatusEffect.PARALYZED})


class WinCondition(str, Enum):
    """How a match was won."""
    PRIZE_CARDS = "PRIZE_CARDS"
    NO_POKEMON = "NO_POKEMON"
    DECK_OUT = "DECK_OUT"
    CONCEDE = "CONCEDE"


class EffectDuration(str, Enum):
    """How long a damage shield stays up."""
    THIS_TURN = "this_turn"
    NEXT_TURN = "next_turn"
    PERMANENT = "permanent"


# ============================================================================
# 2. CARD INSTANCE (A POKÉMON IN PLAY)
# ============================================================================

class CardInstance(FrozenModel):
    """
    A Pokémon in play.

    Damage counters are derived from max_hp - current_hp and never stored.
    """
    # Identity
    instance_id: str = Field(..., description="Unique in-play identity, survives evolution")
    card_id: str = Field(..., description="Card template reference")
    position: PokemonPosition = Field(..., description="Board slot")

    # HP
    current_hp: int = Field(..., description="Remaining HP (0 = knocked out)")
    max_hp: int = Field(..., description="Printed HP of the current stage")

    # Attachments / history
    attached_energy: Tuple[str, ...] = Field(default=(), description="Attached energy card ids")
    status_effects: FrozenSet[StatusEffect] = Field(default=frozenset())
    evolution_chain: Tuple[str, ...] = Field(default=(), description="Prior card ids, newest first")

    # Status bookkeeping
    poison_damage_amount: Optional[int] = Field(None, description="10 or 20, only while POISONED")
    evolved_at: Optional[int] = Field(None, description="Turn number of the last evolution")
    paralysis_clears_at_turn: Optional[int] = Field(None, description="Paralysis lifts at the end of this turn")

    @field_validator('instance_id')
    @classmethod
    def validate_instance_id(cls, v):
        if not v:
            raise ValueError("Instance ID is required")
        return v

    @field_validator('card_id')
    @classmethod
    def validate_card_id(cls, v):
        if not v:
            raise ValueError("Card ID is required")
        return v

    @field_validator('current_hp')
    @classmethod
    def validate_current_hp(cls, v):
        if v < 0:
            raise ValueError("Current HP cannot be negative")
        return v

    @field_validator('max_hp')
    @classmethod
    def validate_max_hp(cls, v):
        if v <= 0:
            raise ValueError("Max HP must be greater than 0")
        return v

    @model_validator(mode='after')
    def validate_hp_and_status(self):
        if self.current_hp > self.max_hp:
            raise ValueError("Current HP cannot exceed max HP")
        if self.poison_damage_amount is not None:
            if StatusEffect.POISONED not in self.status_effects:
                raise ValueError("Poison damage amount requires POISONED status")
            if self.poison_damage_amount not in config.VALID_POISON_DAMAGE:
                raise ValueError("Poison damage amount must be 10 or 20")
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def damage_taken(self) -> int:
        return self.max_hp - self.current_hp

    @property
    def damage_counters(self) -> int:
        return self.damage_taken // config.DAMAGE_COUNTER_VALUE

    @property
    def is_knocked_out(self) -> bool:
        return self.current_hp <= 0

    def has_status(self, status: Optional[StatusEffect] = None) -> bool:
        """True if the Pokémon has `status` (or any status when None)."""
        if status is None:
            return bool(self.status_effects)
        return status in self.status_effects

    def same_instance(self, other: Optional['CardInstance']) -> bool:
        return other is not None and other.instance_id == self.instance_id

    # ------------------------------------------------------------------
    # Mutators (return new instances)
    # ------------------------------------------------------------------

    def with_hp(self, current_hp: int) -> 'CardInstance':
        return self._replace(current_hp=current_hp)

    def with_damage(self, amount: int) -> 'CardInstance':
        """Apply damage, flooring HP at 0."""
        return self._replace(current_hp=max(0, self.current_hp - max(0, amount)))

    def with_healing(self, amount: int) -> 'CardInstance':
        """Heal damage, capped at max HP."""
        return self._replace(current_hp=min(self.max_hp, self.current_hp + max(0, amount)))

    def with_attached_energy(self, attached_energy) -> 'CardInstance':
        return self._replace(attached_energy=tuple(attached_energy))

    def with_position(self, position: PokemonPosition) -> 'CardInstance':
        return self._replace(position=position)

    def with_status_effect(
        self,
        status: StatusEffect,
        poison_damage: Optional[int] = None,
        turn_number: Optional[int] = None
    ) -> 'CardInstance':
        """
        Add a status effect.

        Asleep, Confused and Paralyzed replace each other. Poison records its
        per-checkup damage; Paralysis records the turn at whose end it lifts.
        """
        statuses = set(self.status_effects)
        changes: Dict[str, Any] = {}
        if status in ROTATION_STATUSES:
            statuses -= ROTATION_STATUSES
            changes['paralysis_clears_at_turn'] = None
        statuses.add(status)

        if status == StatusEffect.POISONED:
            changes['poison_damage_amount'] = poison_damage or config.DEFAULT_POISON_DAMAGE
        if status == StatusEffect.PARALYZED and turn_number is not None:
            changes['paralysis_clears_at_turn'] = turn_number + 1

        return self._replace(status_effects=frozenset(statuses), **changes)

    def without_status_effect(self, status: StatusEffect) -> 'CardInstance':
        changes: Dict[str, Any] = {'status_effects': self.status_effects - {status}}
        if status == StatusEffect.POISONED:
            changes['poison_damage_amount'] = None
        if status == StatusEffect.PARALYZED:
            changes['paralysis_clears_at_turn'] = None
        return self._replace(**changes)

    def with_cleared_status(self) -> 'CardInstance':
        """Remove every status effect and its bookkeeping."""
        return self._replace(
            status_effects=frozenset(),
            poison_damage_amount=None,
            paralysis_clears_at_turn=None,
        )

    def with_evolution(self, evolution_card_id: str, evolution_max_hp: int, turn_number: int) -> 'CardInstance':
        """
        Evolve into another card.

        Damage taken carries over as an absolute amount, so a Pokémon at 0 HP
        survives evolving into a card whose HP exceeds the damage taken.
        """
        new_current_hp = max(0, evolution_max_hp - self.damage_taken)
        return self._replace(
            card_id=evolution_card_id,
            max_hp=evolution_max_hp,
            current_hp=new_current_hp,
            evolution_chain=(self.card_id,) + self.evolution_chain,
            status_effects=frozenset(),
            poison_damage_amount=None,
            paralysis_clears_at_turn=None,
            evolved_at=turn_number,
        )


def renumber_bench(bench) -> Tuple[CardInstance, ...]:
    """Reassign BENCH_0..BENCH_{n-1} in list order."""
    return tuple(
        pokemon.with_position(PokemonPosition.bench(i)) if pokemon.position != PokemonPosition.bench(i) else pokemon
        for i, pokemon in enumerate(bench)
    )


# ============================================================================
# 3. PLAYER STATE
# ============================================================================

class PlayerGameState(FrozenModel):
    """One player's zones. Card zones hold template card ids."""
    deck: Tuple[str, ...] = Field(default=(), description="Ordered, top card first")
    hand: Tuple[str, ...] = Field(default=())
    active_pokemon: Optional[CardInstance] = None
    bench: Tuple[CardInstance, ...] = Field(default=())
    prize_cards: Tuple[str, ...] = Field(default=())
    discard_pile: Tuple[str, ...] = Field(default=())

    @model_validator(mode='after')
    def validate_board(self):
        if len(self.bench) > config.MAX_BENCH_SIZE:
            raise ValueError(f"Bench cannot have more than {config.MAX_BENCH_SIZE} Pokemon")
        if len(self.prize_cards) > config.MAX_PRIZE_CARDS:
            raise ValueError(f"Cannot have more than {config.MAX_PRIZE_CARDS} prize cards")
        if self.active_pokemon is not None and self.active_pokemon.position != PokemonPosition.ACTIVE:
            raise ValueError("Active Pokemon must have ACTIVE position")
        for i, pokemon in enumerate(self.bench):
            if pokemon.position != PokemonPosition.bench(i):
                raise ValueError(f"Bench Pokemon at index {i} must have position BENCH_{i}")
        return self

    # Queries

    def get_deck_count(self) -> int:
        return len(self.deck)

    def get_hand_count(self) -> int:
        return len(self.hand)

    def get_prize_cards_remaining(self) -> int:
        return len(self.prize_cards)

    def get_pokemon_in_play_count(self) -> int:
        return len(self.bench) + (1 if self.active_pokemon is not None else 0)

    def has_pokemon_in_play(self) -> bool:
        return self.get_pokemon_in_play_count() > 0

    def all_pokemon_in_play(self) -> List[CardInstance]:
        pokemon = [self.active_pokemon] if self.active_pokemon is not None else []
        return pokemon + list(self.bench)

    def find_pokemon(self, position: Optional[PokemonPosition]) -> Optional[CardInstance]:
        if position is None:
            return None
        if position == PokemonPosition.ACTIVE:
            return self.active_pokemon
        index = position.bench_index
        return self.bench[index] if index < len(self.bench) else None

    def find_pokemon_by_instance(self, instance_id: str) -> Optional[CardInstance]:
        for pokemon in self.all_pokemon_in_play():
            if pokemon.instance_id == instance_id:
                return pokemon
        return None

    # Mutators

    def with_deck(self, deck) -> 'PlayerGameState':
        return self._replace(deck=tuple(deck))

    def with_hand(self, hand) -> 'PlayerGameState':
        return self._replace(hand=tuple(hand))

    def with_active_pokemon(self, active_pokemon: Optional[CardInstance]) -> 'PlayerGameState':
        return self._replace(active_pokemon=active_pokemon)

    def with_bench(self, bench) -> 'PlayerGameState':
        return self._replace(bench=tuple(bench))

    def with_prize_cards(self, prize_cards) -> 'PlayerGameState':
        return self._replace(prize_cards=tuple(prize_cards))

    def with_discard_pile(self, discard_pile) -> 'PlayerGameState':
        return self._replace(discard_pile=tuple(discard_pile))

    def with_pokemon(self, pokemon: CardInstance) -> 'PlayerGameState':
        """Replace the in-play Pokémon sharing `pokemon`'s instance id."""
        if pokemon.same_instance(self.active_pokemon):
            return self.with_active_pokemon(pokemon.with_position(PokemonPosition.ACTIVE))
        bench = list(self.bench)
        for i, benched in enumerate(bench):
            if benched.instance_id == pokemon.instance_id:
                bench[i] = pokemon.with_position(PokemonPosition.bench(i))
                return self.with_bench(bench)
        raise ValueError(f"Pokemon {pokemon.instance_id} is not in play")


# ============================================================================
# 4. ACTION HISTORY
# ============================================================================

class ActionSummary(FrozenModel):
    """Immutable record of one executed action."""
    action_id: str
    player_id: PlayerIdentifier
    action_type: PlayerActionType
    timestamp: datetime = Field(default_factory=utc_now)
    action_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('action_id')
    @classmethod
    def validate_action_id(cls, v):
        if not v:
            raise ValueError("Action ID is required")
        return v


# ============================================================================
# 5. COIN FLIPS
# ============================================================================

class CoinFlipCountType(str, Enum):
    """How many coins an attack flips."""
    FIXED = "FIXED"
    UNTIL_TAILS = "UNTIL_TAILS"
    VARIABLE = "VARIABLE"


class VariableCoinCountSource(str, Enum):
    """Board quantity that sets a VARIABLE coin count."""
    ENERGY_ATTACHED = "ENERGY_ATTACHED"
    ENERGY_TYPE_ATTACHED = "ENERGY_TYPE_ATTACHED"
    BENCH_POKEMON = "BENCH_POKEMON"
    DAMAGE_COUNTERS = "DAMAGE_COUNTERS"
    HAND_SIZE = "HAND_SIZE"


class DamageCalculationType(str, Enum):
    """How flip results turn into damage."""
    BASE_DAMAGE = "BASE_DAMAGE"
    MULTIPLY_BY_HEADS = "MULTIPLY_BY_HEADS"
    CONDITIONAL_BONUS = "CONDITIONAL_BONUS"
    CONDITIONAL_SELF_DAMAGE = "CONDITIONAL_SELF_DAMAGE"
    STATUS_EFFECT_ONLY = "STATUS_EFFECT_ONLY"


class CoinFlipStatus(str, Enum):
    READY_TO_FLIP = "READY_TO_FLIP"
    FLIP_RESULT = "FLIP_RESULT"
    COMPLETED = "COMPLETED"


class CoinFlipContext(str, Enum):
    ATTACK = "ATTACK"
    STATUS_CHECK = "STATUS_CHECK"


class CoinFlipConfiguration(FrozenModel):
    """Parsed coin-flip rules of one attack."""
    count_type: CoinFlipCountType
    fixed_count: Optional[int] = Field(None, description="Coins to flip for FIXED")
    variable_source: Optional[VariableCoinCountSource] = None
    energy_type: Optional[EnergyType] = None
    damage_calculation_type: DamageCalculationType = DamageCalculationType.BASE_DAMAGE
    base_damage: int = 0
    damage_per_head: Optional[int] = None
    conditional_bonus: Optional[int] = None
    self_damage_on_tails: Optional[int] = None

    @model_validator(mode='after')
    def validate_configuration(self):
        if self.count_type == CoinFlipCountType.FIXED:
            if self.fixed_count is None:
                raise ValueError("Fixed count is required for FIXED coin flips")
            if not 1 <= self.fixed_count <= config.MAX_COIN_FLIPS:
                raise ValueError(f"Fixed count must be between 1 and {config.MAX_COIN_FLIPS}")
        if self.count_type == CoinFlipCountType.VARIABLE and self.variable_source is None:
            raise ValueError("Variable source is required for VARIABLE coin flips")
        if self.damage_calculation_type == DamageCalculationType.MULTIPLY_BY_HEADS and self.damage_per_head is None:
            raise ValueError("Damage per head is required for MULTIPLY_BY_HEADS")
        if self.base_damage < 0:
            raise ValueError("Base damage cannot be negative")
        return self


class CoinFlipResult(FrozenModel):
    flip_index: int
    result: Literal['heads', 'tails']
    seed: int

    def is_heads(self) -> bool:
        return self.result == 'heads'

    def is_tails(self) -> bool:
        return self.result == 'tails'


class CoinFlipState(FrozenModel):
    """
    A pending or finished coin flip.

    Results may be recorded and shown before both players approve; effects
    tied to the flip are only applied once both approval flags are set.
    """
    status: CoinFlipStatus = CoinFlipStatus.READY_TO_FLIP
    context: CoinFlipContext
    configuration: CoinFlipConfiguration
    results: Tuple[CoinFlipResult, ...] = ()
    attack_index: Optional[int] = None
    pokemon_instance_id: Optional[str] = None
    status_effect: Optional[StatusEffect] = None
    action_id: Optional[str] = None
    player1_has_approved: bool = False
    player2_has_approved: bool = False

    @model_validator(mode='after')
    def validate_context(self):
        if self.context == CoinFlipContext.ATTACK and self.attack_index is None:
            raise ValueError("Attack index is required for ATTACK coin flips")
        if self.context == CoinFlipContext.STATUS_CHECK and self.pokemon_instance_id is None:
            raise ValueError("Pokemon instance id is required for STATUS_CHECK coin flips")
        return self

    def with_status(self, status: CoinFlipStatus) -> 'CoinFlipState':
        return self._replace(status=status)

    def with_result(self, result: CoinFlipResult) -> 'CoinFlipState':
        return self._replace(results=self.results + (result,), status=CoinFlipStatus.FLIP_RESULT)

    def with_approval(self, player: PlayerIdentifier) -> 'CoinFlipState':
        if player == PlayerIdentifier.PLAYER1:
            return self._replace(player1_has_approved=True)
        return self._replace(player2_has_approved=True)

    def has_approved(self, player: PlayerIdentifier) -> bool:
        return self.player1_has_approved if player == PlayerIdentifier.PLAYER1 else self.player2_has_approved

    def has_both_approvals(self) -> bool:
        return self.player1_has_approved and self.player2_has_approved

    def get_heads_count(self) -> int:
        return sum(1 for r in self.results if r.is_heads())

    def get_tails_count(self) -> int:
        return sum(1 for r in self.results if r.is_tails())

    def is_complete(self) -> bool:
        """
        UNTIL_TAILS completes on the first tails, FIXED once every coin is
        flipped. VARIABLE depends on board state, so only the resolver knows.
        """
        count_type = self.configuration.count_type
        if count_type == CoinFlipCountType.UNTIL_TAILS:
            return self.get_tails_count() > 0
        if count_type == CoinFlipCountType.FIXED:
            return len(self.results) >= self.configuration.fixed_count
        return False


# ============================================================================
# 6. DAMAGE SHIELDS (PREVENTION / REDUCTION LEDGERS)
# ============================================================================

class DamageShieldEntry(FrozenModel):
    """A temporary prevent-damage or reduce-damage effect on one Pokémon."""
    amount: Union[int, Literal['all']]
    duration: EffectDuration = EffectDuration.NEXT_TURN
    turn_applied: int
    source: Optional[str] = Field(None, description="Card id that created the shield")

    def is_active(self, turn_number: int) -> bool:
        if self.duration == EffectDuration.PERMANENT:
            return True
        if self.duration == EffectDuration.THIS_TURN:
            return turn_number <= self.turn_applied
        return turn_number <= self.turn_applied + 1


ShieldLedger = Dict[PlayerIdentifier, Dict[str, DamageShieldEntry]]


def _ledger_with(ledger: ShieldLedger, player: PlayerIdentifier, instance_id: str,
                 entry: Optional[DamageShieldEntry]) -> ShieldLedger:
    updated = {p: dict(entries) for p, entries in ledger.items()}
    player_entries = updated.setdefault(player, {})
    if entry is None:
        player_entries.pop(instance_id, None)
    else:
        player_entries[instance_id] = entry
    return updated


def _ledger_active(ledger: ShieldLedger, turn_number: int) -> ShieldLedger:
    return {
        player: {iid: e for iid, e in entries.items() if e.is_active(turn_number)}
        for player, entries in ledger.items()
    }


# ============================================================================
# 7. GAME STATE
# ============================================================================

class GameState(FrozenModel):
    """
    The root snapshot of a running match.
    Replaced wholesale on every legal action.
    """
    player1_state: PlayerGameState
    player2_state: PlayerGameState
    turn_number: int = Field(1, description="Current turn number, starting at 1")
    phase: Optional[TurnPhase] = Field(TurnPhase.DRAW, description="None while between turns")
    current_player: PlayerIdentifier = PlayerIdentifier.PLAYER1
    last_action: Optional[ActionSummary] = None
    action_history: Tuple[ActionSummary, ...] = ()
    coin_flip_state: Optional[CoinFlipState] = None
    ability_usage_this_turn: Dict[PlayerIdentifier, FrozenSet[str]] = Field(default_factory=dict)
    damage_prevention: ShieldLedger = Field(default_factory=dict)
    damage_reduction: ShieldLedger = Field(default_factory=dict)

    @field_validator('turn_number')
    @classmethod
    def validate_turn_number(cls, v):
        if v < config.MIN_TURN_NUMBER:
            raise ValueError("Turn number must be at least 1")
        return v

    @model_validator(mode='after')
    def validate_history(self):
        if self.action_history and self.last_action is None:
            raise ValueError("If action history exists, last action must be set")
        return self

    # Queries

    def get_player_state(self, player: PlayerIdentifier) -> PlayerGameState:
        return self.player1_state if player == PlayerIdentifier.PLAYER1 else self.player2_state

    def get_opponent_state(self, player: PlayerIdentifier) -> PlayerGameState:
        return self.get_player_state(player.opponent())

    def get_current_player_state(self) -> PlayerGameState:
        return self.get_player_state(self.current_player)

    def actions_this_turn(self) -> List[ActionSummary]:
        """Actions recorded since the last END_TURN, oldest first."""
        actions: List[ActionSummary] = []
        for action in reversed(self.action_history):
            if action.action_type == PlayerActionType.END_TURN:
                break
            actions.append(action)
        actions.reverse()
        return actions

    def abilities_used(self, player: PlayerIdentifier) -> FrozenSet[str]:
        return self.ability_usage_this_turn.get(player, frozenset())

    def get_damage_prevention(self, player: PlayerIdentifier, instance_id: str) -> Optional[DamageShieldEntry]:
        entry = self.damage_prevention.get(player, {}).get(instance_id)
        return entry if entry is not None and entry.is_active(self.turn_number) else None

    def get_damage_reduction(self, player: PlayerIdentifier, instance_id: str) -> Optional[DamageShieldEntry]:
        entry = self.damage_reduction.get(player, {}).get(instance_id)
        return entry if entry is not None and entry.is_active(self.turn_number) else None

    # Mutators

    def with_player1_state(self, state: PlayerGameState) -> 'GameState':
        return self._replace(player1_state=state)

    def with_player2_state(self, state: PlayerGameState) -> 'GameState':
        return self._replace(player2_state=state)

    def with_player_state(self, player: PlayerIdentifier, state: PlayerGameState) -> 'GameState':
        if player == PlayerIdentifier.PLAYER1:
            return self.with_player1_state(state)
        return self.with_player2_state(state)

    def with_player_states(self, player: PlayerIdentifier, player_state: PlayerGameState,
                           opponent_state: PlayerGameState) -> 'GameState':
        """Swap both player states from `player`'s point of view."""
        if player == PlayerIdentifier.PLAYER1:
            return self._replace(player1_state=player_state, player2_state=opponent_state)
        return self._replace(player1_state=opponent_state, player2_state=player_state)

    def with_turn_number(self, turn_number: int) -> 'GameState':
        return self._replace(turn_number=turn_number)

    def with_phase(self, phase: Optional[TurnPhase]) -> 'GameState':
        return self._replace(phase=phase)

    def with_current_player(self, player: PlayerIdentifier) -> 'GameState':
        return self._replace(current_player=player)

    def with_action(self, action: ActionSummary) -> 'GameState':
        return self._replace(last_action=action, action_history=self.action_history + (action,))

    def with_coin_flip_state(self, coin_flip_state: Optional[CoinFlipState]) -> 'GameState':
        return self._replace(coin_flip_state=coin_flip_state)

    def with_ability_used(self, player: PlayerIdentifier, card_id: str) -> 'GameState':
        usage = dict(self.ability_usage_this_turn)
        usage[player] = usage.get(player, frozenset()) | {card_id}
        return self._replace(ability_usage_this_turn=usage)

    def with_ability_usage_reset(self) -> 'GameState':
        return self._replace(ability_usage_this_turn={})

    def with_damage_prevention(self, player: PlayerIdentifier, instance_id: str,
                               entry: Optional[DamageShieldEntry]) -> 'GameState':
        return self._replace(damage_prevention=_ledger_with(self.damage_prevention, player, instance_id, entry))

    def with_damage_reduction(self, player: PlayerIdentifier, instance_id: str,
                              entry: Optional[DamageShieldEntry]) -> 'GameState':
        return self._replace(damage_reduction=_ledger_with(self.damage_reduction, player, instance_id, entry))

    def with_expired_shields(self, turn_number: int) -> 'GameState':
        """Drop shields that are no longer active on `turn_number`."""
        return self._replace(
            damage_prevention=_ledger_active(self.damage_prevention, turn_number),
            damage_reduction=_ledger_active(self.damage_reduction, turn_number),
        )


# ============================================================================
# 8. MATCH AGGREGATE
# ============================================================================

class SetupStep(str, Enum):
    """Per-player steps of the pre-game flow, each completed once."""
    APPROVED = "approved"
    VALID_HAND = "valid_hand"
    PRIZES_SET = "prizes_set"
    READY = "ready"
    FIRST_PLAYER_CONFIRMED = "first_player_confirmed"


class SetupProgress(FrozenModel):
    """Which players have finished each pre-game step."""
    approved: FrozenSet[PlayerIdentifier] = frozenset()
    valid_hand: FrozenSet[PlayerIdentifier] = frozenset()
    prizes_set: FrozenSet[PlayerIdentifier] = frozenset()
    ready: FrozenSet[PlayerIdentifier] = frozenset()
    first_player_confirmed: FrozenSet[PlayerIdentifier] = frozenset()

    def has(self, step: SetupStep, player: PlayerIdentifier) -> bool:
        return player in getattr(self, step.value)

    def both(self, step: SetupStep) -> bool:
        return len(getattr(self, step.value)) == len(PlayerIdentifier)

    def mark(self, step: SetupStep, player: PlayerIdentifier) -> 'SetupProgress':
        return self._replace(**{step.value: getattr(self, step.value) | {player}})

class Match(BaseModel):
    """
    Aggregate root persisted by the repository collaborator.
    Owns exactly one GameState at a time.
    """
    id: str
    tournament_id: Optional[str] = None
    player1_id: Optional[str] = None
    player2_id: Optional[str] = None
    state: MatchState = MatchState.CREATED
    game_state: Optional[GameState] = None
    winner_id: Optional[str] = None
    win_condition: Optional[WinCondition] = None
    first_player: Optional[PlayerIdentifier] = None
    setup: SetupProgress = Field(default_factory=SetupProgress)
    cancellation_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    ended_at: Optional[datetime] = None

    def transition_to(self, new_state: MatchState) -> None:
        from errors import IllegalStateError
        from state_machine import MatchStateMachine

        if not MatchStateMachine.can_transition(self.state, new_state):
            raise IllegalStateError(
                f"Cannot transition match {self.id} from {self.state.value} to {new_state.value}",
                ActionValidationError.INVALID_STATE,
            )
        self.state = new_state
        self.updated_at = utc_now()

    def update_game_state(self, game_state: GameState) -> None:
        self.game_state = game_state
        self.updated_at = utc_now()

    def end_match(self, winner: PlayerIdentifier, win_condition: WinCondition) -> None:
        """Any live state may end, setup states included (a player can concede before turn 1)."""
        self.transition_to(MatchState.MATCH_ENDED)
        self.winner_id = self.get_player_id(winner)
        self.win_condition = win_condition
        self.ended_at = utc_now()

    def cancel(self, reason: Optional[str] = None) -> None:
        self.transition_to(MatchState.CANCELLED)
        self.cancellation_reason = reason
        self.ended_at = utc_now()

    def get_player_identifier(self, player_id: str) -> Optional[PlayerIdentifier]:
        if player_id is not None and player_id == self.player1_id:
            return PlayerIdentifier.PLAYER1
        if player_id is not None and player_id == self.player2_id:
            return PlayerIdentifier.PLAYER2
        return None

    def get_player_id(self, player: PlayerIdentifier) -> Optional[str]:
        return self.player1_id if player == PlayerIdentifier.PLAYER1 else self.player2_id

    def is_finished(self) -> bool:
        return self.state in (MatchState.MATCH_ENDED, MatchState.CANCELLED)


# ============================================================================
# 9. ACTION DATA (REQUEST PAYLOADS)
# ============================================================================

class ActionData(BaseModel):
    """Base for action payloads. Accepts snake_case or camelCase keys."""
    model_config = {"frozen": True, "alias_generator": to_camel, "populate_by_name": True}


class RetreatActionData(ActionData):
    target: PokemonPosition = Field(..., description="Bench slot to promote")
    selected_energy_ids: Optional[List[str]] = None


class EvolveActionData(ActionData):
    target: PokemonPosition
    evolution_card_id: str


class AttachEnergyActionData(ActionData):
    energy_card_id: str
    target: PokemonPosition


class PlayPokemonActionData(ActionData):
    card_id: str


class SetActivePokemonActionData(ActionData):
    target: PokemonPosition = Field(..., description="Bench slot to promote")


class SetupActivePokemonActionData(ActionData):
    """Opening active Pokémon, chosen from the hand before the first turn."""
    card_id: str


class SelectPrizeActionData(ActionData):
    prize_index: int = 0


class CoinFlipActionData(ActionData):
    action_id: Optional[str] = None


class AbilityActionData(ActionData):
    card_id: str
    target: PokemonPosition = Field(..., description="Slot of the Pokémon using the ability")
    pokemon_instance_id: Optional[str] = None
    target_pokemon: Optional[PokemonPosition] = None
    selected_card_ids: Optional[List[str]] = None
    hand_card_ids: Optional[List[str]] = None
    bench_position: Optional[PokemonPosition] = None


class TrainerActionData(ActionData):
    card_id: str
    target: Optional[PokemonPosition] = None
    hand_card_id: Optional[str] = None
    hand_card_index: Optional[int] = None
    energy_card_id: Optional[str] = None
    selected_card_ids: Optional[List[str]] = None
    bench_position: Optional[PokemonPosition] = None
    evolution_card_id: Optional[str] = None
    pokemon_card_id: Optional[str] = None
    discard_card_ids: Optional[List[str]] = None


class AttackActionData(ActionData):
    attack_index: int
    selected_energy_ids: Optional[List[str]] = Field(None, description="Energy paid for discard costs")
    selected_card_ids: Optional[List[str]] = None
    target_pokemon: Optional[PokemonPosition] = None
    bench_position: Optional[PokemonPosition] = None


# ============================================================================
# 10. NEGOTIATION PAYLOADS
# ============================================================================

class SelectionRequirement(ActionData):
    amount: int
    energy_type: Optional[EnergyType] = None
    target: Optional[str] = None


class SelectionRequiredPayload(ActionData):
    """Body of a SelectionRequiredError."""
    error: str = "ENERGY_SELECTION_REQUIRED"
    message: str
    requirement: SelectionRequirement
    available_energy: List[str] = Field(default_factory=list)
