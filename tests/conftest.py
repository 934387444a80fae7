"""
Pytest configuration and fixtures.
Provides a small card catalog and reusable game state setups for all tests.
"""

import sys
sys.path.insert(0, 'src')

import itertools

import pytest

from cards import (
    Ability,
    AbilityActivationType,
    Attack,
    CardResolver,
    CardRuleEngine,
    CardRuleFactory,
    CardTemplate,
    InMemoryCardCatalog,
    Resistance,
    Weakness,
)
from cards.effects import (
    BoostAttackEffect,
    DiscardEnergyEffect,
    DrawCardsEffect,
    HealEffect,
    PreventDamageEffect,
    StatusConditionEffect,
    SwitchPokemonEffect,
    TargetType,
    TrainerEffect,
    TrainerEffectType,
)
from coin_flips import CoinFlipResolver
from conditions import ConditionEvaluator
from engine import MatchEngine
from models import (
    CardInstance,
    CardType,
    CoinFlipResult,
    EnergyType,
    EvolutionStage,
    GameState,
    Match,
    MatchState,
    PlayerGameState,
    PlayerIdentifier,
    PokemonPosition,
    StatusEffect,
    TrainerType,
    TurnPhase,
)
from repository import InMemoryMatchRepository


MATCH_ID = "match-1"
ALICE = "alice"
BOB = "bob"


# ============================================================================
# CARD CATALOG
# ============================================================================

def _energy(card_id, energy_type):
    return CardTemplate(card_id=card_id, name=f"{energy_type.value.title()} Energy",
                        card_type=CardType.ENERGY, energy_type=energy_type)


def _trainer(card_id, name, trainer_type, *effects):
    return CardTemplate(card_id=card_id, name=name, card_type=CardType.TRAINER,
                        trainer_type=trainer_type, trainer_effects=list(effects))


def build_templates():
    """
    Catalog used across the suite.

    Pokémon:
    - charmander (FIRE 50 HP, weak to WATER): Scratch 10, Ember 30 (discard 1 FIRE)
    - charmeleon (Stage 1 from Charmander, 80 HP)
    - squirtle (WATER 60 HP, weak to LIGHTNING): Tackle 10, Bubble (flip for Paralysis)
    - pikachu (LIGHTNING 60 HP, resists METAL): Double Slap 20x heads on 2 coins
    - snorlax (COLORLESS 120 HP, cannot retreat, gives 2 prizes)
    - chansey (COLORLESS 100 HP): activated heal ability, free retreat
    - bibarel (COLORLESS 90 HP): activated draw ability
    - magmar (FIRE 70 HP): passive +10 to Fire attacks
    """
    pokemon = [
        CardTemplate(
            card_id="charmander", name="Charmander", card_type=CardType.POKEMON,
            pokemon_type=EnergyType.FIRE, stage=EvolutionStage.BASIC, hp=50, retreat_cost=1,
            weakness=Weakness(type=EnergyType.WATER),
            attacks=[
                Attack(name="Scratch", energy_cost=[EnergyType.COLORLESS], damage="10"),
                Attack(name="Ember", energy_cost=[EnergyType.FIRE, EnergyType.COLORLESS], damage="30",
                       text="Discard a Fire Energy attached to this Pokémon.",
                       effects=[DiscardEnergyEffect(target=TargetType.SELF, amount=1, energy_type=EnergyType.FIRE)]),
            ],
        ),
        CardTemplate(
            card_id="charmeleon", name="Charmeleon", card_type=CardType.POKEMON,
            pokemon_type=EnergyType.FIRE, stage=EvolutionStage.STAGE_1, evolves_from="Charmander",
            hp=80, retreat_cost=1, weakness=Weakness(type=EnergyType.WATER),
            attacks=[Attack(name="Slash", energy_cost=[EnergyType.COLORLESS, EnergyType.COLORLESS], damage="40")],
        ),
        CardTemplate(
            card_id="squirtle", name="Squirtle", card_type=CardType.POKEMON,
            pokemon_type=EnergyType.WATER, stage=EvolutionStage.BASIC, hp=60, retreat_cost=1,
            weakness=Weakness(type=EnergyType.LIGHTNING),
            attacks=[
                Attack(name="Tackle", energy_cost=[EnergyType.COLORLESS], damage="10"),
                Attack(name="Bubble", energy_cost=[EnergyType.WATER], damage="10",
                       text="Flip a coin. If heads, the Defending Pokémon is now Paralyzed."),
            ],
        ),
        CardTemplate(
            card_id="pikachu", name="Pikachu", card_type=CardType.POKEMON,
            pokemon_type=EnergyType.LIGHTNING, stage=EvolutionStage.BASIC, hp=60, retreat_cost=1,
            resistance=Resistance(type=EnergyType.METAL),
            attacks=[
                Attack(name="Double Slap", energy_cost=[EnergyType.COLORLESS], damage="20×",
                       text="Flip 2 coins. This attack does 20 damage times the number of heads."),
                Attack(name="Quick Attack", energy_cost=[EnergyType.LIGHTNING], damage="20",
                       effects=[StatusConditionEffect(target=TargetType.DEFENDING,
                                                      status_condition=StatusEffect.CONFUSED)]),
            ],
        ),
        CardTemplate(
            card_id="snorlax", name="Snorlax", card_type=CardType.POKEMON,
            pokemon_type=EnergyType.COLORLESS, stage=EvolutionStage.BASIC, hp=120, retreat_cost=4,
            attacks=[Attack(name="Body Slam", energy_cost=[EnergyType.COLORLESS] * 3, damage="60")],
            card_rules=[CardRuleFactory.cannot_retreat(), CardRuleFactory.extra_prize_cards(1)],
        ),
        CardTemplate(
            card_id="chansey", name="Chansey", card_type=CardType.POKEMON,
            pokemon_type=EnergyType.COLORLESS, stage=EvolutionStage.BASIC, hp=100, retreat_cost=2,
            ability=Ability(name="Soothing Aroma", effects=[HealEffect(target=TargetType.SELF, amount=30)]),
            attacks=[Attack(name="Pound", energy_cost=[EnergyType.COLORLESS], damage="20",
                            effects=[PreventDamageEffect(target=TargetType.SELF, amount=20)])],
            card_rules=[CardRuleFactory.free_retreat()],
        ),
        CardTemplate(
            card_id="bibarel", name="Bibarel", card_type=CardType.POKEMON,
            pokemon_type=EnergyType.COLORLESS, stage=EvolutionStage.BASIC, hp=90, retreat_cost=1,
            ability=Ability(name="Industrious Incisors", effects=[DrawCardsEffect(count=2)]),
            attacks=[Attack(name="Tail Smash", energy_cost=[EnergyType.COLORLESS], damage="30",
                            effects=[SwitchPokemonEffect()])],
        ),
        CardTemplate(
            card_id="magmar", name="Magmar", card_type=CardType.POKEMON,
            pokemon_type=EnergyType.FIRE, stage=EvolutionStage.BASIC, hp=70, retreat_cost=1,
            ability=Ability(name="Fire Stoker", activation_type=AbilityActivationType.PASSIVE,
                            effects=[BoostAttackEffect(target=TargetType.ALL_YOURS, modifier=10,
                                                       affected_types=[EnergyType.FIRE])]),
            attacks=[Attack(name="Smash", energy_cost=[EnergyType.COLORLESS], damage="10")],
        ),
    ]

    energy = [
        _energy("fire-energy", EnergyType.FIRE),
        _energy("water-energy", EnergyType.WATER),
        _energy("lightning-energy", EnergyType.LIGHTNING),
        _energy("grass-energy", EnergyType.GRASS),
    ]

    trainers = [
        _trainer("potion", "Potion", TrainerType.ITEM,
                 TrainerEffect(effect_type=TrainerEffectType.HEAL, target=TargetType.ACTIVE_YOURS, value=30)),
        _trainer("switch", "Switch", TrainerType.ITEM,
                 TrainerEffect(effect_type=TrainerEffectType.SWITCH_ACTIVE)),
        _trainer("energy-retrieval", "Energy Retrieval", TrainerType.ITEM,
                 TrainerEffect(effect_type=TrainerEffectType.RETRIEVE_ENERGY, value=2)),
        _trainer("hilda", "Hilda", TrainerType.SUPPORTER,
                 TrainerEffect(effect_type=TrainerEffectType.DRAW_CARDS, value=2)),
        _trainer("boss", "Boss's Orders", TrainerType.SUPPORTER,
                 TrainerEffect(effect_type=TrainerEffectType.FORCE_SWITCH)),
        # Draw listed first: discard must still run before it
        _trainer("research", "Professor's Research", TrainerType.SUPPORTER,
                 TrainerEffect(effect_type=TrainerEffectType.DRAW_CARDS, value=3),
                 TrainerEffect(effect_type=TrainerEffectType.DISCARD_HAND)),
        _trainer("ultra-ball", "Ultra Ball", TrainerType.ITEM,
                 TrainerEffect(effect_type=TrainerEffectType.SEARCH_DECK, value=1, card_type=CardType.POKEMON),
                 TrainerEffect(effect_type=TrainerEffectType.DISCARD_HAND, value=2)),
        _trainer("night-stretcher", "Night Stretcher", TrainerType.ITEM,
                 TrainerEffect(effect_type=TrainerEffectType.RETRIEVE_FROM_DISCARD, value=1,
                               card_type=CardType.POKEMON)),
        _trainer("full-heal", "Full Heal", TrainerType.ITEM,
                 TrainerEffect(effect_type=TrainerEffectType.CURE_STATUS, target=TargetType.ACTIVE_YOURS)),
        _trainer("crushing-hammer", "Crushing Hammer", TrainerType.ITEM,
                 TrainerEffect(effect_type=TrainerEffectType.REMOVE_ENERGY, target=TargetType.ACTIVE_OPPONENT)),
        _trainer("pokegear", "Pokégear 3.0", TrainerType.ITEM,
                 TrainerEffect(effect_type=TrainerEffectType.LOOK_AT_DECK, value=3)),
        _trainer("broken-card", "Broken Card", TrainerType.ITEM),
    ]
    return {t.card_id: t for t in pokemon + energy + trainers}


@pytest.fixture
def templates():
    return build_templates()


@pytest.fixture
def catalog(templates):
    return InMemoryCardCatalog(templates.values())


@pytest.fixture
def resolver(catalog):
    return CardResolver(catalog)


@pytest.fixture
def rules(resolver):
    return CardRuleEngine(resolver)


@pytest.fixture
def conditions(resolver):
    return ConditionEvaluator(resolver)


# ============================================================================
# STATE BUILDERS
# ============================================================================

_instance_ids = itertools.count(1)


@pytest.fixture
def make_pokemon(templates):
    """
    Factory for in-play Pokémon.

    make_pokemon("charmander", damage=20, energy=["fire-energy"], position=PokemonPosition.BENCH_0)
    """
    def _make(card_id, position=PokemonPosition.ACTIVE, damage=0, energy=(), statuses=(), instance_id=None):
        template = templates[card_id]
        pokemon = CardInstance(
            instance_id=instance_id or f"{card_id}-{next(_instance_ids)}",
            card_id=card_id,
            position=position,
            current_hp=template.hp - damage,
            max_hp=template.hp,
            attached_energy=tuple(energy),
        )
        for status in statuses:
            pokemon = pokemon.with_status_effect(status)
        return pokemon
    return _make


def bench_of(*pokemon):
    """Renumber Pokémon into BENCH_0.. slots."""
    return tuple(p.with_position(PokemonPosition.bench(i)) for i, p in enumerate(pokemon))


def player_state(active=None, bench=(), hand=(), deck=None, prizes=None, discard=()):
    return PlayerGameState(
        active_pokemon=active,
        bench=bench_of(*bench),
        hand=tuple(hand),
        deck=tuple(deck if deck is not None else ["grass-energy"] * 10),
        prize_cards=tuple(prizes if prizes is not None else ["grass-energy"] * 6),
        discard_pile=tuple(discard),
    )


@pytest.fixture
def battle_state(make_pokemon):
    """
    Mid-game state, PLAYER1 to act.

    Setup:
    - Turn 3, MAIN_PHASE, PLAYER1's turn
    - Player 1: Charmander active (2 Fire Energy), Squirtle on the bench
    - Player 2: Squirtle active, Pikachu on the bench
    - Both players: 10-card decks, 6 prizes
    """
    p1 = player_state(
        active=make_pokemon("charmander", energy=["fire-energy", "fire-energy"]),
        bench=[make_pokemon("squirtle")],
        hand=["fire-energy", "potion", "charmeleon", "hilda"],
    )
    p2 = player_state(
        active=make_pokemon("squirtle"),
        bench=[make_pokemon("pikachu")],
        hand=["water-energy"],
    )
    return GameState(
        player1_state=p1,
        player2_state=p2,
        turn_number=3,
        phase=TurnPhase.MAIN_PHASE,
        current_player=PlayerIdentifier.PLAYER1,
    )


# ============================================================================
# COIN FLIPS
# ============================================================================

class FixedCoins(CoinFlipResolver):
    """Coin resolver that replays a fixed sequence of results, cycling when exhausted."""

    def __init__(self, *results):
        self.results = list(results) or ['heads']
        self.calls = 0

    def generate_coin_flip(self, match_id, turn_number, action_id, flip_index):
        result = self.results[self.calls % len(self.results)]
        self.calls += 1
        return CoinFlipResult(flip_index=flip_index, result=result, seed=self.calls)


# ============================================================================
# ENGINE & REPOSITORY
# ============================================================================

@pytest.fixture
def repository():
    return InMemoryMatchRepository()


@pytest.fixture
def engine(repository, catalog):
    """Create a fresh MatchEngine over the test catalog."""
    return MatchEngine(repository, catalog)


@pytest.fixture
def store_match(repository):
    """Save a PLAYER_TURN match around the given GameState and return its id."""
    def _store(game_state, state=MatchState.PLAYER_TURN):
        match = Match(id=MATCH_ID, player1_id=ALICE, player2_id=BOB, state=state, game_state=game_state)
        repository.save(match)
        return MATCH_ID
    return _store
