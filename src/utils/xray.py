"""
X-Ray Logging System - Linear Match Trace

Complete visibility into every zone of a match (hands, decks and prizes
included) for debugging and auditing card movements.

Format: Continuous stream of Action -> Game State transitions.
"""

import os
from datetime import datetime
from typing import Optional

import config
from models import ActionSummary, CardInstance, GameState, PlayerGameState, PlayerIdentifier


class XRayLogger:
    """
    X-Ray Logger - one log file per match.

    Enabled by the engine when config.XRAY_ENABLED is set.
    """

    def __init__(self, match_id: str, resolver=None, xray_dir: Optional[str] = None):
        self.match_id = match_id
        self.resolver = resolver
        xray_dir = xray_dir or config.XRAY_DIR
        os.makedirs(xray_dir, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.log_path = os.path.join(xray_dir, f"xray_{match_id}_{timestamp}.log")

        with open(self.log_path, 'w', encoding='utf-8') as f:
            f.write("=" * 80 + "\n")
            f.write(f"X-RAY MATCH LOG - {match_id}\n")
            f.write(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
            f.write("=" * 80 + "\n\n")

    def _name(self, card_id: str) -> str:
        """'Charmander (card-004)', or the bare id without a resolver."""
        if self.resolver is None:
            return card_id
        return f"{self.resolver.get(card_id).name} ({card_id})"

    def _zone(self, label: str, cards) -> str:
        return f"{label} ({len(cards)}): [{', '.join(self._name(c) for c in cards)}]"

    def log_action(self, turn_number: int, action: ActionSummary) -> None:
        """Write an action header."""
        details = ", ".join(f"{k}={v}" for k, v in sorted(action.action_data.items()) if v is not None)
        with open(self.log_path, 'a', encoding='utf-8') as f:
            f.write("#" * 80 + "\n")
            f.write(f"[TURN {turn_number} | {action.player_id.value}] ACTION: {action.action_type.value}")
            f.write(f" {{{details}}}\n" if details else "\n")
            f.write("#" * 80 + "\n\n")

    def log_state(self, state: GameState) -> None:
        """Full snapshot, PLAYER1 first."""
        with open(self.log_path, 'a', encoding='utf-8') as f:
            f.write("=" * 80 + "\n")
            for player in (PlayerIdentifier.PLAYER1, PlayerIdentifier.PLAYER2):
                f.write(self._format_player(player, state.get_player_state(player)))
            phase = state.phase.value if state.phase else "-"
            f.write(f"[GLOBAL] turn={state.turn_number} phase={phase} current={state.current_player.value}\n")
            if state.coin_flip_state is not None:
                flips = ", ".join(r.result for r in state.coin_flip_state.results)
                f.write(f"Coin flip: {state.coin_flip_state.status.value} [{flips}]\n")
            f.write("=" * 80 + "\n\n")

    def _format_player(self, player: PlayerIdentifier, player_state: PlayerGameState) -> str:
        lines = [f"[{player.value}]"]
        lines.append(self._format_pokemon_line(player_state.active_pokemon, "ACTIVE"))
        for pokemon in player_state.bench:
            lines.append(self._format_pokemon_line(pokemon, pokemon.position.value))
        lines.append(self._zone("HAND", player_state.hand))
        lines.append(self._zone("PRIZES", player_state.prize_cards))
        lines.append(self._zone("DECK", player_state.deck))
        lines.append(self._zone("DISCARD", player_state.discard_pile))
        return "\n".join(lines) + "\n\n"

    def _format_pokemon_line(self, pokemon: Optional[CardInstance], label: str) -> str:
        """ACTIVE:  Charmander (card-004) | HP: 50/70 | Energy: [...] | Status: [...]"""
        if pokemon is None:
            return f"{label}: (Empty)"
        energy = ", ".join(self._name(e) for e in pokemon.attached_energy)
        status = ", ".join(sorted(s.value for s in pokemon.status_effects))
        return (f"{label}:  {self._name(pokemon.card_id)} | HP: {pokemon.current_hp}/{pokemon.max_hp} "
                f"| Energy: [{energy}] | Status: [{status}]")

    def log_game_end(self, winner_id: Optional[str], reason: str) -> None:
        with open(self.log_path, 'a', encoding='utf-8') as f:
            f.write("\n" + "=" * 80 + "\n")
            f.write("MATCH END\n")
            f.write("=" * 80 + "\n")
            f.write(f"Winner: {winner_id}\n")
            f.write(f"Reason: {reason}\n")
            f.write(f"Ended: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
            f.write("=" * 80 + "\n")
