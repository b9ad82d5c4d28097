"""
Engine interface the session server talks to.

An engine owns the grid rules and nothing else. The server keeps the
session state, hands it to the engine with every action and pushes what
comes back to the UI together with the resource snapshot.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class ActionResult:
    """Outcome of one action: the next session state and what to report."""
    new_state: dict
    # Lines for the session log, e.g. "Built Gas plant on slot 2"
    log: list[str] = field(default_factory=list)
    # False for a legal action that did not go through, such as an unaffordable build
    success: bool = True
    # Set once the last turn has been played and the score is final
    game_over: bool = False


class GameEngine(ABC):
    """
    Turn controller over a plain dict session state.

    The state holds only JSON values (plants, slots, money ledger, seasonal
    models, shock pool) so the server can send it as is and keep it across
    reconnects. Engines never touch the network; model rows fetched by the
    server are handed back through the engine's own hooks.
    """

    # A SwissGrid session is played by exactly one player
    player_count_range: tuple[int, int] = (1, 1)

    @abstractmethod
    def initial_state(self, player_ids: list[str], player_names: list[str]) -> dict:
        """Build a NOT_STARTED session with the starting plants and empty slots."""
        ...

    @abstractmethod
    def reset(self, state: dict) -> dict:
        """Refill the given dict with a fresh NOT_STARTED session and return it."""
        ...

    @abstractmethod
    def get_player_view(self, state: dict, player_id: str) -> dict:
        """
        The session as the UI should render it. Hidden parts, such as the
        undrawn shock pool, are left out.
        """
        ...

    @abstractmethod
    def get_valid_actions(self, state: dict, player_id: str) -> list[dict]:
        """Actions the player can send now; empty once the game has ended."""
        ...

    @abstractmethod
    def apply_action(self, state: dict, player_id: str, action: dict) -> ActionResult:
        """
        Apply a build, vote, shock reaction or turn action to a copy of the
        state. Raises ValueError for actions the current phase does not allow.
        """
        ...

    @abstractmethod
    def get_waiting_for(self, state: dict) -> list[str]:
        """Players the session is waiting on."""
        ...

    @abstractmethod
    def get_phase_info(self, state: dict) -> dict:
        """
        Phase summary for the status bar, e.g.
        {"phase": "build", "turn": 3, "remaining_turns": 7,
         "description": "Build, vote or end the turn"}
        """
        ...
