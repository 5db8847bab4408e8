"""
Explore Director - Main Entry Point

A single-player exploration loop: request an encounter, make a choice, and
watch the consequences land on a persistent player snapshot while an
adaptive AI Director paces the session.

This module provides the main entry point and the ExplorationGame class
that wires all subsystems together.
"""

import sys
from pathlib import Path

# Add the project root to the Python path for module discovery
_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import argparse
import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from src.ai.chapter_director import LLMChapterEventProvider
from src.ai.director import AIDirectorManager, DirectorConfig
from src.ai.llm_provider import LLMConfig, LLMProvider, get_llm_manager
from src.content_loader.snippet_repository import SnippetRepository, chaos_records, default_catalog
from src.data_models import PlayerState
from src.encounter.event_engine import (
    AnyChapterTrigger,
    CadenceChapterTrigger,
    ChanceChapterTrigger,
    ChaosEventTrigger,
    ChapterEventProvider,
    DefaultChapterEventProvider,
    EventEngine,
    SnippetEventEngine,
)
from src.explore.errors import ExplorationError, SaveError
from src.explore.explore_state_machine import ExploreStateMachine
from src.explore.explore_types import Chapter, Encounter, Error, ExplorePhase, RestNeeded
from src.game_state.session_manager import SessionManager
from src.game_state.state_store import PlayerStateStore
from src.narrative.consequence_interpreter import ConsequenceInterpreter
from src.narrative.reward_gateway import LedgerRewardGateway
from src.observability.run_log import get_run_log


# Configure logging
def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"


@dataclass
class GameConfig:
    """Configuration for an exploration session."""

    data_dir: Path = field(default_factory=lambda: Path("data"))
    content_file: Optional[Path] = None
    save_file: str = "player_save.json"

    # Player
    player_id: str = "jalmar"
    player_name: str = "Jalmar"
    location_id: Optional[str] = None
    biome: Optional[str] = None

    # Pacing
    fatigue_threshold: int = 5
    chapter_cadence: int = 4
    chapter_odds: float = 0.0
    chaos_odds: float = 0.10
    rng_seed: Optional[int] = None

    # Rest recovery
    rest_status_key: str = "well_rested"
    rest_duration_ms: Optional[int] = 1_800_000

    # Rewards
    inventory_capacity: Optional[int] = None

    # LLM Configuration
    llm_provider: str = "none"  # none, mock, anthropic, openai
    llm_model: Optional[str] = None

    # Runtime options
    verbose: bool = False

    def __post_init__(self):
        """Ensure paths are Path objects."""
        if isinstance(self.data_dir, str):
            self.data_dir = Path(self.data_dir)
        if isinstance(self.content_file, str):
            self.content_file = Path(self.content_file)


# =============================================================================
# EXPLORATION GAME
# =============================================================================


class ExplorationGame:
    """
    Wires the exploration subsystems for one player session.

    Attributes:
        config: The session configuration
        store: Authoritative player snapshot and clock
        repository: Snippet catalog
        rewards: Wallet, experience, inventory, and reputation ledger
        director: AI Director for difficulty and pacing
        machine: The exploration state machine
    """

    def __init__(
        self,
        config: Optional[GameConfig] = None,
        player: Optional[PlayerState] = None,
        clock: Optional[Callable[[], int]] = None,
        event_engine: Optional[EventEngine] = None,
        repository: Optional[SnippetRepository] = None,
    ):
        self.config = config or GameConfig()
        cfg = self.config

        self.store = PlayerStateStore(
            player
            or PlayerState(
                player_id=cfg.player_id,
                name=cfg.player_name,
                location_id=cfg.location_id,
                biome=cfg.biome,
            ),
            time_provider=clock,
        )
        self.repository = repository or self._load_repository()
        self.rewards = LedgerRewardGateway(inventory_capacity=cfg.inventory_capacity)
        self.interpreter = ConsequenceInterpreter(self.rewards)

        self.director_config = DirectorConfig(fatigue_threshold=cfg.fatigue_threshold)
        self.director = AIDirectorManager(self.store, self.director_config)

        self.rng = random.Random(cfg.rng_seed)
        if cfg.rng_seed is not None:
            get_run_log().set_seed(cfg.rng_seed)

        self.event_engine = event_engine or SnippetEventEngine(
            self.repository,
            director_config=self.director_config,
            chapter_trigger=AnyChapterTrigger(
                CadenceChapterTrigger(cfg.chapter_cadence),
                ChanceChapterTrigger(cfg.chapter_odds, self.rng),
            ),
            chapter_provider=self._build_chapter_provider(),
            clock=self.store.now,
            chaos_trigger=self._build_chaos_trigger(),
        )

        self.machine = ExploreStateMachine(
            store=self.store,
            repository=self.repository,
            interpreter=self.interpreter,
            director=self.director,
            event_engine=self.event_engine,
            rest_status_key=cfg.rest_status_key,
            rest_duration_ms=cfg.rest_duration_ms,
        )
        self.sessions = SessionManager(cfg.data_dir, cfg.save_file)

        logger.info(
            f"Exploration session ready for {cfg.player_id} "
            f"({len(self.repository)} snippets, chapters via {cfg.llm_provider})"
        )

    def _load_repository(self) -> SnippetRepository:
        if self.config.content_file:
            return SnippetRepository.from_file(self.config.content_file)
        return default_catalog()

    def _build_chaos_trigger(self) -> Optional[ChaosEventTrigger]:
        if self.config.chaos_odds <= 0.0:
            return None
        records = chaos_records()
        for record in records:
            if self.repository.get_record(record.snippet_id) is None:
                self.repository.register(record)
        return ChaosEventTrigger(
            records, odds=self.config.chaos_odds, rng=self.rng, director_config=self.director_config
        )

    def _build_chapter_provider(self) -> ChapterEventProvider:
        fallback = DefaultChapterEventProvider()
        if self.config.llm_provider == "none":
            return fallback

        provider = LLMProvider(self.config.llm_provider)
        llm_config = LLMConfig(provider=provider)
        if self.config.llm_model:
            llm_config.model = self.config.llm_model
        elif provider == LLMProvider.OPENAI:
            llm_config.model = DEFAULT_OPENAI_MODEL
        return LLMChapterEventProvider(get_llm_manager(llm_config), fallback=fallback)

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def save(self) -> Path:
        return self.sessions.save(self.store.current(), self.store.now(), rewards=self.rewards.to_dict())

    def load(self) -> PlayerState:
        """Restore the player snapshot and the reward ledger from the save."""
        saved = self.sessions.load_save()
        self.rewards.restore(saved.rewards)
        return self.store.replace(saved.player)

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_full_state(self) -> dict[str, Any]:
        player = self.store.current()
        return {
            "phase": self.machine.phase.kind.value,
            "player": player.to_dict(),
            "history": [entry.to_dict() for entry in self.machine.history],
            "difficulty": self.director.get_current_difficulty().value,
            "playstyle": self.director.get_playstyle().value,
            "seeds": self.rewards.seeds,
            "experience": self.rewards.experience,
            "inventory": dict(self.rewards.inventory),
        }

    def status(self) -> str:
        """Human-readable status summary."""
        player = self.store.current()
        now = self.store.now()
        active = sorted(player.active_status_keys(now))
        lines = [
            "",
            "=" * 60,
            f"{player.name or player.player_id} - phase: {self.machine.phase.describe()}",
            "=" * 60,
            f"Difficulty: {self.director.get_current_difficulty().value}  "
            f"Playstyle: {self.director.get_playstyle().value}  "
            f"Events since rest: {self.director.get_events_since_rest()}/{self.director_config.fatigue_threshold}",
            f"Seeds: {self.rewards.seeds}  Experience: {self.rewards.experience}  "
            f"Items: {self.rewards.inventory_count}",
            f"Status effects: {', '.join(active) if active else 'none'}",
            f"Encounters resolved: {len(self.machine.history)}",
        ]
        return "\n".join(lines)


# =============================================================================
# INTERACTIVE CLI
# =============================================================================


def describe_phase(phase: ExplorePhase) -> str:
    """Render the active phase for the terminal."""
    if isinstance(phase, Encounter):
        lines = [f"\n== {phase.title} ==", phase.snippet.event_text]
        lines.extend(f"  [{i}] {text}" for i, text in enumerate(phase.snippet.choice_options))
        return "\n".join(lines)
    if isinstance(phase, Chapter):
        response = phase.response
        lines = [f"\n** {response.world_event_title} **", response.world_event_summary]
        if phase.snippet is not None:
            lines.append(phase.snippet.event_text)
            lines.extend(f"  [{i}] {text}" for i, text in enumerate(phase.snippet.choice_options))
        return "\n".join(lines)
    if isinstance(phase, RestNeeded):
        return f"You are weary after {phase.events_since_rest} adventures. Type 'rest' to recover."
    if isinstance(phase, Error):
        return f"Something went wrong: {phase.message}. Type 'explore' to try again."
    return f"[{phase.describe()}]"


class ExplorationCLI:
    """Interactive command-line interface for the exploration loop."""

    def __init__(self, game: ExplorationGame):
        self.game = game
        self.running = False
        self.commands = {
            "explore": self.cmd_explore,
            "choose": self.cmd_choose,
            "rest": self.cmd_rest,
            "status": self.cmd_status,
            "history": self.cmd_history,
            "save": self.cmd_save,
            "load": self.cmd_load,
            "log": self.cmd_log,
            "help": self.cmd_help,
            "quit": self.cmd_quit,
            "exit": self.cmd_quit,
        }

    def run(self) -> None:
        """Run the interactive CLI loop."""
        self.running = True
        print("\n" + "=" * 60)
        print("EXPLORE DIRECTOR - Interactive Mode")
        print("=" * 60)
        print("Type 'help' for available commands, 'quit' to exit.\n")

        while self.running:
            try:
                user_input = input(f"[{self.game.machine.phase.kind.value}]> ").strip()
                if not user_input:
                    continue

                self.process_command(user_input)

            except KeyboardInterrupt:
                print("\nInterrupted. Type 'quit' to exit.")
            except EOFError:
                self.running = False

        print("\nSafe travels, little one!")

    def process_command(self, user_input: str) -> None:
        """Process a user command."""
        parts = user_input.split(maxsplit=1)
        cmd = parts[0].lower()
        args = parts[1] if len(parts) > 1 else ""

        if cmd not in self.commands:
            print(f"Unknown command: {cmd}. Type 'help' for available commands.")
            return
        try:
            self.commands[cmd](args)
        except ExplorationError as e:
            print(f"Not now: {e}")

    def cmd_help(self, args: str) -> None:
        """Show help information."""
        print("""
Available Commands:
  explore     - Look for the next encounter
  choose N    - Pick option N of the current encounter
  rest        - Rest when weary
  status      - Show player status
  history     - Show resolved encounters
  save / load - Save or load the player snapshot
  log         - Show the session event log
  help        - Show this help
  quit/exit   - Exit the game
""")

    def cmd_explore(self, args: str) -> None:
        print(describe_phase(self.game.machine.begin_exploration()))

    def cmd_choose(self, args: str) -> None:
        try:
            index = int(args.strip())
        except ValueError:
            print("Usage: choose N (e.g., 'choose 0')")
            return
        summary = self.game.machine.choose_option(index)
        print(f"\n{summary.title}: {summary.choice_text or 'nothing happened'}")
        for line in summary.reward_summaries:
            print(f"  - {line}")
        self.game.machine.continue_after_resolution()

    def cmd_rest(self, args: str) -> None:
        for line in self.game.machine.rest():
            print(f"  - {line}")

    def cmd_status(self, args: str) -> None:
        print(self.game.status())

    def cmd_history(self, args: str) -> None:
        history = self.game.machine.history
        if not history:
            print("No encounters resolved yet.")
            return
        for entry in history:
            print(f"  {entry.title}: {entry.choice_summary or '-'} ({entry.autosave_tag})")

    def cmd_save(self, args: str) -> None:
        try:
            path = self.game.save()
        except SaveError as e:
            print(f"Save failed: {e}")
            return
        print(f"Saved to {path}")

    def cmd_load(self, args: str) -> None:
        try:
            player = self.game.load()
        except FileNotFoundError:
            print("No save found.")
            return
        except SaveError as e:
            print(f"Load failed: {e}")
            return
        print(f"Loaded {player.player_id} ({len(player.choice_log)} choices logged)")

    def cmd_log(self, args: str) -> None:
        print(get_run_log().format_log(max_events=20))

    def cmd_quit(self, args: str) -> None:
        """Quit the game."""
        self.running = False


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def parse_arguments(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Explore Director - an adaptive single-player exploration loop",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m src.main                              # Run interactive mode
  python -m src.main --content-file snippets.json # Use a custom snippet catalog
  python -m src.main --chapter-cadence 3          # Chapter event every 3 encounters
  python -m src.main --llm-provider anthropic     # LLM-authored chapter events
        """
    )

    # General options
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=Path("data"),
        help="Directory for save files (default: data)",
    )
    parser.add_argument(
        "--save-file",
        type=str,
        default="player_save.json",
        help="Save file name inside the data directory (default: player_save.json)",
    )
    parser.add_argument(
        "--player-id",
        type=str,
        default="jalmar",
        help="Player id for a new session (default: jalmar)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    # Content options
    content_group = parser.add_argument_group("Content Options")
    content_group.add_argument(
        "--content-file",
        type=Path,
        help="JSON snippet catalog (default: built-in catalog)",
    )
    content_group.add_argument(
        "--location",
        type=str,
        help="Starting location id",
    )
    content_group.add_argument(
        "--biome",
        type=str,
        help="Starting biome",
    )

    # Pacing options
    pacing_group = parser.add_argument_group("Pacing Options")
    pacing_group.add_argument(
        "--fatigue-threshold",
        type=int,
        default=5,
        help="Events before a rest is required (default: 5)",
    )
    pacing_group.add_argument(
        "--chapter-cadence",
        type=int,
        default=4,
        help="Resolved encounters between chapter events, 0 disables (default: 4)",
    )
    pacing_group.add_argument(
        "--chapter-odds",
        type=float,
        default=0.0,
        help="Chance per exploration of a chapter event (default: 0.0)",
    )
    pacing_group.add_argument(
        "--chaos-odds",
        type=float,
        default=0.10,
        help="Base chance per exploration of a chaos encounter, 0 disables (default: 0.10)",
    )
    pacing_group.add_argument(
        "--seed",
        type=int,
        help="Random seed for chapter and chaos odds",
    )
    pacing_group.add_argument(
        "--inventory-capacity",
        type=int,
        help="Maximum items carried (default: unlimited)",
    )

    # LLM options
    llm_group = parser.add_argument_group("LLM Options")
    llm_group.add_argument(
        "--llm-provider",
        type=str,
        default="none",
        choices=["none", "mock", "anthropic", "openai"],
        help="LLM provider for chapter events (default: none)",
    )
    llm_group.add_argument(
        "--llm-model",
        type=str,
        help="Specific model to use (provider-dependent)",
    )

    return parser.parse_args(argv)


def create_config_from_args(args: argparse.Namespace) -> GameConfig:
    """Create GameConfig from parsed arguments."""
    return GameConfig(
        data_dir=args.data_dir,
        content_file=args.content_file,
        save_file=args.save_file,
        player_id=args.player_id,
        player_name=args.player_id.title(),
        location_id=args.location,
        biome=args.biome,
        fatigue_threshold=args.fatigue_threshold,
        chapter_cadence=args.chapter_cadence,
        chapter_odds=args.chapter_odds,
        chaos_odds=args.chaos_odds,
        rng_seed=args.seed,
        inventory_capacity=args.inventory_capacity,
        llm_provider=args.llm_provider,
        llm_model=args.llm_model,
        verbose=args.verbose,
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

def main(argv: Optional[list[str]] = None):
    """Main entry point for CLI usage."""
    args = parse_arguments(argv)
    setup_logging(args.verbose)

    print("=" * 60)
    print("EXPLORE DIRECTOR v0.1.0")
    print("=" * 60)

    config = create_config_from_args(args)
    game = ExplorationGame(config)

    if game.sessions.has_save():
        try:
            game.load()
            print("Resumed saved session.")
        except SaveError as e:
            logger.warning(f"Could not resume save: {e}")

    print(game.status())
    ExplorationCLI(game).run()

    if args.verbose:
        print(json.dumps(get_run_log().get_summary(), indent=2))
    return game


if __name__ == "__main__":
    main()
