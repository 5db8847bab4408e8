"""
Tests for the ExplorationGame wiring and the interactive CLI.

Runs the whole stack against a temporary data directory with a scripted
clock; the interactive loop is driven through process_command().
"""

import json

import pytest

from src.ai.chapter_director import LLMChapterEventProvider
from src.encounter.event_engine import DefaultChapterEventProvider
from src.explore.explore_types import Chapter, Encounter, Idle
from src.main import (
    ExplorationCLI,
    ExplorationGame,
    GameConfig,
    create_config_from_args,
    describe_phase,
    main,
    parse_arguments,
)
from src.observability.run_log import get_run_log


@pytest.fixture
def config(tmp_path):
    return GameConfig(data_dir=tmp_path / "data", chaos_odds=0.0)


@pytest.fixture
def game(config, clock):
    return ExplorationGame(config, clock=clock)


@pytest.fixture
def cli(game):
    return ExplorationCLI(game)


class TestExplorationGame:
    """Tests for subsystem wiring."""

    def test_first_encounter(self, game):
        """Test a new game starts at the garden gate."""
        phase = game.machine.begin_exploration()
        assert isinstance(phase, Encounter)
        assert phase.snippet.snippet_id == "explore_garden_gate"

    def test_save_and_resume(self, game, config, clock):
        """Test a saved session resumes with the same snapshot."""
        game.machine.begin_exploration()
        game.machine.choose_option(1)
        game.machine.continue_after_resolution()
        path = game.save()
        assert path.exists()

        resumed = ExplorationGame(config, clock=clock)
        resumed.load()
        assert resumed.store.current() == game.store.current()
        assert resumed.machine.begin_exploration().snippet.snippet_id == "explore_clover_copse"

    def test_resume_keeps_rewards(self, game, config, clock):
        """Test a resumed session keeps the seeds its choice log says were granted."""
        game.machine.begin_exploration()
        game.machine.choose_option(1)
        game.machine.continue_after_resolution()
        assert game.machine.begin_exploration().snippet.snippet_id == "explore_clover_copse"
        game.machine.choose_option(1)
        game.machine.continue_after_resolution()
        assert game.rewards.seeds == 3
        game.save()

        resumed = ExplorationGame(config, clock=clock)
        resumed.load()
        assert "explore_gather_twigs" in resumed.store.current().choice_tags()
        assert resumed.rewards.seeds == 3
        assert resumed.rewards.to_dict() == game.rewards.to_dict()

    def test_cadence_brings_chapter(self, tmp_path, clock):
        """Test a cadence of one brings a chapter after the first encounter."""
        game = ExplorationGame(GameConfig(data_dir=tmp_path, chapter_cadence=1, chaos_odds=0.0), clock=clock)
        game.machine.begin_exploration()
        game.machine.choose_option(0)
        game.machine.continue_after_resolution()
        phase = game.machine.begin_exploration()
        assert isinstance(phase, Chapter)
        assert phase.response.world_event_title == "Whispers Over JALMAR"

    def test_chaos_wiring(self, tmp_path, clock):
        """Test chaos odds register the chaos records and share the session RNG."""
        game = ExplorationGame(GameConfig(data_dir=tmp_path, chaos_odds=0.2, rng_seed=3), clock=clock)
        trigger = game.event_engine.chaos_trigger
        assert trigger.odds == 0.2
        assert game.repository.get_record("borken_chaos_introduction") is not None

        trigger.odds = 1.0
        trigger.introduction_odds = 1.0
        phase = game.machine.begin_exploration()
        assert isinstance(phase, Encounter)
        assert phase.title == "Borken Appears!"

    def test_chaos_disabled(self, game):
        """Test zero chaos odds leave the catalog and engine without chaos."""
        assert game.event_engine.chaos_trigger is None
        assert game.repository.get_record("borken_chaos_introduction") is None

    def test_default_chapter_provider(self, game):
        """Test no LLM provider means the deterministic chapter provider."""
        assert isinstance(game.event_engine.chapter_provider, DefaultChapterEventProvider)

    def test_mock_llm_falls_back(self, tmp_path, clock):
        """Test the mock LLM's non-JSON reply falls back to the default chapter."""
        game = ExplorationGame(
            GameConfig(data_dir=tmp_path, chapter_cadence=0, chapter_odds=1.0, chaos_odds=0.0, llm_provider="mock"),
            clock=clock,
        )
        assert isinstance(game.event_engine.chapter_provider, LLMChapterEventProvider)
        phase = game.machine.begin_exploration()
        assert isinstance(phase, Chapter)
        assert phase.response.world_event_title == "Whispers Over JALMAR"

    def test_content_file(self, tmp_path, clock):
        """Test a custom catalog file replaces the built-in one."""
        content = tmp_path / "snippets.json"
        content.write_text(
            json.dumps(
                {
                    "items": [
                        {
                            "id": "explore_moss_bank",
                            "title": "Moss Bank",
                            "event_text": "Soft moss everywhere.",
                            "choice_options": ["Nap"],
                            "consequences": {"nap": {"grant_experience": 5}},
                        }
                    ]
                }
            ),
            encoding="utf-8",
        )
        game = ExplorationGame(GameConfig(data_dir=tmp_path, content_file=str(content), chaos_odds=0.0), clock=clock)
        assert game.machine.begin_exploration().title == "Moss Bank"
        summary = game.machine.choose_option(0)
        assert game.rewards.experience == 5
        assert "Experience gained: 5" in summary.reward_summaries

    def test_seed_recorded(self, tmp_path, clock):
        """Test the RNG seed is written to the run log."""
        ExplorationGame(GameConfig(data_dir=tmp_path, rng_seed=7, chaos_odds=0.0), clock=clock)
        assert get_run_log().get_seed() == 7

    def test_full_state(self, game):
        """Test the state dump reports phase, director, and ledger."""
        state = game.get_full_state()
        assert state["phase"] == "idle"
        assert state["difficulty"] == "normal"
        assert state["playstyle"] == "balanced"
        assert state["seeds"] == 0
        assert state["player"]["player_id"] == "jalmar"

    def test_status(self, game):
        """Test the status text summarizes the session."""
        text = game.status()
        assert "Jalmar - phase: idle" in text
        assert "Difficulty: normal" in text
        assert "Events since rest: 0/5" in text


class TestExplorationCLI:
    """Tests for command processing."""

    def test_explore_and_choose(self, cli, game, capsys):
        """Test exploring and choosing prints the encounter and its summary."""
        cli.process_command("explore")
        out = capsys.readouterr().out
        assert "== Garden Gate Recon ==" in out
        assert "[1] Stride through the clover" in out

        cli.process_command("choose 1")
        out = capsys.readouterr().out
        assert "Garden Gate Recon: Stride through the clover" in out
        assert "  - Milestone logged: explore_completed_garden_gate" in out
        assert isinstance(game.machine.phase, Idle)

    def test_choose_needs_a_number(self, cli, capsys):
        """Test a non-numeric choice prints usage."""
        cli.process_command("choose x")
        assert "Usage: choose N" in capsys.readouterr().out

    def test_invalid_phase_reported(self, cli, capsys):
        """Test an operation in the wrong phase is reported, not raised."""
        cli.process_command("choose 0")
        assert "Not now:" in capsys.readouterr().out
        cli.process_command("rest")
        assert "Not now:" in capsys.readouterr().out

    def test_unknown_command(self, cli, capsys):
        """Test unknown commands point at help."""
        cli.process_command("dance")
        assert "Unknown command: dance" in capsys.readouterr().out

    def test_history(self, cli, capsys):
        """Test history lists resolved encounters."""
        cli.process_command("history")
        assert "No encounters resolved yet." in capsys.readouterr().out
        cli.process_command("explore")
        cli.process_command("choose 2")
        capsys.readouterr()
        cli.process_command("history")
        assert "Garden Gate Recon: Retreat to the nest" in capsys.readouterr().out

    def test_save_and_load_commands(self, cli, capsys):
        """Test save and load report what they did."""
        cli.process_command("load")
        assert "No save found." in capsys.readouterr().out
        cli.process_command("save")
        assert "Saved to" in capsys.readouterr().out
        cli.process_command("load")
        assert "Loaded jalmar" in capsys.readouterr().out

    def test_quit(self, cli):
        """Test quit stops the loop."""
        cli.running = True
        cli.process_command("quit")
        assert cli.running is False

    def test_describe_phase(self, game):
        """Test phase descriptions for idle and error phases."""
        assert describe_phase(game.machine.phase) == "[idle]"


class TestArguments:
    """Tests for command line parsing."""

    def test_defaults(self):
        """Test defaults match GameConfig."""
        config = create_config_from_args(parse_arguments([]))
        assert config.player_id == "jalmar"
        assert config.player_name == "Jalmar"
        assert config.chapter_cadence == 4
        assert config.fatigue_threshold == 5
        assert config.llm_provider == "none"
        assert config.chaos_odds == 0.10

    def test_overrides(self, tmp_path):
        """Test flags flow into the config."""
        args = parse_arguments(
            [
                "--data-dir", str(tmp_path),
                "--chapter-cadence", "3",
                "--chapter-odds", "0.25",
                "--chaos-odds", "0",
                "--seed", "11",
                "--llm-provider", "mock",
                "--location", "garden",
            ]
        )
        config = create_config_from_args(args)
        assert config.data_dir == tmp_path
        assert config.chapter_cadence == 3
        assert config.chapter_odds == 0.25
        assert config.chaos_odds == 0.0
        assert config.rng_seed == 11
        assert config.llm_provider == "mock"
        assert config.location_id == "garden"

    def test_rejects_unknown_provider(self):
        """Test an unsupported LLM provider is refused."""
        with pytest.raises(SystemExit):
            parse_arguments(["--llm-provider", "pigeon"])

    def test_main_exits_on_eof(self, tmp_path, monkeypatch, capsys):
        """Test main runs the loop until input ends."""

        def no_input(prompt=""):
            raise EOFError

        monkeypatch.setattr("builtins.input", no_input)
        game = main(["--data-dir", str(tmp_path)])
        assert isinstance(game, ExplorationGame)
        assert "Safe travels" in capsys.readouterr().out
