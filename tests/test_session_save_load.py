"""
Tests for player save/load.

Covers the checksummed save envelope, backup rotation and recovery, and
rejection of corrupt or incompatible saves.
"""

import json

import pytest

from src.data_models import (
    AIDirectorState,
    DifficultyLevel,
    PlayerState,
    PlaystyleProfile,
    QuestLog,
    StatusEffect,
)
from src.explore.errors import SaveCorruptError
from src.game_state.session_manager import (
    SAVE_VERSION,
    SessionManager,
    compute_checksum,
    envelope_checksum,
)


@pytest.fixture
def sessions(tmp_path):
    return SessionManager(tmp_path / "saves")


@pytest.fixture
def seasoned_player():
    player = PlayerState(
        player_id="jalmar",
        name="Jalmar",
        location_id="garden",
        biome="meadow",
        quest_log=QuestLog(active_quests=("lost_acorn",), completed_quests=("moth_lantern",)),
        status_effects=(StatusEffect("forest_poise", 4_605_000), StatusEffect("lucky_feather")),
        ai_director=AIDirectorState(
            playstyle=PlaystyleProfile(explorer_score=3),
            last_event_timestamp=1_005_000,
            events_since_rest=2,
            current_difficulty=DifficultyLevel.HARD,
        ),
    )
    return player.append_choice("explore_clover_trail", 1_005_000).append_choice(
        "autosave:explore_garden_gate:1005000", 1_005_000
    )


class TestSaveLoad:
    """Tests for the save round trip."""

    def test_round_trip(self, sessions, seasoned_player):
        """Test a loaded save equals the saved snapshot."""
        sessions.save(seasoned_player, 2_000_000)
        assert sessions.load() == seasoned_player

    def test_envelope(self, sessions, seasoned_player):
        """Test the file carries version, timestamp, and checksum."""
        path = sessions.save(seasoned_player, 2_000_000)
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["version"] == SAVE_VERSION
        assert data["saved_at_millis"] == 2_000_000
        assert data["checksum"] == envelope_checksum(data["player"], data["rewards"])
        assert data["rewards"] == {}
        assert len(data["checksum"]) == 64

    def test_rewards_round_trip(self, sessions, seasoned_player):
        """Test the reward ledger is saved and loaded with the player."""
        rewards = {"seeds": 12, "experience": 40, "inventory": {"moon_pebble": 2}, "faction_reputation": {}}
        sessions.save(seasoned_player, 3_000_000, rewards=rewards)
        saved = sessions.load_save()
        assert saved.player == seasoned_player
        assert saved.rewards == rewards
        assert saved.saved_at_millis == 3_000_000

    def test_tampered_rewards_rejected(self, sessions, seasoned_player):
        """Test the checksum covers the reward ledger too."""
        path = sessions.save(seasoned_player, 1, rewards={"seeds": 3})
        data = json.loads(path.read_text(encoding="utf-8"))
        data["rewards"]["seeds"] = 9_999
        path.write_text(json.dumps(data), encoding="utf-8")
        with pytest.raises(SaveCorruptError) as exc_info:
            sessions.load_save()
        assert "checksum mismatch" in str(exc_info.value)

    def test_missing_save(self, sessions):
        """Test loading without a save raises FileNotFoundError."""
        assert not sessions.has_save()
        with pytest.raises(FileNotFoundError):
            sessions.load()

    def test_delete_save(self, sessions, seasoned_player):
        """Test delete removes the save and its backup."""
        sessions.save(seasoned_player, 1)
        sessions.save(seasoned_player, 2)
        assert sessions.delete_save()
        assert not sessions.has_save()
        assert not sessions.delete_save()


class TestBackups:
    """Tests for backup rotation and recovery."""

    def test_previous_save_becomes_backup(self, sessions, seasoned_player):
        """Test a second save rotates the first into the backup."""
        sessions.save(seasoned_player, 1)
        newer = seasoned_player.append_choice("explore_retreat", 2)
        sessions.save(newer, 2)
        backup = json.loads(sessions.backup_path.read_text(encoding="utf-8"))
        assert backup["saved_at_millis"] == 1
        assert sessions.load() == newer

    def test_corrupt_save_falls_back_to_backup(self, sessions, seasoned_player):
        """Test a truncated main save recovers from the backup."""
        sessions.save(seasoned_player, 1)
        sessions.save(seasoned_player.append_choice("explore_retreat", 2), 2)
        sessions.save_path.write_text('{"version": "1.0.0", "play', encoding="utf-8")
        assert sessions.load() == seasoned_player

    def test_tampered_save_rejected(self, sessions, seasoned_player):
        """Test an edited player payload fails the checksum."""
        path = sessions.save(seasoned_player, 1)
        data = json.loads(path.read_text(encoding="utf-8"))
        data["player"]["name"] = "Impostor"
        path.write_text(json.dumps(data), encoding="utf-8")
        with pytest.raises(SaveCorruptError) as exc_info:
            sessions.load()
        assert "checksum mismatch" in str(exc_info.value)

    def test_unsupported_version_rejected(self, sessions, seasoned_player):
        """Test a save from another format version is rejected."""
        path = sessions.save(seasoned_player, 1)
        data = json.loads(path.read_text(encoding="utf-8"))
        data["version"] = "0.9.0"
        path.write_text(json.dumps(data), encoding="utf-8")
        with pytest.raises(SaveCorruptError):
            sessions.load()

    def test_checksum_independent_of_key_order(self, seasoned_player):
        """Test the checksum uses a canonical serialization."""
        data = seasoned_player.to_dict()
        reordered = dict(reversed(list(data.items())))
        assert compute_checksum(data) == compute_checksum(reordered)


class TestPlayerSerialization:
    """Tests for PlayerState dictionaries."""

    def test_defaults_fill_missing_fields(self):
        """Test an old save with only a player id still loads."""
        player = PlayerState.from_dict({"player_id": "pip"})
        assert player.choice_log == ()
        assert player.ai_director == AIDirectorState()

    def test_round_trip_preserves_difficulty(self, seasoned_player):
        """Test director state survives serialization."""
        restored = PlayerState.from_dict(seasoned_player.to_dict())
        assert restored.ai_director.current_difficulty == DifficultyLevel.HARD
        assert restored == seasoned_player
