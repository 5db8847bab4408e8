"""
Session Manager for the exploration loop.

Handles saving and loading the player snapshot. Each save is a JSON envelope
carrying a format version, the save timestamp, the reward ledger, and a
SHA-256 checksum over the canonical serialization of player and rewards, so
a truncated or hand-edited file is detected on load instead of silently
corrupting progression.

Layout on disk:
- <save_directory>/<filename>      current save
- <save_directory>/<filename>.bak  previous save, used when the current one is corrupt
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
import hashlib
import json
import logging

from src.data_models import PlayerState
from src.explore.errors import SaveCorruptError, SaveError

logger = logging.getLogger(__name__)


SAVE_VERSION = "1.1.0"


def canonical_json(data: Any) -> str:
    """Stable serialization used as checksum input."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_checksum(data: dict[str, Any]) -> str:
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()


def envelope_checksum(player_data: dict[str, Any], rewards_data: dict[str, Any]) -> str:
    return compute_checksum({"player": player_data, "rewards": rewards_data})


@dataclass
class SaveData:
    """Everything restored from one save file."""

    player: PlayerState
    rewards: dict[str, Any] = field(default_factory=dict)
    saved_at_millis: Optional[int] = None


class SessionManager:
    """
    Manages player save/load operations.

    Handles:
    - Writing the versioned, checksummed save envelope
    - Rotating the previous save into a backup
    - Validating on load, with fallback to the backup
    """

    def __init__(self, save_directory: Optional[Path] = None, filename: str = "player_save.json"):
        """
        Initialize the session manager.

        Args:
            save_directory: Directory for save files. Defaults to ./saves/
            filename: Name of the save file inside save_directory
        """
        self.save_directory = Path(save_directory) if save_directory else Path("./saves")
        self.save_directory.mkdir(parents=True, exist_ok=True)
        self.filename = filename

    @property
    def save_path(self) -> Path:
        return self.save_directory / self.filename

    @property
    def backup_path(self) -> Path:
        return self.save_directory / f"{self.filename}.bak"

    def has_save(self) -> bool:
        return self.save_path.exists() or self.backup_path.exists()

    def save(
        self,
        player: PlayerState,
        saved_at_millis: int,
        rewards: Optional[dict[str, Any]] = None,
    ) -> Path:
        """
        Save a player snapshot.

        Args:
            player: Snapshot to persist
            saved_at_millis: Timestamp from the player state store
            rewards: Serialized reward ledger, saved alongside the player

        Returns:
            Path to the saved file
        """
        player_data = player.to_dict()
        rewards_data = dict(rewards or {})
        envelope = {
            "version": SAVE_VERSION,
            "saved_at_millis": saved_at_millis,
            "checksum": envelope_checksum(player_data, rewards_data),
            "player": player_data,
            "rewards": rewards_data,
        }

        tmp_path = self.save_directory / f"{self.filename}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(envelope, f, indent=2, ensure_ascii=False)
            if self.save_path.exists():
                self.save_path.replace(self.backup_path)
            tmp_path.replace(self.save_path)
        except OSError as e:
            raise SaveError(f"Could not write save file {self.save_path}: {e}") from e

        logger.info(f"Saved player {player.player_id} to: {self.save_path}")
        return self.save_path

    def load(self) -> PlayerState:
        """Load the player snapshot, falling back to the backup."""
        return self.load_save().player

    def load_save(self) -> SaveData:
        """
        Load the player snapshot and reward ledger, falling back to the backup.

        Raises:
            FileNotFoundError: If neither save nor backup exists
            SaveCorruptError: If no readable, valid save exists
        """
        if not self.has_save():
            raise FileNotFoundError(f"Save file not found: {self.save_path}")

        errors = []
        for path in (self.save_path, self.backup_path):
            if not path.exists():
                continue
            try:
                saved = self._read(path)
            except SaveCorruptError as e:
                logger.warning(f"Save file {path} rejected: {e}")
                errors.append(str(e))
                continue
            player_id = saved.player.player_id
            if path == self.backup_path:
                logger.warning(f"Recovered player {player_id} from backup {path}")
            else:
                logger.info(f"Loaded player {player_id} from: {path}")
            return saved

        raise SaveCorruptError("; ".join(errors))

    def _read(self, path: Path) -> SaveData:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SaveCorruptError(f"{path.name}: unreadable ({e})") from e

        if not isinstance(data, dict) or "player" not in data:
            raise SaveCorruptError(f"{path.name}: missing player payload")

        version = data.get("version")
        if version != SAVE_VERSION:
            raise SaveCorruptError(f"{path.name}: unsupported version {version!r}")

        player_data = data["player"]
        rewards_data = data.get("rewards", {})
        if not isinstance(rewards_data, dict):
            raise SaveCorruptError(f"{path.name}: invalid rewards payload")
        if data.get("checksum") != envelope_checksum(player_data, rewards_data):
            raise SaveCorruptError(f"{path.name}: checksum mismatch")

        try:
            player = PlayerState.from_dict(player_data)
        except (KeyError, TypeError, ValueError) as e:
            raise SaveCorruptError(f"{path.name}: invalid player data ({e})") from e
        return SaveData(player=player, rewards=rewards_data, saved_at_millis=data.get("saved_at_millis"))

    def delete_save(self) -> bool:
        """
        Delete the save file and its backup.

        Returns:
            True if anything was deleted
        """
        deleted = False
        for path in (self.save_path, self.backup_path):
            if path.exists():
                path.unlink()
                deleted = True
        if deleted:
            logger.info(f"Deleted save file: {self.save_path}")
        return deleted
