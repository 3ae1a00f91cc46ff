"""Configuration for the video bookmarks service."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


DEFAULT_DB_PATH = Path.home() / ".video-bookmarks" / "bookmarks.db"

IMPORT_POLICIES = ("reject", "skip")


@dataclass
class StoreConfig:
    """Configuration for the SQLite bookmark store."""
    db_path: Optional[Path] = None  # None = use default
    lock_timeout: float = 5.0  # Seconds to wait on a locked database before giving up
    import_policy: str = "reject"  # 'reject' rolls back a bad batch, 'skip' drops invalid items

    @classmethod
    def from_env(cls) -> "StoreConfig":
        """Create config from environment variables."""
        db_path_str = os.environ.get("VIDEO_BOOKMARKS_DB")
        policy = os.environ.get("VIDEO_BOOKMARKS_IMPORT_POLICY", "reject").strip().lower()
        if policy not in IMPORT_POLICIES:
            raise ValueError(
                f"VIDEO_BOOKMARKS_IMPORT_POLICY must be one of {IMPORT_POLICIES}, got {policy!r}"
            )

        return cls(
            db_path=Path(db_path_str) if db_path_str else None,
            lock_timeout=float(os.environ.get("VIDEO_BOOKMARKS_LOCK_TIMEOUT", "5.0")),
            import_policy=policy,
        )

    @property
    def resolved_db_path(self) -> Path:
        return self.db_path or DEFAULT_DB_PATH


@dataclass
class Config:
    """Main configuration for the video bookmarks service."""
    store: StoreConfig = field(default_factory=StoreConfig)
    bridge_port: int = 8765  # WebSocket port for viewer surfaces
    default_page_size: int = 5

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment variables."""
        return cls(
            store=StoreConfig.from_env(),
            bridge_port=int(os.environ.get("VIDEO_BOOKMARKS_BRIDGE_PORT", "8765")),
            default_page_size=int(os.environ.get("VIDEO_BOOKMARKS_PAGE_SIZE", "5")),
        )


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global config instance.

    Returns:
        Config loaded from environment
    """
    global _config

    if _config is None:
        _config = Config.from_env()

    return _config
