"""Configuration loading and validation for windowkeeper."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Optional
import os

import yaml

from .context.budget import ContextWindowInfo
from .context.truncation import TruncationPolicy

if TYPE_CHECKING:
    from .storage.base import LedgerStore


@dataclass
class ContextConfig:
    """Context window and reduction policy configuration."""

    capacity: int = 200_000
    reserved_output_tokens: int = 8192
    safety_buffer: Optional[int] = None  # None: derived from capacity
    preserved_tail_pairs: int = 1
    truncation_policy: str = TruncationPolicy.ADAPTIVE.value
    always_optimize: bool = True  # Collapse duplicates every turn, not only over budget

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError(f"context.capacity must be positive, got {self.capacity}")
        if self.reserved_output_tokens < 0:
            raise ValueError("context.reserved_output_tokens cannot be negative")
        if self.safety_buffer is not None and self.safety_buffer < 0:
            raise ValueError("context.safety_buffer cannot be negative")
        if self.preserved_tail_pairs < 1:
            raise ValueError("context.preserved_tail_pairs must be at least 1")
        valid = {p.value for p in TruncationPolicy}
        if self.truncation_policy not in valid:
            raise ValueError(
                f"Unknown truncation_policy {self.truncation_policy!r}, "
                f"expected one of {sorted(valid)}"
            )

    def window_info(self) -> ContextWindowInfo:
        """Context window info for the configured model."""
        return ContextWindowInfo(
            capacity=self.capacity,
            reserved_output_tokens=self.reserved_output_tokens,
            safety_buffer=self.safety_buffer,
        )


@dataclass
class StorageConfig:
    """Ledger persistence configuration."""

    backend: str = "file"  # "file" or "memory"
    directory: Optional[str] = None  # None: XDG data dir

    def __post_init__(self) -> None:
        if self.backend not in ("file", "memory"):
            raise ValueError(f"Unknown storage backend {self.backend!r}, expected 'file' or 'memory'")

    def create_store(self) -> "LedgerStore":
        """Instantiate the configured ledger store."""
        if self.backend == "memory":
            from .storage.memory import MemoryLedgerStore

            return MemoryLedgerStore()

        from .storage.file import FileLedgerStore

        return FileLedgerStore(self.directory)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    debug_to_file: bool = True  # Write JSON debug logs to ~/.local/share/windowkeeper/logs/
    use_colors: bool = True  # ANSI colors in console output


@dataclass
class Config:
    """Main configuration container."""

    context: ContextConfig = field(default_factory=ContextConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load configuration from file.

        Args:
            path: Optional path to config file. If not provided, searches
                  XDG config locations.

        Returns:
            Loaded configuration with defaults for missing values.
        """
        config_path: Optional[Path] = None

        if path:
            config_path = Path(path)
        else:
            # Try XDG config first
            xdg_config = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
            user_config = Path(xdg_config) / "windowkeeper" / "config.yaml"

            if user_config.exists():
                config_path = user_config
            else:
                # Try system config
                system_config = Path("/etc/windowkeeper/config.yaml")
                if system_config.exists():
                    config_path = system_config

        if config_path and config_path.exists():
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
            return cls._from_dict(data)

        return cls()

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create config from dictionary."""
        return cls(
            context=ContextConfig(**(data.get("context") or {})),
            storage=StorageConfig(**(data.get("storage") or {})),
            logging=LoggingConfig(**(data.get("logging") or {})),
        )
