# src/tokensim/core/config.py
"""
Engine settings schema and loading.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class LedgerSettings(BaseModel):
    """Capacity of the activity ledgers.

    Both ledgers are FIFO-bounded: once full, each new entry evicts the
    oldest one.
    """

    model_config = {"frozen": True}

    node_capacity: int = Field(default=500, gt=0, description="Entries kept per node")
    global_capacity: int = Field(default=1000, gt=0, description="Entries kept globally")


class PlaybackSettings(BaseModel):
    """Play loop pacing."""

    model_config = {"frozen": True}

    ticks_per_second: float = Field(
        default=1.0,
        gt=0,
        description="Wall-clock pacing of play(); has no effect on step()",
    )

    @property
    def tick_delay(self) -> float:
        return 1.0 / self.ticks_per_second


class LoggingSettings(BaseModel):
    model_config = {"frozen": True}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_output: bool = False

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class EngineSettings(BaseModel):
    """Top-level engine configuration.

    Example YAML:
        ledger:
          node_capacity: 500
          global_capacity: 1000
        undo_depth: 20
        max_cascade_iterations: 10000
        random_seed: 42
    """

    model_config = {"frozen": True}

    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    playback: PlaybackSettings = Field(default_factory=PlaybackSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    sink_retention: int = Field(default=50, gt=0, description="Tokens a sink keeps")
    transition_history: int = Field(
        default=10, gt=0, description="Transitions kept per node state machine"
    )
    undo_depth: int = Field(default=20, gt=0, description="Snapshots per undo/redo stack")
    max_cascade_iterations: int = Field(
        default=10_000,
        gt=0,
        description="Deliveries allowed in one cascade before it is cut off",
    )
    timer_interval: int = Field(
        default=5,
        gt=0,
        description="Default period of state machine timer transitions, in ticks",
    )
    random_seed: int | None = Field(
        default=None,
        description="Seed for source value draws; None draws fresh entropy",
    )


def load_settings(config_path: Path) -> EngineSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (TOKENSIM_*) - highest priority
    2. Config file
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: TOKENSIM_LEDGER__NODE_CAPACITY for nested keys.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated EngineSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="TOKENSIM",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; Pydantic fields are lowercase
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {
        k.lower(): _lower_keys(v)
        for k, v in dynaconf_settings.as_dict().items()
        if k not in internal_keys
    }
    return EngineSettings(**raw_config)


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


def resolve_config(settings: EngineSettings) -> dict[str, Any]:
    """Convert validated settings to a JSON-safe dict, defaults included."""
    return settings.model_dump(mode="json")
