"""
Configuration for raidhost.

Every retry count, threshold and timeout the bot uses lives here as a
tunable. The defaults are what the bot runs with when a config file leaves
a field out; they are starting points, not calibrated constants.

Config file (JSON):
    {
        "bot": {"cooldown_seconds": 45, "navigation_refresh_threshold": 3},
        "sessions": [
            {"session_id": "switch-1", "host": "192.168.1.50", "slots": [10, 70]}
        ],
        "queue_max_per_user": 1,
        "catalog_path": "raids.txt",
        "dens_path": "dens.json"
    }
"""

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

from .console.socket_client import DEFAULT_PORT
from .exceptions import ConfigError

logger = logging.getLogger(__name__)


# =============================================================================
# Bot behaviour
# =============================================================================

@dataclass
class RaidBotConfig:
    """Tunables for one rotation state machine."""

    # Transport
    command_timeout: float = 5.0          # deadline per console command (s)
    transport_retries: int = 3            # local retries before ErrorRecovery
    retry_backoff: float = 0.5            # first backoff (s), doubles per retry
    max_backoff: float = 10.0
    transport_escalation_limit: int = 3   # consecutive escalations before reboot

    # Seed injection
    seed_mismatch_limit: int = 3          # injections per cycle before escalating

    # Navigation
    teleport_distance_threshold: float = 5.0
    navigation_timeout: float = 10.0
    navigation_refresh_threshold: int = 3  # consecutive misses before refreshing dens
    navigation_failure_limit: int = 6      # consecutive misses before reboot
    settle_time: float = 0.5

    # Lobby and battle
    lobby_open_timeout: float = 15.0
    lobby_timeout: float = 120.0
    min_players: int = 1
    start_without_players: bool = True
    battle_timeout: float = 600.0
    poll_interval: float = 1.0

    # Pacing
    cooldown_seconds: float = 30.0
    idle_wait: float = 10.0
    repeat_rotation: bool = True
    input_cooldown: float = 0.05

    # Recovery
    pointer_failure_limit: int = 2
    max_reboots: int = 3
    auto_reboot_on_interference: bool = True

    def validate(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool):
                continue
            if isinstance(value, (int, float)) and value < 0:
                raise ConfigError(f"bot.{f.name} must not be negative, got {value}")
        for name in ("seed_mismatch_limit", "navigation_refresh_threshold",
                     "navigation_failure_limit", "transport_escalation_limit",
                     "pointer_failure_limit", "max_reboots"):
            if getattr(self, name) < 1:
                raise ConfigError(f"bot.{name} must be at least 1")
        if self.navigation_refresh_threshold > self.navigation_failure_limit:
            raise ConfigError(
                "bot.navigation_refresh_threshold must not exceed bot.navigation_failure_limit"
            )
        if self.poll_interval <= 0:
            raise ConfigError("bot.poll_interval must be positive")


# =============================================================================
# Sessions and pool
# =============================================================================

@dataclass
class SessionConfig:
    """One console and the slots it rotates through."""
    session_id: str
    host: str
    port: int = DEFAULT_PORT
    slots: list[int] = field(default_factory=lambda: [0])
    partition: Optional[str] = None

    def validate(self) -> None:
        if not self.session_id:
            raise ConfigError("session_id must not be empty")
        if not self.slots:
            raise ConfigError(f"Session {self.session_id}: slots must not be empty")
        if not 0 < self.port < 65536:
            raise ConfigError(f"Session {self.session_id}: invalid port {self.port}")


@dataclass
class PoolConfig:
    """Top-level configuration: bot tunables, sessions, queue caps, files."""
    bot: RaidBotConfig = field(default_factory=RaidBotConfig)
    sessions: list[SessionConfig] = field(default_factory=list)
    queue_max_per_user: Optional[int] = 1
    queue_max_total: Optional[int] = 50
    auto_reset_limit: int = 3
    catalog_path: Optional[str] = None
    dens_path: Optional[str] = None
    history_path: Optional[str] = None

    def validate(self) -> None:
        self.bot.validate()
        seen: set[str] = set()
        for session in self.sessions:
            session.validate()
            if session.session_id in seen:
                raise ConfigError(f"Duplicate session_id: {session.session_id}")
            seen.add(session.session_id)
        if self.auto_reset_limit < 0:
            raise ConfigError("auto_reset_limit must not be negative")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PoolConfig":
        data = dict(data)
        bot = _build(RaidBotConfig, data.pop("bot", {}), "bot")
        sessions = [
            _build(SessionConfig, s, f"sessions[{i}]") for i, s in enumerate(data.pop("sessions", []))
        ]
        config = _build(cls, data, "config", bot=bot, sessions=sessions)
        config.validate()
        return config


def _build(kind: type, data: Any, where: str, **extra: Any) -> Any:
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: expected an object, got {type(data).__name__}")
    known = {f.name for f in fields(kind)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"{where}: unknown key(s) {', '.join(sorted(unknown))}")
    try:
        return kind(**data, **extra)
    except TypeError as e:
        raise ConfigError(f"{where}: {e}") from e


def load_config(path: Path) -> PoolConfig:
    """Load and validate a JSON config file."""
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    config = PoolConfig.from_dict(data)
    logger.info(f"Loaded config from {path}: {len(config.sessions)} session(s)")
    return config
