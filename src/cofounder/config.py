"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_DISPATCH_MAX_DEPTH = 5
DEFAULT_DISPATCH_TIMEOUT_MS = 300000
DEFAULT_DISPATCH_MAX_CONCURRENT = 4


def _parse_channels(raw: str) -> dict[str, str]:
    """Parse ``target=channel`` pairs, e.g. ``mac=C123,cold_storage=C456``."""
    channels = {}
    for pair in raw.split(","):
        target, sep, channel = pair.partition("=")
        if sep and target.strip() and channel.strip():
            channels[target.strip().lower()] = channel.strip()
    return channels


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / ".cofounder" / "cofounder.db")
    slack_bot_token: str | None = None
    slack_signing_secret: str | None = None
    # Remote target -> Slack channel where its queued jobs are announced.
    slack_dispatch_channels: dict[str, str] = field(default_factory=dict)
    dispatch_max_depth: int = DEFAULT_DISPATCH_MAX_DEPTH
    dispatch_timeout_ms: int = DEFAULT_DISPATCH_TIMEOUT_MS
    dispatch_max_concurrent: int = DEFAULT_DISPATCH_MAX_CONCURRENT
    claude_command: str = "claude"
    owner: str = "founder"

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if db := os.environ.get("CF_DB_PATH"):
            config.db_path = Path(db)

        config.slack_bot_token = os.environ.get("SLACK_BOT_TOKEN")
        config.slack_signing_secret = os.environ.get("SLACK_SIGNING_SECRET")

        if channels := os.environ.get("SLACK_DISPATCH_CHANNELS"):
            config.slack_dispatch_channels = _parse_channels(channels)

        if depth := os.environ.get("DISPATCH_MAX_DEPTH"):
            config.dispatch_max_depth = int(depth)

        if timeout := os.environ.get("DISPATCH_TIMEOUT_MS"):
            config.dispatch_timeout_ms = int(timeout)

        if concurrent := os.environ.get("DISPATCH_MAX_CONCURRENT"):
            config.dispatch_max_concurrent = max(1, int(concurrent))

        if command := os.environ.get("CF_CLAUDE_COMMAND"):
            config.claude_command = command

        if owner := os.environ.get("CF_OWNER"):
            config.owner = owner

        return config


def get_config() -> Config:
    return Config.from_env()
