"""CLI types."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console

from snapask.config import Config


@dataclass
class CliEnv:
    config: Config
    console: Console = field(default_factory=Console)
    config_path: Path | None = None
