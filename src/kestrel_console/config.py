# Kestrel Console - Configuration
#
# Settings come from the environment, optionally seeded from a .env file in
# the working directory (python-dotenv). Nothing here talks to the backend.
#
#   KESTREL_API_URL    backend base URL          (default http://localhost:8080)
#   KESTREL_TIMEOUT    request timeout, seconds  (default 30)
#   KESTREL_STATE_DIR  session db + audit logs   (default ~/.kestrel-console)
#   KESTREL_LOG_LEVEL  diagnostic log level      (default WARNING)

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_API_URL = "http://localhost:8080"
DEFAULT_TIMEOUT_SEC = 30.0
DEFAULT_STATE_DIR = Path.home() / ".kestrel-console"
DEFAULT_LOG_LEVEL = "WARNING"


@dataclass
class ConsoleConfig:
    """Runtime settings for one console process."""

    api_url: str = DEFAULT_API_URL
    timeout: float = DEFAULT_TIMEOUT_SEC
    state_dir: Path = field(default_factory=lambda: DEFAULT_STATE_DIR)
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self):
        self.api_url = self.api_url.rstrip("/")
        self.state_dir = Path(self.state_dir).expanduser()
        self.log_level = self.log_level.upper()
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")

    @property
    def session_db_path(self) -> Path:
        return self.state_dir / "session.db"

    @property
    def audit_log_dir(self) -> Path:
        return self.state_dir / "audit_logs"


def _read_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def load_config(
    env: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[str] = None,
) -> ConsoleConfig:
    """Build a ConsoleConfig from the environment.

    Args:
        env: Mapping to read instead of os.environ (tests pass a dict).
        dotenv_path: Explicit .env file; by default python-dotenv searches
            from the working directory. Ignored when ``env`` is given.
    """
    if env is None:
        load_dotenv(dotenv_path=dotenv_path)
        env = os.environ

    state_dir = env.get("KESTREL_STATE_DIR", "").strip()
    return ConsoleConfig(
        api_url=env.get("KESTREL_API_URL", "").strip() or DEFAULT_API_URL,
        timeout=_read_float(env, "KESTREL_TIMEOUT", DEFAULT_TIMEOUT_SEC),
        state_dir=Path(state_dir) if state_dir else DEFAULT_STATE_DIR,
        log_level=env.get("KESTREL_LOG_LEVEL", "").strip() or DEFAULT_LOG_LEVEL,
    )


def configure_logging(config: ConsoleConfig) -> None:
    """Route diagnostic (non-audit) logging to stderr at the configured level."""
    level = getattr(logging, config.log_level, None)
    if not isinstance(level, int):
        raise ValueError(f"KESTREL_LOG_LEVEL is not a logging level: {config.log_level!r}")
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ── Singleton ────────────────────────────────────────────────────────

_config: Optional[ConsoleConfig] = None


def get_config() -> ConsoleConfig:
    """Get or load the process-wide configuration."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[ConsoleConfig]) -> None:
    """Replace the singleton (for testing and --api-url overrides)."""
    global _config
    _config = config
