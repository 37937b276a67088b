# Kestrel Console - Persisted Session Token
# SQLite-backed store for the one piece of durable client-side state:
# the operator's bearer token, kept under a fixed key so it survives
# restarts of the console.

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# The only key this store ever writes
TOKEN_KEY = "token"


class TokenStore:
    """SQLite key/value store holding the persisted bearer token.

    Args:
        db_path: Path to SQLite file. Defaults to data/session.db.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = Path(db_path) if db_path else Path("data/session.db")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self):
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS client_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()

    def _connect(self) -> sqlite3.Connection:
        # WAL + busy_timeout: two console commands may race on login
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        conn.row_factory = sqlite3.Row
        return conn

    def load(self) -> Optional[str]:
        """Return the persisted token, or None if nobody is signed in."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM client_state WHERE key = ?", (TOKEN_KEY,)
            ).fetchone()
        if row is None:
            return None
        return row["value"] or None

    def save(self, token: str) -> None:
        """Persist the token, replacing any previous one."""
        if not token:
            raise ValueError("refusing to persist an empty token")
        now = datetime.utcnow().isoformat()
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO client_state (key, value, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                       value = excluded.value,
                       updated_at = excluded.updated_at""",
                (TOKEN_KEY, token, now),
            )
            conn.commit()
        logger.debug("Persisted session token to %s", self.db_path)

    def clear(self) -> bool:
        """Remove the persisted token. Returns True if one was stored."""
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM client_state WHERE key = ?", (TOKEN_KEY,)
            )
            conn.commit()
            removed = cur.rowcount > 0
        if removed:
            logger.debug("Cleared persisted session token from %s", self.db_path)
        return removed


# ── Singleton ────────────────────────────────────────────────────────

_instance: Optional[TokenStore] = None


def get_token_store() -> TokenStore:
    """Get or create the singleton TokenStore instance."""
    global _instance
    if _instance is None:
        from ..config import get_config

        _instance = TokenStore(db_path=str(get_config().session_db_path))
    return _instance


def set_token_store(instance: Optional[TokenStore]) -> None:
    """Replace the singleton (for testing)."""
    global _instance
    _instance = instance
