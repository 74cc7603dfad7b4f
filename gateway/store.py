"""
Conversation store -- SQLite-backed config, message log and tracked names.

One store instance owns one connection and one lock. Every public method
holds the lock only for the statement it runs; no network call ever happens
while it is held. The store is injected into every component that needs it
rather than shared through a module-level singleton.

Tables:
  - config         : key/value settings (system prompt, response cap, context modes)
  - messages       : append-only log partitioned by conversation key
  - tracked_names  : globally tracked resource names (case-insensitive)

Default location: ~/.relay/relay.db
"""

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from agent.errors import StorageError
from relay_constants import (
    DEFAULT_SYSTEM_PROMPT,
    RESPONSE_CAP_DEFAULT,
    RESPONSE_CAP_MAX,
    RESPONSE_CAP_MIN,
)

logger = logging.getLogger(__name__)

ROLES = ("system", "user", "assistant")

CONTEXT_MODE_KEY_PREFIX = "context_mode:"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_key TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    timestamp INTEGER NOT NULL DEFAULT (CAST(strftime('%s', 'now') AS INTEGER))
);

CREATE INDEX IF NOT EXISTS idx_messages_key_ts
    ON messages (conversation_key, timestamp);

CREATE TABLE IF NOT EXISTS tracked_names (
    name TEXT PRIMARY KEY COLLATE NOCASE,
    added_by TEXT NOT NULL,
    added_at REAL NOT NULL
);
"""


@dataclass(frozen=True)
class StoredMessage:
    """One logged message. Equality covers only role and content."""

    role: str
    content: str
    conversation_key: Optional[str] = field(default=None, compare=False)
    id: Optional[int] = field(default=None, compare=False)
    timestamp: Optional[int] = field(default=None, compare=False)


def validate_response_cap(value) -> int:
    """Parse and range-check a response word cap. Raises ValueError."""
    cap = int(value)
    if not RESPONSE_CAP_MIN <= cap <= RESPONSE_CAP_MAX:
        raise ValueError(
            f"Cap must be a number between {RESPONSE_CAP_MIN} and {RESPONSE_CAP_MAX}."
        )
    return cap


class ConversationStore:
    """
    Durable key-value configuration plus a time-ordered message log.

    Usage:
        store = ConversationStore(Path("~/.relay/relay.db").expanduser())
        store.append_message("1234", "user", "hello")
        store.recent_messages("1234", 10)   # oldest first
    """

    def __init__(
        self,
        db_path: Union[str, Path] = ":memory:",
        *,
        default_system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        default_response_cap: int = RESPONSE_CAP_DEFAULT,
    ):
        self._lock = threading.Lock()
        self._default_response_cap = default_response_cap
        db_path = str(db_path)
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False, timeout=5.0)
            self._conn.row_factory = sqlite3.Row
            with self._conn:
                self._conn.executescript(_SCHEMA)
                self._conn.execute(
                    "INSERT OR IGNORE INTO config (key, value) VALUES ('system_prompt', ?)",
                    (default_system_prompt,),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open database at {db_path}: {e}") from e
        logger.debug("Conversation store opened at %s", db_path)

    # ----- Lifecycle -----

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run one statement under the lock, committing on success."""
        with self._lock:
            try:
                with self._conn:
                    return self._conn.execute(sql, params)
            except sqlite3.Error as e:
                raise StorageError(f"DB error: {e}") from e

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"DB error: {e}") from e

    # ----- Config -----

    def get_config(self, key: str) -> Optional[str]:
        rows = self._query("SELECT value FROM config WHERE key = ?", (key,))
        return rows[0]["value"] if rows else None

    def set_config(self, key: str, value: str) -> None:
        self._execute(
            "INSERT INTO config (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    def get_system_prompt(self) -> str:
        return self.get_config("system_prompt") or ""

    def set_system_prompt(self, prompt: str) -> None:
        self.set_config("system_prompt", prompt)

    def get_response_cap(self) -> int:
        """Return the stored word cap, or the default if unset or unparseable."""
        raw = self.get_config("response_cap")
        if raw is None:
            return self._default_response_cap
        try:
            return validate_response_cap(raw)
        except ValueError:
            logger.warning("Ignoring invalid stored response_cap %r", raw)
            return self._default_response_cap

    def set_response_cap(self, value) -> int:
        """Validate and store a word cap. Raises ValueError outside 1-500."""
        cap = validate_response_cap(value)
        self.set_config("response_cap", str(cap))
        return cap

    def get_context_mode(self, channel_id: str) -> str:
        """Return the raw stored context mode for a channel ("shared" if unset)."""
        return self.get_config(f"{CONTEXT_MODE_KEY_PREFIX}{channel_id}") or "shared"

    def set_context_mode(self, channel_id: str, mode: str) -> None:
        self.set_config(f"{CONTEXT_MODE_KEY_PREFIX}{channel_id}", str(mode))

    # ----- Messages -----

    def append_message(self, conversation_key: str, role: str, content: str) -> None:
        if role not in ROLES:
            raise ValueError(f"Unknown message role: {role}")
        self._execute(
            "INSERT INTO messages (conversation_key, role, content) VALUES (?, ?, ?)",
            (conversation_key, role, content),
        )

    def recent_messages(self, conversation_key: str, limit: int) -> List[StoredMessage]:
        """Return the last ``limit`` messages for a key, oldest first."""
        rows = self._query(
            "SELECT id, conversation_key, role, content, timestamp FROM messages "
            "WHERE conversation_key = ? "
            "ORDER BY timestamp DESC, id DESC "
            "LIMIT ?",
            (conversation_key, int(limit)),
        )
        # Fetched newest-first so LIMIT keeps the most recent rows
        return [
            StoredMessage(
                r["role"],
                r["content"],
                conversation_key=r["conversation_key"],
                id=r["id"],
                timestamp=r["timestamp"],
            )
            for r in reversed(rows)
        ]

    def clear_messages(self, conversation_key: str) -> int:
        cur = self._execute(
            "DELETE FROM messages WHERE conversation_key = ?", (conversation_key,)
        )
        return cur.rowcount

    # ----- Tracked names -----

    def add_tracked_name(self, name: str, added_by: str) -> bool:
        """Track a name. Returns False if it was already tracked (any case)."""
        cur = self._execute(
            "INSERT OR IGNORE INTO tracked_names (name, added_by, added_at) VALUES (?, ?, ?)",
            (name, added_by, time.time()),
        )
        return cur.rowcount > 0

    def remove_tracked_name(self, name: str) -> bool:
        cur = self._execute("DELETE FROM tracked_names WHERE name = ?", (name,))
        return cur.rowcount > 0

    def list_tracked_names(self) -> List[str]:
        rows = self._query("SELECT name FROM tracked_names ORDER BY name COLLATE NOCASE")
        return [r["name"] for r in rows]
