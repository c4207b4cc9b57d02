"""SQLite store for the settings bundle, the trigger log and tunables."""

import json
import os
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import aiosqlite


class CacheManager:
    """Owns the hub database: versioned JSON rows, event log and config."""

    def __init__(self, db_path: str):
        """Initialize cache manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None

    async def initialize(self):
        """Open the database and create missing tables."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row

        # WAL so the API can read while a check pass writes
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA busy_timeout=5000")

        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS cache (
                category TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                last_updated TEXT NOT NULL
            )
        """)

        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                event_type TEXT NOT NULL,
                category TEXT,
                data TEXT
            )
        """)

        await self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_events_timestamp
            ON events(timestamp DESC)
        """)

        await self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_events_type
            ON events(event_type)
        """)

        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS config (
                key TEXT PRIMARY KEY,
                value TEXT,
                default_value TEXT,
                value_type TEXT NOT NULL,
                label TEXT,
                description TEXT,
                category TEXT,
                min_value REAL,
                max_value REAL,
                options TEXT,
                step REAL,
                updated_at TEXT NOT NULL
            )
        """)

        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS config_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                key TEXT NOT NULL,
                old_value TEXT,
                new_value TEXT,
                changed_at TEXT NOT NULL,
                changed_by TEXT
            )
        """)

        await self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_config_history_key
            ON config_history(key)
        """)

        await self._conn.commit()

    async def close(self):
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Cache not initialized. Call initialize() first.")
        return self._conn

    async def get(self, category: str) -> Optional[Dict[str, Any]]:
        """Get a stored row by category.

        Args:
            category: Cache category (e.g., "flowchecker.settings")

        Returns:
            Entry with data, version and last_updated, or None if not found
        """
        conn = self._require_conn()

        cursor = await conn.execute("SELECT * FROM cache WHERE category = ?", (category,))
        row = await cursor.fetchone()

        if not row:
            return None

        return {
            "category": row["category"],
            "data": json.loads(row["data"]),
            "version": row["version"],
            "last_updated": row["last_updated"],
        }

    async def set(self, category: str, data: Any) -> int:
        """Replace a row as a whole, incrementing its version.

        Args:
            category: Cache category
            data: Data to store (will be JSON-serialized)

        Returns:
            New version number
        """
        conn = self._require_conn()

        current = await self.get(category)
        new_version = (current["version"] + 1) if current else 1

        await conn.execute(
            """
            INSERT INTO cache (category, data, version, last_updated)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(category) DO UPDATE SET
                data = excluded.data,
                version = excluded.version,
                last_updated = excluded.last_updated
            """,
            (
                category,
                json.dumps(data),
                new_version,
                datetime.now().isoformat(),
            ),
        )
        await conn.commit()

        return new_version

    # ========================================================================
    # Event log
    # ========================================================================

    async def log_event(
        self,
        event_type: str,
        category: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ):
        """Append an event to the events table.

        Args:
            event_type: Type of event (e.g., "trigger", "check_completed")
            category: Problem category the event relates to (optional)
            data: Event data (optional)
        """
        conn = self._require_conn()

        await conn.execute(
            """
            INSERT INTO events (timestamp, event_type, category, data)
            VALUES (?, ?, ?, ?)
            """,
            (
                datetime.now().isoformat(),
                event_type,
                category,
                json.dumps(data) if data else None,
            ),
        )
        await conn.commit()

    async def get_events(
        self, event_type: Optional[str] = None, category: Optional[str] = None, limit: int = 100
    ) -> List[Dict[str, Any]]:
        """Get recent events, newest first.

        Args:
            event_type: Filter by event type (optional)
            category: Filter by category (optional)
            limit: Maximum number of events to return
        """
        conn = self._require_conn()

        query = "SELECT * FROM events WHERE 1=1"
        params: list = []

        if event_type:
            query += " AND event_type = ?"
            params.append(event_type)

        if category:
            query += " AND category = ?"
            params.append(category)

        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()

        return [
            {
                "id": row["id"],
                "timestamp": row["timestamp"],
                "event_type": row["event_type"],
                "category": row["category"],
                "data": json.loads(row["data"]) if row["data"] else None,
            }
            for row in rows
        ]

    async def prune_events(self, retention_days: int = 7) -> int:
        """Delete events older than retention_days. Returns count deleted."""
        conn = self._require_conn()

        cutoff = (datetime.now() - timedelta(days=retention_days)).isoformat()
        cursor = await conn.execute("DELETE FROM events WHERE timestamp < ?", (cutoff,))
        await conn.commit()
        return cursor.rowcount

    # ========================================================================
    # Config store
    # ========================================================================

    async def get_config(self, key: str) -> Optional[Dict[str, Any]]:
        """Get a single config parameter by key, or None."""
        conn = self._require_conn()

        cursor = await conn.execute("SELECT * FROM config WHERE key = ?", (key,))
        row = await cursor.fetchone()
        if not row:
            return None
        return self._config_from_row(row)

    async def get_all_config(self) -> List[Dict[str, Any]]:
        """Get all config parameters, ordered by category then key."""
        conn = self._require_conn()

        cursor = await conn.execute("SELECT * FROM config ORDER BY category, key")
        rows = await cursor.fetchall()
        return [self._config_from_row(row) for row in rows]

    async def set_config(self, key: str, value: Any, changed_by: str = "user") -> Dict[str, Any]:
        """Update a config parameter value with validation and history.

        Args:
            key: Config parameter key.
            value: New value. Stored as text.
            changed_by: Who made the change.

        Returns:
            Updated config dict.

        Raises:
            ValueError: If key not found or value fails validation.
        """
        conn = self._require_conn()

        current = await self.get_config(key)
        if current is None:
            raise ValueError(f"Config key not found: {key}")

        value = self._encode_config_value(value)
        self._validate_config_value(value, current)

        old_value = current["value"]
        now = datetime.now().isoformat()

        await conn.execute(
            "UPDATE config SET value = ?, updated_at = ? WHERE key = ?",
            (value, now, key),
        )
        await conn.execute(
            """INSERT INTO config_history (key, old_value, new_value, changed_at, changed_by)
               VALUES (?, ?, ?, ?, ?)""",
            (key, old_value, value, now, changed_by),
        )

        await conn.commit()
        return await self.get_config(key)

    async def upsert_config_default(
        self,
        key: str,
        default_value: str,
        value_type: str,
        label: str = "",
        description: str = "",
        category: str = "",
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        options: Optional[str] = None,
        step: Optional[float] = None,
    ) -> bool:
        """Insert a config default if the key doesn't already exist.

        Uses INSERT OR IGNORE so user overrides are preserved.

        Returns:
            True if inserted, False if key already existed.
        """
        conn = self._require_conn()

        now = datetime.now().isoformat()
        cursor = await conn.execute(
            """INSERT OR IGNORE INTO config
               (key, value, default_value, value_type, label, description,
                category, min_value, max_value, options, step, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                key, default_value, default_value, value_type, label,
                description, category, min_value, max_value, options,
                step, now,
            ),
        )
        await conn.commit()
        return cursor.rowcount > 0

    async def reset_config(self, key: str, changed_by: str = "user") -> Dict[str, Any]:
        """Reset a config parameter to its default value.

        Raises:
            ValueError: If key not found.
        """
        current = await self.get_config(key)
        if current is None:
            raise ValueError(f"Config key not found: {key}")

        return await self.set_config(key, current["default_value"], changed_by)

    async def get_config_value(self, key: str, fallback: Any = None) -> Any:
        """Get a config value decoded to its native type, or fallback."""
        config = await self.get_config(key)
        if config is None:
            return fallback
        return self._decode_config_value(config["value"], config["value_type"])

    async def get_config_history(self, key: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        """Get config change history, most recent first."""
        conn = self._require_conn()

        query = "SELECT * FROM config_history WHERE 1=1"
        params: list = []

        if key is not None:
            query += " AND key = ?"
            params.append(key)

        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()

        return [
            {
                "id": row["id"],
                "key": row["key"],
                "old_value": row["old_value"],
                "new_value": row["new_value"],
                "changed_at": row["changed_at"],
                "changed_by": row["changed_by"],
            }
            for row in rows
        ]

    # ========================================================================
    # Internal helpers
    # ========================================================================

    def _config_from_row(self, row: aiosqlite.Row) -> Dict[str, Any]:
        return {
            "key": row["key"],
            "value": row["value"],
            "default_value": row["default_value"],
            "value_type": row["value_type"],
            "label": row["label"],
            "description": row["description"],
            "category": row["category"],
            "min_value": row["min_value"],
            "max_value": row["max_value"],
            "options": row["options"],
            "step": row["step"],
            "updated_at": row["updated_at"],
        }

    @staticmethod
    def _encode_config_value(value: Any) -> str:
        # JSON bodies arrive typed; the table stores text
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    @staticmethod
    def _decode_config_value(value: str, value_type: str) -> Any:
        """Decode a config value string to its native Python type."""
        if value is None:
            return None
        if value_type == "number":
            try:
                f = float(value)
                return int(f) if f == int(f) else f
            except (ValueError, TypeError):
                return value
        if value_type == "boolean":
            return value.lower() in ("true", "1", "yes")
        return value

    @staticmethod
    def _validate_config_value(value: str, config: Dict[str, Any]) -> None:
        """Validate a config value against constraints.

        Raises ValueError if validation fails.
        """
        vtype = config.get("value_type", "string")
        if vtype == "number":
            try:
                num = float(value)
            except (ValueError, TypeError):
                raise ValueError(f"Expected number, got: {value}") from None

            min_val = config.get("min_value")
            max_val = config.get("max_value")
            if min_val is not None and num < min_val:
                raise ValueError(f"Value {num} below minimum {min_val}")
            if max_val is not None and num > max_val:
                raise ValueError(f"Value {num} above maximum {max_val}")

        elif vtype == "boolean":
            if value.lower() not in ("true", "false", "1", "0", "yes", "no"):
                raise ValueError(f"Expected boolean, got: {value}")

        elif vtype == "select":
            options_str = config.get("options", "")
            if options_str:
                valid = [o.strip() for o in options_str.split(",")]
                if value not in valid:
                    raise ValueError(f"Value '{value}' not in options: {valid}")
