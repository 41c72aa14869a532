"""
Repository pattern for data access.

Handles reads and appends against the usage ledger.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import UsageEntry

_COLUMNS = (
    "timestamp, model, call_type, input_tokens, completion_tokens, "
    "total_tokens, cost, success, provider_name"
)
_INSERT = f"INSERT INTO oracle_usage_entry ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"


def _to_row(entry: UsageEntry) -> tuple:
    return (
        entry.timestamp.isoformat(),
        entry.model,
        entry.call_type,
        entry.input_tokens,
        entry.completion_tokens,
        entry.total_tokens,
        entry.cost,
        1 if entry.success else 0,
        entry.provider_name,
    )


def _from_row(row: tuple) -> UsageEntry:
    return UsageEntry(
        timestamp=datetime.fromisoformat(row[0]),
        model=row[1],
        call_type=row[2],
        input_tokens=row[3],
        completion_tokens=row[4],
        cost=row[6],
        success=bool(row[7]),
        provider_name=row[8] or "",
    )


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the oracle_usage_entry table if it doesn't exist.

    This creates an append-only ledger. No UPDATE or DELETE operations
    should ever be performed on this table.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS oracle_usage_entry (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                model TEXT NOT NULL,
                call_type TEXT NOT NULL,
                input_tokens INTEGER NOT NULL,
                completion_tokens INTEGER NOT NULL,
                total_tokens INTEGER NOT NULL,
                cost REAL NOT NULL,
                success INTEGER NOT NULL DEFAULT 1,
                provider_name TEXT
            )
        """)
        conn.commit()
    finally:
        conn.close()


def insert_usage_entry(entry: UsageEntry, db_path: str = DEFAULT_DB_PATH) -> None:
    """Append a single usage entry to the ledger.

    Args:
        entry: The usage entry to record
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute(_INSERT, _to_row(entry))
        conn.commit()
    finally:
        conn.close()


def insert_usage_entries(entries: List[UsageEntry], db_path: str = DEFAULT_DB_PATH) -> None:
    """Append multiple usage entries atomically.

    All entries are inserted in a single transaction to ensure consistency.

    Args:
        entries: List of usage entries to record
        db_path: Path to SQLite database file
    """
    if not entries:
        return

    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN TRANSACTION")
        conn.executemany(_INSERT, [_to_row(entry) for entry in entries])
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def fetch_recent_usage_entries(
    call_type: Optional[str] = None,
    model: Optional[str] = None,
    limit: int = 100,
    db_path: str = DEFAULT_DB_PATH
) -> List[UsageEntry]:
    """Fetch recent usage entries, optionally filtered by call type and model.

    Args:
        call_type: Optional filter for a specific call type
        model: Optional filter for a specific model
        limit: Maximum number of entries to return
        db_path: Path to SQLite database file

    Returns:
        List of usage entries ordered by timestamp (newest first)
    """
    conn = get_connection(db_path)
    try:
        query = f"SELECT {_COLUMNS} FROM oracle_usage_entry"
        params: list = []
        conditions = []
        if call_type:
            conditions.append("call_type = ?")
            params.append(call_type)
        if model:
            conditions.append("model = ?")
            params.append(model)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        cursor = conn.execute(query, params)
        return [_from_row(row) for row in cursor.fetchall()]
    finally:
        conn.close()


class UsageRepository:
    """Repository for the usage ledger.

    Thin object wrapper over the module functions, bound to one database
    file so it can be handed to the cost tracker.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, initialize: bool = True):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
            initialize: Create the table if it does not exist
        """
        self.db_path = db_path
        if initialize:
            initialize_schema(db_path)

    def record(self, entry: UsageEntry) -> None:
        insert_usage_entry(entry, self.db_path)

    def get_recent_entries(
        self,
        call_type: Optional[str] = None,
        model: Optional[str] = None,
        limit: int = 1000
    ) -> List[UsageEntry]:
        return fetch_recent_usage_entries(call_type, model, limit, self.db_path)

    def get_usage_stats(
        self,
        call_type: Optional[str] = None,
        model: Optional[str] = None,
        days: int = 30
    ) -> Dict[str, float]:
        """Get usage statistics for the specified time period.

        Args:
            call_type: Optional filter for a specific call type
            model: Optional filter for a specific model
            days: Number of days to include in the statistics

        Returns:
            Dictionary containing usage statistics
        """
        conn = get_connection(self.db_path)
        try:
            cutoff = (datetime.now() - timedelta(days=days)).isoformat()

            query = """
                SELECT
                    COUNT(*) as total_calls,
                    SUM(cost) as total_cost,
                    AVG(cost) as avg_cost,
                    SUM(total_tokens) as total_tokens,
                    SUM(CASE WHEN success = 0 THEN 1 ELSE 0 END) as failed_calls
                FROM oracle_usage_entry
                WHERE timestamp >= ?
            """
            params = [cutoff]

            if call_type:
                query += " AND call_type = ?"
                params.append(call_type)
            if model:
                query += " AND model = ?"
                params.append(model)

            row = conn.execute(query, params).fetchone()

            return {
                "total_calls": row[0] or 0,
                "total_cost": float(row[1] or 0),
                "avg_cost": float(row[2] or 0),
                "total_tokens": row[3] or 0,
                "failed_calls": row[4] or 0,
            }
        finally:
            conn.close()

    def usage_by_call_type(self, days: int = 30) -> Dict[str, Dict[str, float]]:
        """Per call type totals for the specified time period."""
        conn = get_connection(self.db_path)
        try:
            cutoff = (datetime.now() - timedelta(days=days)).isoformat()
            cursor = conn.execute("""
                SELECT call_type, COUNT(*), SUM(total_tokens), SUM(cost)
                FROM oracle_usage_entry
                WHERE timestamp >= ?
                GROUP BY call_type
                ORDER BY call_type
            """, (cutoff,))
            return {
                row[0]: {
                    "calls": row[1],
                    "total_tokens": row[2] or 0,
                    "total_cost": float(row[3] or 0),
                }
                for row in cursor.fetchall()
            }
        finally:
            conn.close()
