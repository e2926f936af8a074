"""
Repository pattern for data access.

Handles database operations and data persistence logic.
"""

import json
from datetime import datetime
from typing import List, Optional, Tuple

from .db import DEFAULT_DB_PATH, get_connection
from .models import ConversationTurn, QuotaTier, Role, UsageCategory, UsageRecord

_USAGE_COLUMNS = """
    id, timestamp, user_id, model, input_tokens, output_tokens,
    input_cost, output_cost, category, metadata
"""


def _row_to_record(row) -> UsageRecord:
    return UsageRecord(
        id=row[0],
        timestamp=datetime.fromisoformat(row[1]),
        user_id=row[2],
        model=row[3],
        input_tokens=row[4],
        output_tokens=row[5],
        input_cost=row[6],
        output_cost=row[7],
        category=UsageCategory(row[8]),
        metadata=json.loads(row[9]) if row[9] else {},
    )


class UsageRepository:
    """Repository for accessing and managing usage and conversation data.

    Every method opens its own connection, so a repository can be shared
    between the event loop and worker threads.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def insert_usage_record(self, record: UsageRecord) -> None:
        """Append a single usage record to the ledger.

        Args:
            record: The usage record to store
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO usage_record
                (timestamp, user_id, model, input_tokens, output_tokens,
                 total_tokens, input_cost, output_cost, total_cost,
                 category, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.timestamp.isoformat(),
                record.user_id,
                record.model,
                record.input_tokens,
                record.output_tokens,
                record.total_tokens,
                record.input_cost,
                record.output_cost,
                record.total_cost,
                record.category.value,
                json.dumps(record.metadata, default=str),
            ))
            conn.commit()
        finally:
            conn.close()

    def fetch_usage_records(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[UsageRecord]:
        """Fetch a user's usage records, optionally bounded by time.

        Args:
            user_id: Owner of the records
            start: Inclusive lower bound on timestamp
            end: Inclusive upper bound on timestamp

        Returns:
            Usage records ordered by timestamp (oldest first)
        """
        conn = get_connection(self.db_path)
        try:
            query = f"SELECT {_USAGE_COLUMNS} FROM usage_record WHERE user_id = ?"
            params: list = [user_id]
            if start is not None:
                query += " AND timestamp >= ?"
                params.append(start.isoformat())
            if end is not None:
                query += " AND timestamp <= ?"
                params.append(end.isoformat())
            query += " ORDER BY timestamp ASC, id ASC"
            cursor = conn.execute(query, params)
            return [_row_to_record(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def sum_usage(self, user_id: str, since: datetime) -> Tuple[int, float]:
        """Aggregate tokens and cost for a user since a point in time.

        Returns:
            Tuple of (total_tokens, total_cost)
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT SUM(total_tokens), SUM(total_cost)
                FROM usage_record
                WHERE user_id = ? AND timestamp >= ?
            """, (user_id, since.isoformat()))
            row = cursor.fetchone()
            return int(row[0] or 0), float(row[1] or 0)
        finally:
            conn.close()

    def daily_costs(self, user_id: str, since: datetime) -> List[Tuple[str, float]]:
        """Cost per calendar day since a point in time, oldest day first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT substr(timestamp, 1, 10) AS day, SUM(total_cost)
                FROM usage_record
                WHERE user_id = ? AND timestamp >= ?
                GROUP BY day
                ORDER BY day ASC
            """, (user_id, since.isoformat()))
            return [(row[0], float(row[1] or 0)) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get_user_tier(self, user_id: str) -> Optional[QuotaTier]:
        """Return the tier assigned to a user, or None when unassigned."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "SELECT tier FROM user_quota WHERE user_id = ?", (user_id,)
            )
            row = cursor.fetchone()
            return QuotaTier(row[0]) if row else None
        finally:
            conn.close()

    def set_user_tier(self, user_id: str, tier: QuotaTier) -> None:
        """Assign a quota tier to a user."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO user_quota (user_id, tier, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    tier = excluded.tier,
                    updated_at = excluded.updated_at
            """, (user_id, tier.value, datetime.now().isoformat()))
            conn.commit()
        finally:
            conn.close()

    def insert_conversation_turn(self, conversation_id: str, turn: ConversationTurn) -> None:
        """Append a turn to a conversation's history."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO conversation_turn (conversation_id, role, content, timestamp)
                VALUES (?, ?, ?, ?)
            """, (conversation_id, turn.role.value, turn.content, turn.timestamp.isoformat()))
            conn.commit()
        finally:
            conn.close()

    def fetch_conversation(self, conversation_id: str, limit: Optional[int] = None) -> List[ConversationTurn]:
        """Fetch a conversation's turns in the order they were recorded.

        Args:
            conversation_id: Conversation to read
            limit: Keep only the most recent ``limit`` turns
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT role, content, timestamp FROM conversation_turn
                WHERE conversation_id = ?
                ORDER BY id ASC
            """, (conversation_id,))
            turns = [
                ConversationTurn(Role(row[0]), row[1], datetime.fromisoformat(row[2]))
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()
        if limit is not None:
            turns = turns[-limit:] if limit > 0 else []
        return turns


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the ledger tables if they don't exist.

    ``usage_record`` and ``conversation_turn`` are append-only.
    No UPDATE or DELETE operations should ever be performed on them.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage_record (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                user_id TEXT NOT NULL,
                model TEXT NOT NULL,
                input_tokens INTEGER NOT NULL,
                output_tokens INTEGER NOT NULL,
                total_tokens INTEGER NOT NULL,
                input_cost REAL NOT NULL,
                output_cost REAL NOT NULL,
                total_cost REAL NOT NULL,
                category TEXT NOT NULL,
                metadata TEXT
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_usage_user_time
            ON usage_record (user_id, timestamp)
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS user_quota (
                user_id TEXT PRIMARY KEY,
                tier TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS conversation_turn (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()
