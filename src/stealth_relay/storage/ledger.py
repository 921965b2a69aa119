"""Ledger of items forwarded to the vault.

Best-effort on-disk index: it keeps view-once forwards at-most-once across
restarts. A ledger error never blocks a capture.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from stealth_relay.log import get_logger
from stealth_relay.storage.database import Database
from stealth_relay.storage.models import ForwardedItem

logger = get_logger(__name__)


def _to_db_time(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="milliseconds")


class ForwardLedger:
    """Records and queries successful vault forwards."""

    def __init__(self, db: Database):
        self._db = db

    async def record(self, item: ForwardedItem) -> bool:
        """Persist a forward. Returns False if it could not be written."""
        try:
            await self._db.conn.execute(
                """INSERT OR IGNORE INTO forwarded_items
                   (account_id, message_id, kind, media_kind, recovered,
                    sender_id, group_context, forwarded_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    item.account_id,
                    item.message_id,
                    item.kind,
                    item.media_kind,
                    int(item.recovered),
                    item.sender_id,
                    item.group_context,
                    _to_db_time(item.forwarded_at),
                ),
            )
            await self._db.conn.commit()
        except Exception as e:
            logger.warning(
                "ledger_record_failed",
                account_id=item.account_id,
                message_id=item.message_id,
                error=str(e),
            )
            return False
        return True

    async def was_forwarded(self, account_id: str, message_id: str, kind: str) -> bool:
        try:
            cursor = await self._db.conn.execute(
                """SELECT 1 FROM forwarded_items
                   WHERE account_id = ? AND message_id = ? AND kind = ?
                   LIMIT 1""",
                (account_id, message_id, kind),
            )
            row = await cursor.fetchone()
        except Exception as e:
            logger.warning(
                "ledger_lookup_failed",
                account_id=account_id,
                message_id=message_id,
                error=str(e),
            )
            return False
        return row is not None

    async def list_recent(self, account_id: str, limit: int = 20) -> list[ForwardedItem]:
        cursor = await self._db.conn.execute(
            """SELECT * FROM forwarded_items
               WHERE account_id = ?
               ORDER BY forwarded_at DESC
               LIMIT ?""",
            (account_id, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_item(row) for row in rows]

    async def counts(self) -> dict[str, dict[str, int]]:
        """``{account_id: {kind: count}}`` across the whole ledger."""
        cursor = await self._db.conn.execute(
            """SELECT account_id, kind, COUNT(*) AS n FROM forwarded_items
               GROUP BY account_id, kind"""
        )
        rows = await cursor.fetchall()
        result: dict[str, dict[str, int]] = {}
        for row in rows:
            result.setdefault(row["account_id"], {})[row["kind"]] = row["n"]
        return result

    async def prune(self, older_than_days: int) -> int:
        """Delete entries older than the horizon. Returns number of deleted rows."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        cursor = await self._db.conn.execute(
            "DELETE FROM forwarded_items WHERE forwarded_at < ?",
            (_to_db_time(cutoff),),
        )
        await self._db.conn.commit()
        return cursor.rowcount

    @staticmethod
    def _row_to_item(row) -> ForwardedItem:
        return ForwardedItem(
            id=row["id"],
            account_id=row["account_id"],
            message_id=row["message_id"],
            kind=row["kind"],
            media_kind=row["media_kind"],
            recovered=bool(row["recovered"]),
            sender_id=row["sender_id"],
            group_context=row["group_context"],
            forwarded_at=datetime.fromisoformat(row["forwarded_at"]).replace(tzinfo=timezone.utc),
        )
