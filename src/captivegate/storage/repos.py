"""Repository classes for async access to submission history."""

from __future__ import annotations

import aiosqlite

from captivegate.session.models import SubmissionRecord


class SubmissionRepo:
    """Submission history, kept for the operator API."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def create(self, record: SubmissionRecord) -> None:
        await self._db.execute(
            "INSERT INTO submissions "
            "(id, client, outcome, reason, timestamp) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                record.id,
                record.client,
                record.outcome.value,
                record.reason,
                record.timestamp,
            ),
        )
        await self._db.commit()

    async def list_all(
        self,
        limit: int = 50,
        offset: int = 0,
        client: str | None = None,
    ) -> list[dict]:
        if client:
            cursor = await self._db.execute(
                "SELECT * FROM submissions WHERE client = ? "
                "ORDER BY timestamp DESC LIMIT ? OFFSET ?",
                (client, limit, offset),
            )
        else:
            cursor = await self._db.execute(
                "SELECT * FROM submissions ORDER BY timestamp DESC LIMIT ? OFFSET ?",
                (limit, offset),
            )
        return [dict(row) async for row in cursor]

    async def count_by_outcome(self) -> dict[str, int]:
        cursor = await self._db.execute(
            "SELECT outcome, COUNT(*) AS n FROM submissions GROUP BY outcome"
        )
        return {row["outcome"]: row["n"] async for row in cursor}
