from __future__ import annotations
import json
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from budgetflow.db.models import FlowSnapshot


class SnapshotRepo:
    """Хранение последнего снимка машины флоу по id пользователя хоста."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        if session_factory is None:
            from budgetflow.db import SessionLocal
            session_factory = SessionLocal
        self._session_factory = session_factory

    async def save(self, user_id: int, snapshot: dict[str, Any]) -> None:
        state = str(snapshot.get("state") or "")
        context_json = json.dumps(snapshot.get("context") or {}, ensure_ascii=False)
        async with self._session_factory() as session:
            row = (await session.execute(
                select(FlowSnapshot).where(FlowSnapshot.user_id == user_id)
            )).scalar_one_or_none()
            if row is None:
                session.add(FlowSnapshot(user_id=user_id, state=state, context_json=context_json))
            else:
                row.state = state
                row.context_json = context_json
                row.updated_at = datetime.now(timezone.utc)
            await session.commit()

    async def load(self, user_id: int) -> Optional[dict[str, Any]]:
        """Сырые данные снимка или None. Битый JSON контекста отдаётся строкой,
        разбор и откат на home делает `states.persistence.load_snapshot`."""
        async with self._session_factory() as session:
            row = (await session.execute(
                select(FlowSnapshot).where(FlowSnapshot.user_id == user_id)
            )).scalar_one_or_none()
            if row is None:
                return None
            try:
                context = json.loads(row.context_json)
            except json.JSONDecodeError:
                context = row.context_json
            return {"state": row.state, "context": context}

    async def delete(self, user_id: int) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(FlowSnapshot).where(FlowSnapshot.user_id == user_id))
            await session.commit()
