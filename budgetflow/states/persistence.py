"""
Снимок машины флоу `{state, context}` для восстановления после перезапуска.

В снимок попадает только то, что пользователь выбрал руками: экран,
пользователь, счета, категория, контрагент, заметки, дата. Суммы, курсы,
подсказки, флаги загрузки, сообщения и списки каталога отбрасываются и
заново подгружаются акторами при входе в восстановленный экран.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, replace
from typing import Any, Mapping, Optional

from budgetflow.states.context import (
    AccountRef,
    CategoryRef,
    Counterparty,
    FlowContext,
    SelectedTransaction,
    TransactionDraft,
    TransferDraft,
    UserIdentity,
)
from budgetflow.states.screens import FLOW_KINDS, Screen
from budgetflow.utils.background import fire_and_forget

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def _account(data: Any) -> AccountRef:
    data = data or {}
    return AccountRef(
        name=str(data.get("name") or ""),
        id=str(data.get("id") or ""),
        currency=str(data.get("currency") or ""),
    )


def dump_snapshot(state: Screen, ctx: FlowContext) -> dict[str, Any]:
    """JSON-совместимый снимок без временных полей."""
    draft, transfer = ctx.draft, ctx.transfer
    return {
        "version": SNAPSHOT_VERSION,
        "state": state.value,
        "context": {
            "user": asdict(ctx.user),
            "draft": {
                "kind": draft.kind,
                "user_name": draft.user_name,
                "account": asdict(draft.account),
                "category": asdict(draft.category),
                "counterparty": asdict(draft.counterparty),
                "notes": draft.notes,
                "date": draft.date,
            },
            "transfer": {
                "user_name": transfer.user_name,
                "source": asdict(transfer.source),
                "destination": asdict(transfer.destination),
                "notes": transfer.notes,
                "date": transfer.date,
            },
            "selected": {"id": ctx.selected.id},
        },
    }


def _context_from(data: Mapping[str, Any]) -> FlowContext:
    user_raw = data.get("user") or {}
    user_fields = UserIdentity.__dataclass_fields__
    user = UserIdentity(**{k: v for k, v in user_raw.items() if k in user_fields})
    if not isinstance(user.id, int):
        raise ValueError(f"user.id must be int, got {user.id!r}")

    d = data.get("draft") or {}
    category = d.get("category") or {}
    counterparty = d.get("counterparty") or {}
    draft = TransactionDraft(
        kind=str(d.get("kind") or ""),
        user_name=str(d.get("user_name") or ""),
        account=_account(d.get("account")),
        category=CategoryRef(
            id=str(category.get("id") or ""),
            name=str(category.get("name") or ""),
            budget_name=str(category.get("budget_name") or ""),
        ),
        counterparty=Counterparty(id=str(counterparty.get("id") or ""), name=str(counterparty.get("name") or "")),
        notes=str(d.get("notes") or ""),
        date=str(d.get("date") or ""),
    )

    t = data.get("transfer") or {}
    transfer = TransferDraft(
        user_name=str(t.get("user_name") or ""),
        source=_account(t.get("source")),
        destination=_account(t.get("destination")),
        notes=str(t.get("notes") or ""),
        date=str(t.get("date") or ""),
    )
    selected = SelectedTransaction(id=str((data.get("selected") or {}).get("id") or ""))
    return FlowContext(user=user, draft=draft, transfer=transfer, selected=selected)


def load_snapshot(raw: Any) -> tuple[Screen, FlowContext]:
    """(экран, контекст) из сырого снимка. Любая ошибка даёт (home, контекст по умолчанию)."""
    if raw is None:
        return Screen.HOME, FlowContext()
    try:
        if isinstance(raw, (str, bytes)):
            raw = json.loads(raw)
        context_raw = raw["context"]
        if isinstance(context_raw, (str, bytes)):
            context_raw = json.loads(context_raw)
        state = Screen(raw["state"])
        ctx = _context_from(context_raw)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning(f"[SNAPSHOT] Corrupt snapshot, starting at home: {e}")
        return Screen.HOME, FlowContext()

    if state == Screen.INITIALIZING:
        state = Screen.HOME
    if state in (Screen.TRANSACTION_DETAIL, Screen.TRANSACTION_EDIT) and not ctx.selected.id:
        state = Screen.TRANSACTIONS_LIST

    kind = FLOW_KINDS.get(state.flow or "")
    if kind and ctx.draft.kind != kind:
        ctx = replace(ctx, draft=replace(ctx.draft, kind=kind, user_name=ctx.draft.user_name or ctx.user.username))
    if state.flow == "transferFlow" and not ctx.transfer.user_name:
        ctx = replace(ctx, transfer=replace(ctx.transfer, user_name=ctx.user.username))
    return state, ctx


class SnapshotPersister:
    """Сохраняет снимок после каждого изменения машины.

    Запись идёт в фоне (`fire_and_forget`) и сериализуется одной блокировкой,
    так что в базе всегда оказывается последний снимок. Ошибка записи
    только логируется.

    Args:
        repo: Хранилище снимков (`SnapshotRepo`).
        user_id (int): Чей снимок пишем.
    """

    def __init__(self, repo, user_id: int):
        self._repo = repo
        self._user_id = user_id
        self._lock = asyncio.Lock()
        self._latest: Optional[dict[str, Any]] = None
        self._unsubscribe = None

    def attach(self, interpreter) -> None:
        self._unsubscribe = interpreter.subscribe(self.on_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_change(self, state: Screen, ctx: FlowContext) -> None:
        self._latest = dump_snapshot(state, ctx)
        fire_and_forget(self.flush(), name="snapshot-save")

    async def flush(self) -> None:
        async with self._lock:
            snapshot = self._latest
            if snapshot is None:
                return
            self._latest = None
            try:
                await self._repo.save(self._user_id, snapshot)
            except Exception as e:
                logger.warning(f"[SNAPSHOT] Failed to save snapshot for {self._user_id}: {e}")

    async def restore(self) -> Optional[dict[str, Any]]:
        """Сырой снимок из хранилища или None, если его нет или чтение упало."""
        try:
            return await self._repo.load(self._user_id)
        except Exception as e:
            logger.warning(f"[SNAPSHOT] Failed to load snapshot for {self._user_id}: {e}")
            return None
