from __future__ import annotations
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, Integer, String, Text, Float, DateTime, UniqueConstraint, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()

class CacheEntry(Base):
    """Долговременный слой кэша: одна строка на (namespace, key)."""
    __tablename__ = "cache_entries"
    id = Column(Integer, primary_key=True, autoincrement=True)
    namespace = Column(String(32), nullable=False)   # accounts | categories | exchange_rate | ...
    key = Column(String(255), nullable=False)        # составной ключ, см. services.cache.make_key
    value_json = Column(Text, nullable=False)
    stored_at = Column(Float, nullable=False)        # unix time записи

    __table_args__ = (
        UniqueConstraint("namespace", "key", name="uq_cache_namespace_key"),
        Index("ix_cache_namespace_stored_at", "namespace", "stored_at"),
    )

class FlowSnapshot(Base):
    """Последний снимок машины флоу для пользователя (для возобновления после перезапуска)."""
    __tablename__ = "flow_snapshots"
    user_id = Column(BigInteger, primary_key=True)   # id пользователя хоста
    state = Column(String(64), nullable=False)
    context_json = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
