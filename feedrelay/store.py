from pathlib import Path
from time import time
from typing import Any

from sqlalchemy import Column, Integer, JSON, String, Text
from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, create_engine, select

from .config import settings

engine: Engine | None = None


def _db_path() -> Path:
    path = Path(settings.CACHE_DB_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def refresh_engine() -> None:
    global engine
    if engine is not None:
        engine.dispose()
    db_path = _db_path()
    engine = create_engine(f"sqlite:///{db_path}", echo=False)


def _get_engine() -> Engine:
    global engine
    desired = str(_db_path())
    if engine is None or engine.url.database != desired:
        refresh_engine()
    assert engine is not None
    return engine


class Channel(SQLModel, table=True):
    ref: str = Field(primary_key=True)
    platform: str = Field(sa_column=Column(String, nullable=False))
    channel_id: str = Field(sa_column=Column(String, nullable=False))
    feeds: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    updated_at: int = Field(sa_column=Column(Integer, nullable=False))


class OutboxMessage(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    channel_ref: str = Field(sa_column=Column(String, nullable=False, index=True))
    message: str = Field(sa_column=Column(Text, nullable=False))
    created_at: int = Field(sa_column=Column(Integer, nullable=False))


def init_db():
    _prepare_schema()


def _prepare_schema() -> Engine:
    eng = _get_engine()
    SQLModel.metadata.create_all(eng)
    return eng


def _split_ref(ref: str) -> tuple[str, str]:
    platform, _, channel_id = ref.partition(":")
    return platform, channel_id


def get_subscription_list(ref: str) -> list[str]:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = session.get(Channel, ref)
        if row is None:
            return []
        return list(row.feeds or [])


def set_subscription_list(ref: str, feeds: list[str]) -> None:
    eng = _prepare_schema()
    now = int(time())
    with Session(eng) as session:
        row = session.get(Channel, ref)
        if row is None:
            platform, channel_id = _split_ref(ref)
            row = Channel(ref=ref, platform=platform, channel_id=channel_id, updated_at=now)
        # reassign so the JSON column is flagged dirty
        row.feeds = list(feeds)
        row.updated_at = now
        session.add(row)
        session.commit()


def get_all_assigned_channels() -> list[tuple[str, list[str]]]:
    eng = _prepare_schema()
    with Session(eng) as session:
        statement = select(Channel).order_by(Channel.ref)
        return [
            (row.ref, list(row.feeds or []))
            for row in session.exec(statement)
            if row.feeds
        ]


def outbox_write(ref: str, message: str) -> None:
    eng = _prepare_schema()
    with Session(eng) as session:
        session.add(OutboxMessage(channel_ref=ref, message=message, created_at=int(time())))
        session.commit()


def outbox_list(ref: str, limit: int = 100, offset: int = 0) -> list[dict[str, Any]]:
    eng = _prepare_schema()
    with Session(eng) as session:
        statement = (
            select(OutboxMessage)
            .where(OutboxMessage.channel_ref == ref)
            .order_by(OutboxMessage.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return [
            {
                "id": row.id,
                "message": row.message,
                "created_at": row.created_at,
            }
            for row in session.exec(statement)
        ]
