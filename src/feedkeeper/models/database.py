"""数据库引擎、会话工厂与 schema 迁移."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from feedkeeper.errors import StorageError
from feedkeeper.models.article import Article  # noqa: F401
from feedkeeper.models.feed import Feed  # noqa: F401
from feedkeeper.models.schema import SchemaVersion
from feedkeeper.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

# 当前 schema 版本；新增迁移时递增并在 MIGRATIONS 中登记
SCHEMA_VERSION = 2


def create_engine(database_url: str) -> AsyncEngine:
    """创建异步引擎，SQLite 连接启用 WAL 和外键约束."""
    engine = create_async_engine(database_url, echo=False)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """创建会话工厂."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def _table_names(conn: AsyncConnection) -> set[str]:
    result = await conn.execute(
        text("SELECT name FROM sqlite_master WHERE type = 'table'")
    )
    return {row[0] for row in result.fetchall()}


async def _table_columns(conn: AsyncConnection, table: str) -> list[str]:
    result = await conn.execute(text(f"PRAGMA table_info({table})"))
    return [row[1] for row in result.fetchall()]


async def _migrate_v2(conn: AsyncConnection) -> None:
    """v2: 文章收藏标记与 Feed 去重策略."""
    article_columns = await _table_columns(conn, "articles")
    if "starred" not in article_columns:
        logger.info("添加 articles.starred 列")
        await conn.execute(
            text("ALTER TABLE articles ADD COLUMN starred BOOLEAN NOT NULL DEFAULT 0")
        )

    feed_columns = await _table_columns(conn, "feeds")
    if "dedup_strategy" not in feed_columns:
        logger.info("添加 feeds.dedup_strategy 列")
        await conn.execute(
            text(
                "ALTER TABLE feeds ADD COLUMN dedup_strategy "
                "VARCHAR NOT NULL DEFAULT 'auto'"
            )
        )


MIGRATIONS: dict[int, Callable[[AsyncConnection], Awaitable[None]]] = {
    2: _migrate_v2,
}


async def get_schema_version(conn: AsyncConnection) -> int | None:
    """读取 schema 版本；全新数据库返回 None."""
    tables = await _table_names(conn)
    if "schema_version" in tables:
        result = await conn.execute(
            text("SELECT version FROM schema_version WHERE id = 1")
        )
        row = result.first()
        if row is not None:
            return int(row[0])

    # 早于版本记录的数据库
    if "feeds" in tables:
        return 1
    return None


async def _set_schema_version(conn: AsyncConnection, version: int) -> None:
    stmt = sqlite_insert(SchemaVersion.__table__).values(  # type: ignore[attr-defined]
        id=1, version=version, updated_at=utcnow()
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["id"],
        set_={"version": stmt.excluded.version, "updated_at": stmt.excluded.updated_at},
    )
    await conn.execute(stmt)


async def init_db(engine: AsyncEngine) -> int:
    """初始化数据库：首次运行建表，旧版本依次执行前向迁移.

    迁移中的每一步都先检查列是否存在，中途崩溃后重新执行是安全的。

    Returns:
        迁移后的 schema 版本
    """
    async with engine.begin() as conn:
        version = await get_schema_version(conn)

        if version is None:
            await conn.run_sync(SQLModel.metadata.create_all)
            await _set_schema_version(conn, SCHEMA_VERSION)
            logger.info(f"数据库已初始化，schema 版本 {SCHEMA_VERSION}")
            return SCHEMA_VERSION

    if version > SCHEMA_VERSION:
        msg = f"数据库 schema 版本 {version} 高于程序支持的 {SCHEMA_VERSION}，不支持降级"
        raise StorageError(msg)

    for target in range(version + 1, SCHEMA_VERSION + 1):
        logger.info(f"执行 schema 迁移: v{target - 1} -> v{target}")
        async with engine.begin() as conn:
            await MIGRATIONS[target](conn)
            await conn.run_sync(SQLModel.metadata.create_all)
            await _set_schema_version(conn, target)

    if version == SCHEMA_VERSION:
        # 补建可能缺失的表（例如旧库中没有 schema_version）
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    return SCHEMA_VERSION
