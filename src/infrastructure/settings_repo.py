# src/infrastructure/settings_repo.py
from typing import Dict, List, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from src.infrastructure.crypto import decrypt_token, encrypt_token
from src.models.app_setting import AppSetting
from src.schemas.connection_schema import Platform, PlatformConnection, platform_connection_adapter, utcnow
from src.services.errors import PersistenceError

logger = structlog.get_logger(__name__)

CONNECTION_KEY_PREFIX = "oauth_"
_TOKEN_FIELDS = ("access_token", "refresh_token")

# dialects with INSERT .. ON CONFLICT DO UPDATE
_UPSERT_INSERTS = {"sqlite": sqlite_insert, "postgresql": pg_insert}


def connection_key(platform: Platform) -> str:
    return f"{CONNECTION_KEY_PREFIX}{Platform(platform).value}"


def _serialize(connection: PlatformConnection) -> dict:
    value = connection.model_dump(mode="json")
    for name in _TOKEN_FIELDS:
        value[name] = encrypt_token(value.get(name))
    return value


def _deserialize(value: dict) -> PlatformConnection:
    data = dict(value)
    for name in _TOKEN_FIELDS:
        data[name] = decrypt_token(data.get(name))
    return platform_connection_adapter.validate_python(data)


def _dialect_insert(session: AsyncSession):
    dialect = session.bind.dialect.name
    try:
        return _UPSERT_INSERTS[dialect]
    except KeyError:
        raise PersistenceError(f"Upsert not supported on {dialect}")


class ConnectionRepository:
    """
    Keyed storage of PlatformConnection records in the ``app_settings`` table.
    One row per platform; no caching, every read goes to the database.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(self, *connections: PlatformConnection) -> None:
        """
        Write all given connections in a single transaction. Each row is an
        insert-or-update on the key, so racing writers never collide on the
        primary key and the last commit wins.
        """
        insert = _dialect_insert(self.session)
        try:
            for connection in connections:
                stmt = insert(AppSetting).values(
                    key=connection_key(connection.platform),
                    value=_serialize(connection),
                    updated_at=utcnow(),
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["key"],
                    set_={"value": stmt.excluded["value"], "updated_at": stmt.excluded["updated_at"]},
                )
                await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            platforms = [c.platform for c in connections]
            logger.exception("connection_store_failed", platforms=platforms, error=str(exc))
            raise PersistenceError(f"Failed to store {', '.join(platforms)} connection") from exc
        logger.info("connections_stored", platforms=[c.platform for c in connections])

    async def get(self, platform: Platform) -> Optional[PlatformConnection]:
        key = connection_key(platform)
        try:
            q = select(AppSetting).where(AppSetting.key == key).execution_options(populate_existing=True)
            res = await self.session.execute(q)
            row = res.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.exception("connection_read_failed", key=key, error=str(exc))
            raise PersistenceError(f"Failed to read {key}") from exc
        if row is None or not row.value:
            return None
        return self._load(key, row.value)

    async def list_by_prefix(self, prefix: str = CONNECTION_KEY_PREFIX) -> Dict[str, PlatformConnection]:
        """
        Return connections whose key starts with ``prefix``, keyed by platform name.
        """
        try:
            q = (
                select(AppSetting)
                .where(AppSetting.key.startswith(prefix, autoescape=True))
                .execution_options(populate_existing=True)
            )
            res = await self.session.execute(q)
            rows: List[AppSetting] = res.scalars().all()
        except SQLAlchemyError as exc:
            logger.exception("connection_list_failed", prefix=prefix, error=str(exc))
            raise PersistenceError("Failed to list connections") from exc
        connections = {}
        for row in rows:
            if not row.value:
                continue
            connection = self._load(row.key, row.value)
            connections[connection.platform] = connection
        return connections

    async def delete(self, *platforms: Platform) -> None:
        """
        Delete the records of every given platform in one transaction.
        Missing records are ignored.
        """
        keys = [connection_key(p) for p in platforms]
        try:
            await self.session.execute(delete(AppSetting).where(AppSetting.key.in_(keys)))
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.exception("connection_delete_failed", keys=keys, error=str(exc))
            raise PersistenceError("Failed to delete connection") from exc
        logger.info("connections_deleted", keys=keys)

    @staticmethod
    def _load(key: str, value: dict) -> PlatformConnection:
        try:
            return _deserialize(value)
        except ValidationError as exc:
            logger.error("connection_record_invalid", key=key, error=str(exc))
            raise PersistenceError(f"Stored connection {key} is unreadable") from exc
