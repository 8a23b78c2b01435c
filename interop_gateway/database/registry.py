"""
External system registry backed by the SQL store.
"""

import logging
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import select

from interop_gateway.database.connection import Database
from interop_gateway.database.models import ExternalSystemModel, as_utc, utcnow
from interop_gateway.exceptions import DuplicateSystemError, NotFoundError
from interop_gateway.models.external_system import (
    ExternalSystem,
    ExternalSystemCreate,
    ExternalSystemUpdate,
    SyncStatus,
    SystemType,
)

logger = logging.getLogger(__name__)


def _to_domain(row: ExternalSystemModel) -> ExternalSystem:
    system = ExternalSystem.model_validate(row)
    return system.model_copy(
        update={
            "last_sync": as_utc(system.last_sync),
            "created_at": as_utc(system.created_at),
            "updated_at": as_utc(system.updated_at),
        }
    )


class ExternalSystemRegistry:
    """CRUD and sync-status bookkeeping for partner systems."""

    def __init__(self, database: Database):
        self.database = database

    async def create(self, data: ExternalSystemCreate) -> ExternalSystem:
        async with self.database.session() as session:
            await self._ensure_unique_name(session, data.name)
            row = ExternalSystemModel(
                id=str(uuid4()),
                name=data.name,
                type=data.type.value,
                base_url=data.base_url,
                auth_type=data.auth_type.value,
                credentials=data.credentials.model_dump(),
                configuration=dict(data.configuration),
                is_active=data.is_active,
                sync_status=SyncStatus.IDLE.value,
            )
            session.add(row)
            await session.flush()
            logger.info("Registered external system %s (%s)", row.name, row.type)
            return _to_domain(row)

    async def get(self, system_id: str) -> ExternalSystem:
        async with self.database.session() as session:
            row = await session.get(ExternalSystemModel, system_id)
            if row is None:
                raise NotFoundError("ExternalSystem", system_id)
            return _to_domain(row)

    async def list(
        self,
        system_type: Optional[SystemType] = None,
        is_active: Optional[bool] = None,
    ) -> List[ExternalSystem]:
        query = select(ExternalSystemModel).order_by(ExternalSystemModel.name)
        if system_type is not None:
            query = query.where(ExternalSystemModel.type == SystemType(system_type).value)
        if is_active is not None:
            query = query.where(ExternalSystemModel.is_active == is_active)

        async with self.database.session() as session:
            result = await session.execute(query)
            return [_to_domain(row) for row in result.scalars().all()]

    async def update(self, system_id: str, changes: ExternalSystemUpdate) -> ExternalSystem:
        values = changes.model_dump(exclude_unset=True)
        async with self.database.session() as session:
            row = await session.get(ExternalSystemModel, system_id)
            if row is None:
                raise NotFoundError("ExternalSystem", system_id)
            if values.get("name") and values["name"] != row.name:
                await self._ensure_unique_name(session, values["name"])

            for key, value in values.items():
                if value is None and key != "configuration":
                    continue
                if key in ("type", "auth_type"):
                    value = value.value
                setattr(row, key, value)
            row.updated_at = utcnow()
            await session.flush()
            logger.info("Updated external system %s: %s", row.name, sorted(values))
            return _to_domain(row)

    async def delete(self, system_id: str) -> None:
        async with self.database.session() as session:
            row = await session.get(ExternalSystemModel, system_id)
            if row is None:
                raise NotFoundError("ExternalSystem", system_id)
            await session.delete(row)
            logger.info("Deleted external system %s", row.name)

    async def update_sync_status(
        self,
        system_id: str,
        status: SyncStatus,
        *,
        error_message: Optional[str] = None,
    ) -> None:
        """Record a sync outcome. SUCCESS stamps ``last_sync`` and clears the error."""
        async with self.database.session() as session:
            row = await session.get(ExternalSystemModel, system_id)
            if row is None:
                raise NotFoundError("ExternalSystem", system_id)
            row.sync_status = SyncStatus(status).value
            if status == SyncStatus.SUCCESS:
                row.last_sync = utcnow()
                row.error_message = None
            elif status == SyncStatus.FAILED:
                row.error_message = error_message

    async def _ensure_unique_name(self, session, name: str) -> None:
        result = await session.execute(select(ExternalSystemModel.id).where(ExternalSystemModel.name == name))
        if result.first() is not None:
            raise DuplicateSystemError(name)
