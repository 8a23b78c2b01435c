"""
Local FHIR resource store.

One row per ``(resource_type, resource_id)``; upsert is the only write path.
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from interop_gateway.database.connection import Database
from interop_gateway.database.models import FhirResourceModel, as_utc, utcnow
from interop_gateway.exceptions import InvalidResourceError, NotFoundError
from interop_gateway.fhir.dates import to_fhir_datetime
from interop_gateway.fhir.resources import MappedResource, is_valid_fhir_id
from interop_gateway.fhir.validation import ensure_valid_resource

logger = logging.getLogger(__name__)

ACTIVE = "ACTIVE"
INACTIVE = "INACTIVE"
DEFAULT_PAGE_SIZE = 20


@dataclass
class StoredResource:
    resource_type: str
    resource_id: str
    data: Dict[str, Any]
    patient_id: Optional[str]
    source: Optional[str]
    status: str
    last_updated: datetime

    @property
    def reference(self) -> str:
        return f"{self.resource_type}/{self.resource_id}"


@dataclass
class SearchResult:
    resource_type: str
    total: int
    resources: List[StoredResource] = field(default_factory=list)
    offset: int = 0
    count: int = DEFAULT_PAGE_SIZE

    def to_bundle(self) -> Dict[str, Any]:
        """Render as a FHIR searchset Bundle."""
        return {
            "resourceType": "Bundle",
            "id": str(uuid4()),
            "type": "searchset",
            "total": self.total,
            "meta": {"lastUpdated": to_fhir_datetime(utcnow())},
            "entry": [
                {
                    "fullUrl": resource.reference,
                    "resource": resource.data,
                    "search": {"mode": "match"},
                }
                for resource in self.resources
            ],
        }


def _patient_reference(data: Dict[str, Any]) -> Optional[str]:
    if data.get("resourceType") == "Patient":
        return data.get("id")
    subject = data.get("subject") or data.get("patient") or {}
    ref = subject.get("reference", "") if isinstance(subject, dict) else ""
    if ref.startswith("Patient/"):
        return ref.split("/", 1)[1]
    return None


def _to_stored(row: FhirResourceModel) -> StoredResource:
    return StoredResource(
        resource_type=row.resource_type,
        resource_id=row.resource_id,
        data=row.data,
        patient_id=row.patient_id,
        source=row.source,
        status=row.status,
        last_updated=as_utc(row.last_updated),
    )


class FhirResourceStore:
    """SQL-backed FHIR resource store with search."""

    def __init__(self, database: Database):
        self.database = database

    async def upsert(
        self,
        resource: Union[MappedResource, Dict[str, Any]],
        *,
        source: Optional[str] = None,
        status: str = ACTIVE,
    ) -> StoredResource:
        """
        Validate and insert or update a resource by its key.

        Args:
            resource: Mapped resource or raw FHIR document (must carry ``id``)
            source: Name of the system or feed the resource came from
            status: ACTIVE or INACTIVE

        Returns:
            The stored record

        Raises:
            InvalidResourceError: If the resource is incomplete or has no valid id
        """
        if isinstance(resource, MappedResource):
            if resource.issues:
                raise InvalidResourceError(
                    f"Invalid {resource.resource_type} resource: {'; '.join(resource.issues)}",
                    resource_type=resource.resource_type,
                    issues=resource.issues,
                )
            data = resource.data
            patient_id = resource.patient_id
        else:
            data = resource
            patient_id = None

        ensure_valid_resource(data)
        resource_id = data.get("id")
        if not is_valid_fhir_id(resource_id):
            raise InvalidResourceError(
                f"{data['resourceType']} resource has no valid id",
                resource_type=data["resourceType"],
                issues=[f"{data['resourceType']}.id is required"],
            )
        patient_id = patient_id or _patient_reference(data)

        try:
            return await self._write(data, patient_id, source, status)
        except IntegrityError:
            # Lost an insert race on the unique key; the row exists now.
            logger.info("Concurrent insert of %s/%s, retrying as update", data["resourceType"], resource_id)
            return await self._write(data, patient_id, source, status)

    async def _write(
        self,
        data: Dict[str, Any],
        patient_id: Optional[str],
        source: Optional[str],
        status: str,
    ) -> StoredResource:
        resource_type = data["resourceType"]
        resource_id = data["id"]
        now = utcnow()
        document = copy.deepcopy(data)
        document.setdefault("meta", {})["lastUpdated"] = to_fhir_datetime(now)

        async with self.database.session() as session:
            row = await self._select(session, resource_type, resource_id)
            if row is None:
                row = FhirResourceModel(
                    id=str(uuid4()),
                    resource_type=resource_type,
                    resource_id=resource_id,
                )
                session.add(row)
                logger.debug("Storing new %s/%s", resource_type, resource_id)
            row.data = document
            row.patient_id = patient_id
            row.source = source
            row.status = status
            row.last_updated = now
            await session.flush()
            return _to_stored(row)

    async def _select(self, session, resource_type: str, resource_id: str) -> Optional[FhirResourceModel]:
        result = await session.execute(
            select(FhirResourceModel).where(
                FhirResourceModel.resource_type == resource_type,
                FhirResourceModel.resource_id == resource_id,
            )
        )
        return result.scalar_one_or_none()

    async def find(self, resource_type: str, resource_id: str) -> Optional[StoredResource]:
        """Active resource or None."""
        async with self.database.session() as session:
            row = await self._select(session, resource_type, resource_id)
            if row is None or row.status != ACTIVE:
                return None
            return _to_stored(row)

    async def get(self, resource_type: str, resource_id: str) -> StoredResource:
        stored = await self.find(resource_type, resource_id)
        if stored is None:
            raise NotFoundError(resource_type, resource_id)
        return stored

    async def search(
        self,
        resource_type: str,
        *,
        patient_id: Optional[str] = None,
        last_updated_from: Optional[datetime] = None,
        inclusive: bool = True,
        offset: int = 0,
        count: int = DEFAULT_PAGE_SIZE,
    ) -> SearchResult:
        """
        Search active resources, most recently updated first.

        Args:
            resource_type: FHIR resource type
            patient_id: Only resources for this patient
            last_updated_from: Lower bound on ``last_updated``
            inclusive: Whether the lower bound is ``ge`` (True) or ``gt``
            offset: Number of matches to skip
            count: Page size
        """
        filters = [
            FhirResourceModel.resource_type == resource_type,
            FhirResourceModel.status == ACTIVE,
        ]
        if patient_id:
            filters.append(FhirResourceModel.patient_id == patient_id)
        if last_updated_from is not None:
            if last_updated_from.tzinfo is None:
                last_updated_from = last_updated_from.replace(tzinfo=timezone.utc)
            bound = last_updated_from.astimezone(timezone.utc)
            if inclusive:
                filters.append(FhirResourceModel.last_updated >= bound)
            else:
                filters.append(FhirResourceModel.last_updated > bound)

        offset = max(offset, 0)
        count = max(count, 0)
        async with self.database.session() as session:
            total = await session.scalar(select(func.count()).select_from(FhirResourceModel).where(*filters))
            result = await session.execute(
                select(FhirResourceModel)
                .where(*filters)
                .order_by(FhirResourceModel.last_updated.desc(), FhirResourceModel.resource_id)
                .offset(offset)
                .limit(count)
            )
            rows = result.scalars().all()

        return SearchResult(
            resource_type=resource_type,
            total=total or 0,
            resources=[_to_stored(row) for row in rows],
            offset=offset,
            count=count,
        )

    async def deactivate(self, resource_type: str, resource_id: str) -> StoredResource:
        async with self.database.session() as session:
            row = await self._select(session, resource_type, resource_id)
            if row is None:
                raise NotFoundError(resource_type, resource_id)
            row.status = INACTIVE
            row.last_updated = utcnow()
            await session.flush()
            logger.info("Deactivated %s/%s", resource_type, resource_id)
            return _to_stored(row)
