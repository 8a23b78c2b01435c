"""
Interop service: ties parsing, mapping, storage and delivery together.

Inbound HL7 is parsed, logged, converted to FHIR and stored; outbound data is
generated or mapped and pushed through the delivery gateway.
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from interop_gateway.audit import AuditAction, ComplianceAuditor
from interop_gateway.database import (
    ExternalSystemRegistry,
    FhirResourceStore,
    HL7MessageLog,
    SearchResult,
    StoredResource,
)
from interop_gateway.delivery import BroadcastResult, DeliveryGateway, DeliveryResult
from interop_gateway.exceptions import (
    ExternalSystemError,
    InvalidResourceError,
    MalformedMessageError,
    SystemBusyError,
)
from interop_gateway.fhir import DomainToFHIRMapper, HL7ToFHIRConverter, MappedResource
from interop_gateway.fhir.validation import ensure_valid_resource
from interop_gateway.hl7 import GeneratedMessage, HL7MessageGenerator, HL7MessageParser, ParsedMessage
from interop_gateway.models import PatientRecord
from interop_gateway.models.external_system import (
    ExternalSystem,
    ExternalSystemCreate,
    ExternalSystemUpdate,
    SyncStatusView,
    SystemType,
)

logger = logging.getLogger(__name__)

REMOTE_SOURCE = "FHIR_SERVER"
API_SOURCE = "API"


@dataclass
class InboundResult:
    log_id: str
    message: ParsedMessage
    stored: List[StoredResource] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    broadcast: Optional[BroadcastResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "log_id": self.log_id,
            "message_type": self.message.message_type,
            "trigger_event": self.message.trigger_event,
            "message_id": self.message.message_id,
            "version": self.message.version,
            "segment_count": self.message.segment_count,
            "resources": [resource.reference for resource in self.stored],
            "errors": list(self.errors),
            "broadcast": self.broadcast.to_dict() if self.broadcast else None,
        }


@dataclass
class OutboundResult:
    log_id: str
    message: GeneratedMessage
    delivery: Optional[DeliveryResult] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "log_id": self.log_id,
            "message_id": self.message.message_id,
            "message_type": self.message.message_type,
            "trigger_event": self.message.trigger_event,
            "message": self.message.raw,
            "sent": self.delivery is not None,
        }
        if self.delivery is not None:
            data["destination"] = self.delivery.system_name
            data["attempts"] = self.delivery.attempts
        return data


class InteropService:
    """Orchestrates HL7 and FHIR traffic between the gateway and partner systems."""

    def __init__(
        self,
        *,
        parser: HL7MessageParser,
        generator: HL7MessageGenerator,
        converter: HL7ToFHIRConverter,
        mapper: DomainToFHIRMapper,
        store: FhirResourceStore,
        registry: ExternalSystemRegistry,
        message_log: HL7MessageLog,
        gateway: DeliveryGateway,
        auditor: ComplianceAuditor,
    ):
        self.parser = parser
        self.generator = generator
        self.converter = converter
        self.mapper = mapper
        self.store = store
        self.registry = registry
        self.message_log = message_log
        self.gateway = gateway
        self.auditor = auditor

    # ==================== Inbound HL7 ====================

    async def process_inbound(
        self,
        raw: str,
        *,
        source_system: Optional[str] = None,
        rebroadcast: bool = False,
        user_id: Optional[str] = None,
    ) -> InboundResult:
        """
        Parse, log, convert and store an inbound HL7 message.

        Args:
            raw: HL7 wire text
            source_system: Name or id of the sending system
            rebroadcast: Forward the message to every other active HL7 endpoint
            user_id: Acting user, None for system traffic

        Returns:
            InboundResult with stored resources and per-resource errors

        Raises:
            MalformedMessageError: If the message cannot be parsed; the raw
                text is still logged as FAILED
        """
        try:
            message = self.parser.parse(raw)
        except MalformedMessageError as e:
            entry = await self.message_log.record_inbound(raw, source_system=source_system)
            await self.message_log.mark_failed(entry.id, [str(e)])
            raise

        entry = await self.message_log.record_inbound(
            raw,
            message_type=message.message_type,
            message_id=message.message_id,
            version=message.version,
            parsed_data=message.to_dict(),
            source_system=source_system or message.sending_application,
        )

        try:
            result = await self._store_converted(entry.id, message, source_system, user_id)
        except Exception as e:
            logger.error("Processing of HL7 message %s failed: %s", message.message_id, e)
            await self.message_log.mark_failed(entry.id, [str(e)])
            raise

        if rebroadcast:
            result.broadcast = await self._rebroadcast(raw, source_system)
        return result

    async def _store_converted(
        self,
        log_id: str,
        message: ParsedMessage,
        source_system: Optional[str],
        user_id: Optional[str],
    ) -> InboundResult:
        source = source_system or message.sending_application or "HL7"
        result = InboundResult(log_id=log_id, message=message)

        for mapped in self.converter.convert(message):
            if not mapped.valid:
                result.errors.append(f"{mapped.reference}: {'; '.join(mapped.issues)}")
                continue
            stored = await self.store.upsert(mapped, source=source)
            result.stored.append(stored)
            await self.auditor.resource_stored(
                resource_type=stored.resource_type,
                resource_id=stored.resource_id,
                source=source,
                patient_id=stored.patient_id,
                user_id=user_id,
            )

        patient_id = self.converter.patient_id_for(message) if message.segment("PID") else None
        await self.auditor.message_processed(
            action=AuditAction.HL7_MESSAGE_RECEIVED,
            message_id=message.message_id,
            message_type=message.event_type,
            details={
                "source_system": source,
                "resources": [stored.reference for stored in result.stored],
                "errors": len(result.errors),
            },
            user_id=user_id,
        )
        await self.message_log.mark_processed(log_id, patient_id=patient_id, errors=result.errors or None)
        logger.info(
            "Processed HL7 %s message %s: %d resources stored, %d rejected",
            message.event_type,
            message.message_id,
            len(result.stored),
            len(result.errors),
        )
        return result

    async def _rebroadcast(self, raw: str, source_system: Optional[str]) -> BroadcastResult:
        exclude = []
        if source_system:
            endpoints = await self.registry.list(system_type=SystemType.HL7_ENDPOINT, is_active=True)
            exclude = [system.id for system in endpoints if source_system in (system.id, system.name)]
        return await self.gateway.broadcast_hl7(raw, exclude=exclude)

    # ==================== Outbound HL7 ====================

    async def generate_outbound(
        self,
        message_type: str,
        patient: Union[PatientRecord, Dict[str, Any]],
        payload: Any = None,
        *,
        destination: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> OutboundResult:
        """Generate an HL7 message, log it and optionally send it to ``destination``."""
        if not isinstance(patient, PatientRecord):
            patient = PatientRecord.model_validate(patient)
        message = self.generator.generate(message_type, patient, payload)
        patient_id = patient.identifier
        entry = await self.message_log.record_outbound(
            message.raw,
            message_type=message.message_type,
            message_id=message.message_id,
            version=message.version,
            patient_id=patient_id,
        )
        await self.auditor.message_processed(
            action=AuditAction.HL7_MESSAGE_GENERATED,
            message_id=message.message_id,
            message_type=f"{message.message_type}^{message.trigger_event}",
            details={"destination": destination},
            user_id=user_id,
        )

        result = OutboundResult(log_id=entry.id, message=message)
        if destination is None:
            return result

        try:
            result.delivery = await self.gateway.send_hl7(destination, message.raw)
        except ExternalSystemError as e:
            await self.message_log.mark_failed(entry.id, [str(e)])
            raise
        await self.message_log.mark_sent(entry.id, destination_system=result.delivery.system_name)
        return result

    # ==================== FHIR ====================

    async def sync_patient(
        self,
        patient: PatientRecord,
        system_id: str,
        *,
        user_id: Optional[str] = None,
    ) -> StoredResource:
        """
        Push a patient to a FHIR server and keep the server's copy locally.

        The stored id is the one the server assigned, if it returned one.
        """
        mapped = self.mapper.patient_to_fhir(patient)
        self._require_valid(mapped)

        delivery = await self.gateway.push_resource(system_id, "Patient", mapped.data)
        await self.auditor.resource_forwarded(
            resource_type="Patient",
            resource_id=mapped.resource_id,
            system_id=system_id,
            system_name=delivery.system_name,
            user_id=user_id,
        )

        returned = delivery.value if isinstance(delivery.value, dict) else {}
        document = returned if returned.get("resourceType") == "Patient" else copy.deepcopy(mapped.data)
        document["id"] = returned.get("id") or mapped.resource_id
        stored = await self.store.upsert(document, source=delivery.system_name)
        await self.auditor.resource_stored(
            resource_type="Patient",
            resource_id=stored.resource_id,
            source=delivery.system_name,
            patient_id=stored.patient_id,
            user_id=user_id,
        )
        return stored

    async def sync_resource(
        self,
        mapped: MappedResource,
        system_id: str,
        *,
        user_id: Optional[str] = None,
    ) -> DeliveryResult:
        """PUT an already mapped resource to a FHIR server under its own id."""
        self._require_valid(mapped)
        delivery = await self.gateway.push_resource(system_id, mapped.resource_type, mapped.data, update=True)
        await self.auditor.resource_forwarded(
            resource_type=mapped.resource_type,
            resource_id=mapped.resource_id,
            system_id=system_id,
            system_name=delivery.system_name,
            user_id=user_id,
        )
        return delivery

    async def fetch_resource(
        self,
        resource_type: str,
        resource_id: str,
        *,
        system_id: Optional[str] = None,
    ) -> StoredResource:
        """
        Read a resource, preferring the remote FHIR server when one is named.

        A successful remote read refreshes the local copy. When the remote
        system fails, the local copy is returned instead.

        Raises:
            NotFoundError: If neither the remote system nor the store has it
        """
        if system_id is None:
            return await self.store.get(resource_type, resource_id)

        try:
            delivery = await self.gateway.fetch_resource(system_id, resource_type, resource_id)
        except ExternalSystemError as e:
            logger.warning(
                "Remote read of %s/%s failed, using local copy: %s", resource_type, resource_id, e
            )
            return await self.store.get(resource_type, resource_id)

        return await self._store_remote(delivery.value)

    async def search_resources(
        self,
        resource_type: str,
        *,
        patient_id: Optional[str] = None,
        last_updated_from: Optional[datetime] = None,
        inclusive: bool = True,
        offset: int = 0,
        count: int = 20,
        system_id: Optional[str] = None,
    ) -> SearchResult:
        """Search the store, first caching any matches from a named FHIR server."""
        if system_id is not None:
            params: Dict[str, Any] = {}
            if patient_id:
                params["patient"] = patient_id
            if last_updated_from is not None:
                prefix = "ge" if inclusive else "gt"
                params["_lastUpdated"] = f"{prefix}{last_updated_from.isoformat()}"
            try:
                delivery = await self.gateway.search_resources(system_id, resource_type, params)
            except ExternalSystemError as e:
                logger.warning("Remote search for %s failed, using local store: %s", resource_type, e)
            else:
                await self._cache_bundle(delivery.value, resource_type)

        return await self.store.search(
            resource_type,
            patient_id=patient_id,
            last_updated_from=last_updated_from,
            inclusive=inclusive,
            offset=offset,
            count=count,
        )

    async def _cache_bundle(self, bundle: Any, resource_type: str) -> int:
        cached = 0
        entries = bundle.get("entry", []) if isinstance(bundle, dict) else []
        for entry in entries:
            resource = entry.get("resource") or {}
            if resource.get("resourceType") != resource_type:
                continue
            try:
                await self._store_remote(resource)
            except InvalidResourceError as e:
                logger.warning("Skipped remote %s entry: %s", resource_type, e)
                continue
            cached += 1
        logger.info("Cached %d remote %s resources", cached, resource_type)
        return cached

    async def _store_remote(self, resource: Dict[str, Any]) -> StoredResource:
        stored = await self.store.upsert(resource, source=REMOTE_SOURCE)
        await self.auditor.resource_stored(
            resource_type=stored.resource_type,
            resource_id=stored.resource_id,
            source=REMOTE_SOURCE,
            patient_id=stored.patient_id,
        )
        return stored

    async def create_patient(
        self,
        resource: Dict[str, Any],
        *,
        user_id: Optional[str] = None,
    ) -> StoredResource:
        """Store a posted FHIR Patient, assigning an id when it has none."""
        ensure_valid_resource(resource, expected_type="Patient")
        document = copy.deepcopy(resource)
        document.setdefault("id", str(uuid4()))
        stored = await self.store.upsert(document, source=API_SOURCE)
        await self.auditor.resource_stored(
            resource_type="Patient",
            resource_id=stored.resource_id,
            source=API_SOURCE,
            patient_id=stored.patient_id,
            user_id=user_id,
        )
        return stored

    @staticmethod
    def _require_valid(mapped: MappedResource) -> None:
        if not mapped.valid:
            raise InvalidResourceError(
                f"Invalid {mapped.resource_type} resource: {'; '.join(mapped.issues)}",
                resource_type=mapped.resource_type,
                issues=mapped.issues,
            )

    # ==================== External systems ====================

    async def test_connection(self, system_id: str) -> Dict[str, Any]:
        """Probe a system. Gateway failures are reported, not raised."""
        try:
            delivery = await self.gateway.probe(system_id)
        except ExternalSystemError as e:
            return {
                "system_id": system_id,
                "success": False,
                "error": str(e),
                "error_type": e.error_type,
            }
        return {
            "system_id": system_id,
            "system_name": delivery.system_name,
            "success": True,
            "attempts": delivery.attempts,
            "details": delivery.value,
        }

    async def bulk_sync(self, system_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        delivery = await self.gateway.bulk_sync(system_id, payload)
        return {
            "system_id": system_id,
            "system_name": delivery.system_name,
            "attempts": delivery.attempts,
            "result": delivery.value,
        }

    async def sync_status(self, system_id: str) -> SyncStatusView:
        system = await self.registry.get(system_id)
        return SyncStatusView(
            system_id=system.id,
            name=system.name,
            sync_status=system.sync_status,
            last_sync=system.last_sync,
            error_message=system.error_message,
        )

    async def list_systems(
        self,
        system_type: Optional[SystemType] = None,
        is_active: Optional[bool] = None,
    ) -> List[ExternalSystem]:
        return await self.registry.list(system_type=system_type, is_active=is_active)

    async def get_system(self, system_id: str) -> ExternalSystem:
        return await self.registry.get(system_id)

    async def create_system(self, data: ExternalSystemCreate, *, user_id: Optional[str] = None) -> ExternalSystem:
        system = await self.registry.create(data)
        if system.is_active:
            await self.gateway.refresh(system)
        await self.auditor.system_changed(system_id=system.id, change="created", user_id=user_id)
        return system

    async def update_system(
        self,
        system_id: str,
        changes: ExternalSystemUpdate,
        *,
        user_id: Optional[str] = None,
    ) -> ExternalSystem:
        system = await self.registry.update(system_id, changes)
        if system.is_active:
            await self.gateway.refresh(system)
        else:
            await self.gateway.forget(system.id)
        await self.auditor.system_changed(system_id=system.id, change="updated", user_id=user_id)
        return system

    async def delete_system(self, system_id: str, *, user_id: Optional[str] = None) -> None:
        """
        Remove a system.

        Raises:
            SystemBusyError: While deliveries to it are in flight
        """
        in_flight = self.gateway.in_flight(system_id)
        if in_flight:
            raise SystemBusyError(system_id, in_flight)
        await self.registry.delete(system_id)
        await self.gateway.forget(system_id)
        await self.auditor.system_changed(system_id=system_id, change="deleted", user_id=user_id)

    def circuit_status(self) -> List[Dict[str, Any]]:
        return self.gateway.snapshot()
