import logging
from typing import Optional

import httpx

from interop_gateway.audit import ComplianceAuditor, JsonlAuditSink
from interop_gateway.config import GatewaySettings
from interop_gateway.database import (
    Database,
    ExternalSystemRegistry,
    FhirResourceStore,
    HL7MessageLog,
)
from interop_gateway.delivery import CircuitBreakerConfig, DeliveryGateway, DeliveryPolicy
from interop_gateway.fhir import DomainToFHIRMapper, HL7ToFHIRConverter
from interop_gateway.hl7 import HL7MessageGenerator, HL7MessageParser
from interop_gateway.services import InteropService

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Centralized application service container for shared singletons."""

    def __init__(
        self,
        settings: GatewaySettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.transport = transport

        self.database: Optional[Database] = None
        self.auditor: Optional[ComplianceAuditor] = None
        self.registry: Optional[ExternalSystemRegistry] = None
        self.store: Optional[FhirResourceStore] = None
        self.message_log: Optional[HL7MessageLog] = None
        self.gateway: Optional[DeliveryGateway] = None
        self.parser: Optional[HL7MessageParser] = None
        self.generator: Optional[HL7MessageGenerator] = None
        self.converter: Optional[HL7ToFHIRConverter] = None
        self.mapper: Optional[DomainToFHIRMapper] = None
        self.interop_service: Optional[InteropService] = None

    def delivery_policy(self) -> DeliveryPolicy:
        settings = self.settings
        return DeliveryPolicy(
            max_attempts=settings.delivery_max_attempts,
            backoff_scale=settings.delivery_backoff_scale,
            request_timeout=settings.delivery_timeout_seconds,
            rate_limit=settings.rate_limit_requests,
            rate_period=settings.rate_limit_period_seconds,
            breaker=CircuitBreakerConfig(
                failure_threshold_percent=settings.circuit_failure_threshold_percent,
                rolling_window=settings.circuit_rolling_window,
                minimum_requests=settings.circuit_minimum_requests,
                reset_timeout=settings.circuit_reset_timeout_seconds,
            ),
        )

    async def startup(self) -> None:
        settings = self.settings
        logging.getLogger().setLevel(settings.log_level)

        logger.info("Initializing database...")
        self.database = Database(settings.database_url, echo=settings.sql_echo)
        await self.database.init()
        self.registry = ExternalSystemRegistry(self.database)
        self.store = FhirResourceStore(self.database)
        self.message_log = HL7MessageLog(self.database)

        logger.info("Initializing compliance audit log in %s", settings.audit_log_dir)
        self.auditor = ComplianceAuditor(JsonlAuditSink(log_dir=settings.audit_log_dir))

        logger.info("Loading delivery gateway...")
        self.gateway = DeliveryGateway(
            self.registry,
            policy=self.delivery_policy(),
            auditor=self.auditor,
            transport=self.transport,
        )
        await self.gateway.load()

        self.parser = HL7MessageParser()
        self.generator = HL7MessageGenerator(
            sending_application=settings.hl7_sending_application,
            sending_facility=settings.hl7_sending_facility,
            receiving_application=settings.hl7_receiving_application,
            receiving_facility=settings.hl7_receiving_facility,
            version=settings.hl7_version,
        )
        self.converter = HL7ToFHIRConverter()
        self.mapper = DomainToFHIRMapper()

        self.interop_service = InteropService(
            parser=self.parser,
            generator=self.generator,
            converter=self.converter,
            mapper=self.mapper,
            store=self.store,
            registry=self.registry,
            message_log=self.message_log,
            gateway=self.gateway,
            auditor=self.auditor,
        )
        logger.info("Service container started")

    async def shutdown(self) -> None:
        if self.gateway:
            await self.gateway.aclose()
        if self.database:
            await self.database.close()
        logger.info("Service container stopped")
