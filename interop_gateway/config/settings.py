"""
Gateway settings read from the environment.

``.env`` is loaded by the application module before ``from_env`` is called.
"""

import logging
import os
from dataclasses import dataclass

from interop_gateway.database.connection import DEFAULT_DATABASE_URL

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid integer for %s: %r, using %s", name, value, default)
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Invalid number for %s: %r, using %s", name, value, default)
        return default


@dataclass
class GatewaySettings:
    """
    Runtime configuration.

    Attributes:
        database_url: SQLAlchemy URL; ``postgresql://`` is rewritten to asyncpg
        audit_log_dir: Directory for daily JSONL audit files
        log_level: Root logging level name
        delivery_max_attempts: Attempts per delivery before giving up
        delivery_backoff_scale: Multiplier on the 2^attempt backoff, 0 disables sleeping
        delivery_timeout_seconds: Timeout for a single attempt
        rate_limit_requests: Calls allowed per system per window
        rate_limit_period_seconds: Sliding window length
        circuit_failure_threshold_percent: Failure rate that opens a breaker
        circuit_rolling_window: Outcomes kept per breaker
        circuit_minimum_requests: Outcomes needed before the rate is evaluated
        circuit_reset_timeout_seconds: Time a breaker stays open
    """

    database_url: str = DEFAULT_DATABASE_URL
    audit_log_dir: str = "audit-logs"
    log_level: str = "INFO"
    sql_echo: bool = False
    delivery_max_attempts: int = 3
    delivery_backoff_scale: float = 1.0
    delivery_timeout_seconds: float = 30.0
    rate_limit_requests: int = 100
    rate_limit_period_seconds: float = 60.0
    circuit_failure_threshold_percent: float = 50.0
    circuit_rolling_window: int = 20
    circuit_minimum_requests: int = 5
    circuit_reset_timeout_seconds: float = 60.0
    hl7_sending_application: str = "HMS"
    hl7_sending_facility: str = "HOSPITAL"
    hl7_receiving_application: str = "RECEIVER"
    hl7_receiving_facility: str = "RECEIVER"
    hl7_version: str = "2.5"

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        defaults = cls()
        settings = cls(
            database_url=os.getenv("DATABASE_URL") or defaults.database_url,
            audit_log_dir=os.getenv("AUDIT_LOG_DIR", defaults.audit_log_dir),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
            sql_echo=os.getenv("DEBUG", "False").lower() == "true",
            delivery_max_attempts=_env_int("DELIVERY_MAX_ATTEMPTS", defaults.delivery_max_attempts),
            delivery_backoff_scale=_env_float("DELIVERY_BACKOFF_SCALE", defaults.delivery_backoff_scale),
            delivery_timeout_seconds=_env_float("DELIVERY_TIMEOUT_SECONDS", defaults.delivery_timeout_seconds),
            rate_limit_requests=_env_int("RATE_LIMIT_REQUESTS", defaults.rate_limit_requests),
            rate_limit_period_seconds=_env_float("RATE_LIMIT_PERIOD_SECONDS", defaults.rate_limit_period_seconds),
            circuit_failure_threshold_percent=_env_float(
                "CIRCUIT_FAILURE_THRESHOLD_PERCENT", defaults.circuit_failure_threshold_percent
            ),
            circuit_rolling_window=_env_int("CIRCUIT_ROLLING_WINDOW", defaults.circuit_rolling_window),
            circuit_minimum_requests=_env_int("CIRCUIT_MINIMUM_REQUESTS", defaults.circuit_minimum_requests),
            circuit_reset_timeout_seconds=_env_float(
                "CIRCUIT_RESET_TIMEOUT_SECONDS", defaults.circuit_reset_timeout_seconds
            ),
            hl7_sending_application=os.getenv("HL7_SENDING_APPLICATION", defaults.hl7_sending_application),
            hl7_sending_facility=os.getenv("HL7_SENDING_FACILITY", defaults.hl7_sending_facility),
            hl7_receiving_application=os.getenv("HL7_RECEIVING_APPLICATION", defaults.hl7_receiving_application),
            hl7_receiving_facility=os.getenv("HL7_RECEIVING_FACILITY", defaults.hl7_receiving_facility),
            hl7_version=os.getenv("HL7_VERSION", defaults.hl7_version),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.delivery_max_attempts <= 0:
            raise ValueError("DELIVERY_MAX_ATTEMPTS must be a positive integer")
        if self.rate_limit_requests <= 0:
            raise ValueError("RATE_LIMIT_REQUESTS must be a positive integer")
        if self.rate_limit_period_seconds <= 0:
            raise ValueError("RATE_LIMIT_PERIOD_SECONDS must be positive")
        if not 0 < self.circuit_failure_threshold_percent <= 100:
            raise ValueError("CIRCUIT_FAILURE_THRESHOLD_PERCENT must be in (0, 100]")
