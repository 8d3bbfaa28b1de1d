"""Configuration for the enforcement service, loaded from environment variables.

Environment Variables:
    SWEEP_INTERVAL_MINUTES: Minutes between sweeps (default: 60)
    SWEEP_ON_STARTUP: Run a sweep immediately on startup (default: true)
    SWEEP_MAX_CONCURRENCY: Reconciliations running at once (default: 10)
    ENFORCEMENT_SWEEP_IN_APP: Run the sweep loop inside the API process (default: true)
    CORRELATION_TTL_SECONDS: Lifetime of a payment request (default: 3600)
    CONFIRMATION_RETENTION_SECONDS: How long processed transaction ids are kept (default: 7 days)
    CORRELATION_BACKEND: "postgres" or "memory" (default: postgres)
    FIREWALL_CHAIN: Chain holding block rules (default: INPUT)
    FIREWALL_USE_SUDO: Prefix firewall commands with "sudo -n" (default: false)
    HEALTH_CHECK_PORT: Scheduler health endpoint port (default: 8080, 0 to disable)
    DATABASE_URL: PostgreSQL connection string
"""

import os
from typing import Optional

from ..api.exceptions import ConfigurationError

CORRELATION_BACKENDS = ("postgres", "memory")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class EnforcementConfig:
    """Configuration loaded from environment variables."""

    def __init__(self):
        self.sweep_interval_minutes = int(os.getenv("SWEEP_INTERVAL_MINUTES", "60"))
        self.sweep_on_startup = _env_bool("SWEEP_ON_STARTUP", "true")
        self.sweep_max_concurrency = int(os.getenv("SWEEP_MAX_CONCURRENCY", "10"))
        self.sweep_in_app = _env_bool("ENFORCEMENT_SWEEP_IN_APP", "true")
        self.correlation_ttl_seconds = float(os.getenv("CORRELATION_TTL_SECONDS", "3600"))
        self.confirmation_retention_seconds = float(
            os.getenv("CONFIRMATION_RETENTION_SECONDS", str(7 * 24 * 3600))
        )
        self.correlation_backend = os.getenv("CORRELATION_BACKEND", "postgres").lower()
        self.firewall_chain = os.getenv("FIREWALL_CHAIN", "INPUT")
        self.firewall_use_sudo = _env_bool("FIREWALL_USE_SUDO", "false")
        self.health_check_port = int(os.getenv("HEALTH_CHECK_PORT", "8080"))
        self.database_url: Optional[str] = os.getenv("DATABASE_URL") or None

    def validate(self) -> "EnforcementConfig":
        """Check values that would only fail later, at the first sweep or payment.

        Raises:
            ConfigurationError: If a value is out of range or missing
        """
        if self.sweep_interval_minutes < 1:
            raise ConfigurationError("SWEEP_INTERVAL_MINUTES must be at least 1")
        if self.sweep_max_concurrency < 1:
            raise ConfigurationError("SWEEP_MAX_CONCURRENCY must be at least 1")
        if self.correlation_ttl_seconds <= 0:
            raise ConfigurationError("CORRELATION_TTL_SECONDS must be positive")
        if self.correlation_backend not in CORRELATION_BACKENDS:
            raise ConfigurationError(
                f"CORRELATION_BACKEND must be one of {', '.join(CORRELATION_BACKENDS)}"
            )
        if not self.database_url:
            raise ConfigurationError(
                "Missing required environment variables: DATABASE_URL",
                missing_keys=["DATABASE_URL"],
            )
        return self

    def __repr__(self):
        return (
            f"EnforcementConfig("
            f"interval={self.sweep_interval_minutes}m, "
            f"startup={self.sweep_on_startup}, "
            f"concurrency={self.sweep_max_concurrency}, "
            f"in_app={self.sweep_in_app}, "
            f"correlations={self.correlation_backend}/{self.correlation_ttl_seconds:.0f}s, "
            f"chain={self.firewall_chain}, "
            f"health_port={self.health_check_port})"
        )
