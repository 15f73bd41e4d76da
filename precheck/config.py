"""
Gateway Configuration

All tunables come from environment variables with conservative defaults.
Settings are read once at process start and passed to the services that
need them; nothing below is consulted per request.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_list(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@dataclass
class GatewaySettings:
    """Tunable endpoints and limits for one gateway process."""

    # DecisionAuthority
    precheck_base_url: str = "http://localhost:8080"
    api_key: str = ""
    org_id: str = ""
    precheck_timeout_seconds: float = 30.0
    precheck_attempt_timeout_seconds: float = 10.0
    precheck_retries: int = 3
    precheck_retry_delay: float = 1.0

    # Budget accounting service
    platform_url: str = "http://localhost:3002"
    budget_timeout_seconds: float = 5.0
    budget_fallback_monthly_limit: float = 1000.0
    budget_cache_ttl_seconds: float = 3600.0
    budget_cache_max_subjects: int = 1024

    # Platform policy and tool registration
    policy_timeout_seconds: float = 5.0
    agent_id: str = "precheck-gateway"
    register_tools_on_startup: bool = True

    # Normalization
    financial_tools: frozenset[str] = frozenset({"payment_process"})

    # Audit spine (disabled unless a host is configured)
    audit_db_config: Optional[dict] = None

    # HTTP surface
    cors_allow_origins: list[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        audit_db_config = None
        if os.environ.get("AUDIT_DB_HOST"):
            audit_db_config = {
                "host": os.environ["AUDIT_DB_HOST"],
                "port": int(os.environ.get("AUDIT_DB_PORT", "5433")),
                "dbname": os.environ.get("AUDIT_DB_NAME", "governance_control_plane"),
                "user": os.environ.get("AUDIT_DB_USER", "admin"),
                "password": os.environ.get("AUDIT_DB_PASSWORD", ""),
            }

        return cls(
            precheck_base_url=os.environ.get(
                "GOVERNS_PRECHECK_BASE_URL",
                os.environ.get("PRECHECK_BASE_URL", "http://localhost:8080"),
            ),
            api_key=os.environ.get("PRECHECK_API_KEY", ""),
            org_id=os.environ.get("GOVERNS_ORG_ID", ""),
            precheck_timeout_seconds=float(os.environ.get("PRECHECK_TIMEOUT_SECONDS", "30")),
            precheck_attempt_timeout_seconds=float(
                os.environ.get("PRECHECK_ATTEMPT_TIMEOUT_SECONDS", "10")
            ),
            precheck_retries=int(os.environ.get("PRECHECK_RETRIES", "3")),
            precheck_retry_delay=float(os.environ.get("PRECHECK_RETRY_DELAY", "1.0")),
            platform_url=os.environ.get("PLATFORM_URL", "http://localhost:3002"),
            budget_timeout_seconds=float(os.environ.get("BUDGET_TIMEOUT_SECONDS", "5")),
            budget_fallback_monthly_limit=float(
                os.environ.get("BUDGET_FALLBACK_MONTHLY_LIMIT", "1000")
            ),
            budget_cache_ttl_seconds=float(os.environ.get("BUDGET_CACHE_TTL_SECONDS", "3600")),
            budget_cache_max_subjects=int(os.environ.get("BUDGET_CACHE_MAX_SUBJECTS", "1024")),
            policy_timeout_seconds=float(os.environ.get("POLICY_TIMEOUT_SECONDS", "5")),
            agent_id=os.environ.get("AGENT_ID", "precheck-gateway"),
            register_tools_on_startup=(
                os.environ.get("REGISTER_TOOLS_ON_STARTUP", "true").lower() in ("1", "true", "yes")
            ),
            financial_tools=frozenset(_env_list("FINANCIAL_TOOLS", "payment_process")),
            audit_db_config=audit_db_config,
            cors_allow_origins=_env_list("CORS_ALLOW_ORIGINS", "*"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
