"""
Decision Client

Sends a GovernanceRequest to the remote DecisionAuthority and returns its
GovernanceDecision. Transport errors and 5xx replies are retried a fixed
number of times with exponential backoff, all inside one overall deadline.

``decide`` raises DecisionUnavailable when no usable decision can be had.
``precheck`` is what the pipeline calls: it maps every such failure (and any
unexpected exception) to a BLOCK decision, so an unreachable authority is
never read as permission.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from precheck.errors import (
    AUTHORITY_ERROR,
    CONNECTION_FAILED,
    FAILURE_REASONS,
    MALFORMED_RESPONSE,
    TIMEOUT,
    DecisionUnavailable,
)
from precheck.models import ConfirmationToken, Decision, GovernanceDecision, GovernanceRequest

logger = logging.getLogger(__name__)

PRECHECK_PATH = "/api/v1/precheck"

# Wire decision strings (case-insensitive) -> gate outcome
WIRE_DECISIONS: dict[str, Decision] = {
    "allow": Decision.ALLOW,
    "transform": Decision.ALLOW,
    "confirm": Decision.CONFIRM,
    "block": Decision.BLOCK,
    "deny": Decision.BLOCK,
}

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def parse_decision(body: Any) -> GovernanceDecision:
    """Validate an authority response body. Raises DecisionUnavailable."""
    if not isinstance(body, dict):
        raise DecisionUnavailable(MALFORMED_RESPONSE, "response body is not an object")

    raw_decision = body.get("decision")
    if not isinstance(raw_decision, str) or raw_decision.lower() not in WIRE_DECISIONS:
        raise DecisionUnavailable(MALFORMED_RESPONSE, f"unknown decision {raw_decision!r}")

    reasons = body.get("reasons") or []
    metadata = body.get("metadata") or {}
    content = body.get("content")
    if not isinstance(reasons, list) or not isinstance(metadata, dict):
        raise DecisionUnavailable(MALFORMED_RESPONSE, "reasons/metadata have the wrong shape")

    confirmation = None
    url = body.get("confirmation_url") or metadata.get("confirmation_url")
    if url:
        confirmation = ConfirmationToken(
            url=str(url),
            confirmation_id=body.get("confirmation_id") or metadata.get("confirmation_id"),
            expires_at=body.get("expires_at") or metadata.get("expires_at"),
        )

    try:
        return GovernanceDecision(
            outcome=WIRE_DECISIONS[raw_decision.lower()],
            reasons=[str(r) for r in reasons],
            modified_payload=content if isinstance(content, dict) and content else None,
            metadata=metadata,
            confirmation=confirmation,
        )
    except ValidationError as exc:
        raise DecisionUnavailable(MALFORMED_RESPONSE, str(exc)) from exc


def blocked_decision(category: str) -> GovernanceDecision:
    """The BLOCK a decision-path failure resolves to."""
    return GovernanceDecision(
        outcome=Decision.BLOCK,
        reasons=[FAILURE_REASONS.get(category, FAILURE_REASONS[CONNECTION_FAILED])],
        metadata={"fallback": True},
        failure_category=category,
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class DecisionClient:
    """
    Long-lived client for the DecisionAuthority's v1 REST contract.

    Constructed once at process start and shared by all requests; the
    underlying ``httpx.AsyncClient`` is safe for concurrent use.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        org_id: str = "",
        timeout: float = 30.0,
        attempt_timeout: float = 10.0,
        retries: int = 3,
        retry_delay: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if retries < 0:
            raise ValueError("retries must be >= 0")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.org_id = org_id
        self.timeout = timeout
        self.attempt_timeout = attempt_timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self._client = client or httpx.AsyncClient(timeout=attempt_timeout)

    def _headers(self, request: GovernanceRequest, subject_id: str, org_id: Optional[str]) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Governs-User-Id": subject_id,
            # Retries reuse the id so the authority can treat them as re-evaluations
            "X-Correlation-Id": request.correlation_id,
        }
        if self.api_key:
            headers["X-Governs-Key"] = self.api_key
        if org_id or self.org_id:
            headers["X-Governs-Org-Id"] = org_id or self.org_id
        return headers

    async def decide(
        self,
        request: GovernanceRequest,
        subject_id: str,
        org_id: Optional[str] = None,
    ) -> GovernanceDecision:
        """Ask the authority for a decision. Raises DecisionUnavailable."""
        try:
            return await asyncio.wait_for(
                self._decide_with_retries(request, subject_id, org_id),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise DecisionUnavailable(TIMEOUT, f"no decision within {self.timeout}s") from exc

    async def _decide_with_retries(
        self,
        request: GovernanceRequest,
        subject_id: str,
        org_id: Optional[str],
    ) -> GovernanceDecision:
        url = f"{self.base_url}{PRECHECK_PATH}"
        wire = request.to_wire()
        headers = self._headers(request, subject_id, org_id)
        failure = DecisionUnavailable(CONNECTION_FAILED, "no attempt completed")

        for attempt in range(self.retries + 1):
            if attempt:
                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.info(
                    "Retrying precheck (corr=%s, attempt %d/%d) in %.2fs: %s",
                    request.correlation_id, attempt + 1, self.retries + 1, delay, failure,
                )
                await asyncio.sleep(delay)

            try:
                resp = await self._client.post(
                    url, json=wire, headers=headers, timeout=self.attempt_timeout,
                )
            except httpx.TimeoutException as exc:
                failure = DecisionUnavailable(TIMEOUT, f"attempt timed out: {exc.__class__.__name__}")
                continue
            except httpx.HTTPError as exc:
                failure = DecisionUnavailable(CONNECTION_FAILED, f"transport error: {exc.__class__.__name__}")
                continue

            if resp.status_code in _RETRYABLE_STATUS:
                failure = DecisionUnavailable(AUTHORITY_ERROR, f"authority returned HTTP {resp.status_code}")
                continue
            if resp.status_code >= 400:
                raise DecisionUnavailable(AUTHORITY_ERROR, f"authority returned HTTP {resp.status_code}")

            try:
                body = resp.json()
            except ValueError as exc:
                raise DecisionUnavailable(MALFORMED_RESPONSE, "response is not JSON") from exc
            return parse_decision(body)

        raise failure

    async def precheck(
        self,
        request: GovernanceRequest,
        subject_id: str,
        org_id: Optional[str] = None,
    ) -> GovernanceDecision:
        """Like ``decide`` but fail-secure: every failure becomes BLOCK."""
        try:
            return await self.decide(request, subject_id, org_id)
        except DecisionUnavailable as exc:
            logger.error(
                "Precheck unavailable - BLOCKING (corr=%s, category=%s): %s",
                request.correlation_id, exc.category, exc,
            )
            return blocked_decision(exc.category)
        except Exception:
            # Anything unforeseen on the decision path still denies
            logger.exception("Precheck failed unexpectedly - BLOCKING (corr=%s)", request.correlation_id)
            return blocked_decision(CONNECTION_FAILED)

    async def aclose(self) -> None:
        await self._client.aclose()
