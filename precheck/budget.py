"""
Budget Context Fetcher

Retrieves the subject's current spend snapshot from the accounting service so
the DecisionAuthority can apply budget rules. Budget visibility is allowed to
degrade: an unreachable accounting service yields a fallback snapshot instead
of failing the pipeline. The decision call itself stays fail-closed.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from precheck.models import BudgetContext, BudgetSource, BudgetSubject, BudgetType

logger = logging.getLogger(__name__)

BUDGET_CONTEXT_PATH = "/api/v1/budget/context"


class BudgetUnavailable(Exception):
    """The accounting service gave no usable snapshot. Never leaves this module."""


def parse_budget_context(body: Any, subject: BudgetSubject) -> BudgetContext:
    """Validate an accounting-service body into a BudgetContext.

    A supplied ``remaining_budget`` is trusted as-is; a missing one is derived
    from limit minus spend.
    """
    if not isinstance(body, dict):
        raise BudgetUnavailable(f"unexpected body type {type(body).__name__}")
    if body.get("available") is False:
        raise BudgetUnavailable("accounting service reported budget unavailable")

    fields: dict[str, Any] = {
        "budget_type": body.get("budget_type", BudgetType.USER.value),
        "llm_spend": body.get("llm_spend"),
        "purchase_spend": body.get("purchase_spend"),
        "source": BudgetSource.ACCOUNTING,
    }
    try:
        monthly_limit = float(body["monthly_limit"])
        current_spend = float(body["current_spend"])
        if body.get("remaining_budget") is None:
            return BudgetContext.compute(subject, monthly_limit, current_spend, **fields)
        return BudgetContext(
            subject=subject,
            monthly_limit=monthly_limit,
            current_spend=current_spend,
            remaining_budget=float(body["remaining_budget"]),
            **fields,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise BudgetUnavailable(f"malformed budget body: {exc}") from exc


class BudgetContextFetcher:
    """
    Single-attempt client for the accounting service.

    Keeps the last snapshot confirmed for each subject. When a fetch fails,
    that snapshot is reused (marked ``cached``) so the fallback never reports
    more remaining budget than was last confirmed. Subjects with no confirmed
    snapshot, or only one older than ``cache_ttl_seconds``, get the configured
    default. At most ``cache_max_subjects`` snapshots are kept; the least
    recently confirmed subject is evicted first.
    """

    def __init__(
        self,
        platform_url: str,
        api_key: str = "",
        timeout: float = 5.0,
        fallback_monthly_limit: float = 1000.0,
        cache_ttl_seconds: float = 3600.0,
        cache_max_subjects: int = 1024,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.platform_url = platform_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.fallback_monthly_limit = fallback_monthly_limit
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.cache_ttl_seconds = cache_ttl_seconds
        self.cache_max_subjects = cache_max_subjects
        self._last_confirmed: OrderedDict[tuple[str, Optional[str]], BudgetContext] = OrderedDict()

    async def fetch(self, subject: BudgetSubject, correlation_id: str = "") -> BudgetContext:
        """Return the subject's budget snapshot. Never raises on service failure."""
        key = (subject.user_id, subject.org_id)
        try:
            context = await self._fetch_remote(subject)
        except BudgetUnavailable as exc:
            logger.warning(
                "Budget context unavailable for %s (corr=%s): %s; using fallback",
                subject.user_id, correlation_id, exc,
            )
            return self.fallback(subject)

        self._last_confirmed[key] = context
        self._last_confirmed.move_to_end(key)
        while len(self._last_confirmed) > self.cache_max_subjects:
            self._last_confirmed.popitem(last=False)
        return context

    def fallback(self, subject: BudgetSubject) -> BudgetContext:
        cached = self._last_confirmed.get((subject.user_id, subject.org_id))
        if cached is not None and self._is_fresh(cached):
            return cached.model_copy(update={"source": BudgetSource.CACHED, "subject": subject})
        return BudgetContext.compute(
            subject,
            monthly_limit=self.fallback_monthly_limit,
            current_spend=0.0,
            llm_spend=0.0,
            purchase_spend=0.0,
            budget_type=BudgetType.USER,
            source=BudgetSource.FALLBACK,
        )

    def _is_fresh(self, context: BudgetContext) -> bool:
        age = (datetime.now(timezone.utc) - context.fetched_at).total_seconds()
        return age <= self.cache_ttl_seconds

    async def _fetch_remote(self, subject: BudgetSubject) -> BudgetContext:
        params = {"user_id": subject.user_id}
        if subject.org_id:
            params["org_id"] = subject.org_id
        headers = {"X-Governs-Key": self.api_key} if self.api_key else {}

        try:
            resp = await self._client.get(
                f"{self.platform_url}{BUDGET_CONTEXT_PATH}",
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise BudgetUnavailable(f"transport error: {exc.__class__.__name__}") from exc

        if resp.status_code != 200:
            raise BudgetUnavailable(f"HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as exc:
            raise BudgetUnavailable("response is not JSON") from exc

        return parse_budget_context(body, subject)

    async def aclose(self) -> None:
        await self._client.aclose()
