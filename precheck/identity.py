"""
Subject Identity

Session issuance happens upstream (OIDC login at the auth proxy). The gateway
only receives the resulting user/org identifiers and turns them, together with
the server-side API key, into the subject every budget and decision call is
made on behalf of.
"""

from __future__ import annotations

import hashlib
from typing import Optional

from precheck.models import BudgetSubject


def hash_api_key(raw_key: str) -> str:
    """Return ``sha256:<hex>`` fingerprint of a raw API key."""
    digest = hashlib.sha256(raw_key.encode()).hexdigest()
    return f"sha256:{digest}"


def resolve_subject(
    user_id: Optional[str],
    org_id: Optional[str] = None,
    api_key: Optional[str] = None,
) -> BudgetSubject:
    """Build the acting subject. Raises ValueError if no user is present.

    The raw API key never leaves this function; only its fingerprint is
    carried on the subject.
    """
    if not user_id or not user_id.strip():
        raise ValueError("Unauthorized - no authenticated user on request")
    return BudgetSubject(
        user_id=user_id.strip(),
        org_id=(org_id or None),
        api_key_hash=hash_api_key(api_key) if api_key else None,
    )
