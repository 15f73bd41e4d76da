"""
Correlation Issuer

One identifier per governed action, threaded through the budget fetch, the
decision call, the dispatch and every audit record for that action.
"""

from __future__ import annotations

from uuid import uuid4


def new_correlation_id() -> str:
    """Return a fresh UUID4 string."""
    return str(uuid4())
