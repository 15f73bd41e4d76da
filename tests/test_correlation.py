"""Correlation Issuer Test Suite"""

from __future__ import annotations

import uuid

from precheck.correlation import new_correlation_id


def test_ids_are_uuid4():
    parsed = uuid.UUID(new_correlation_id())
    assert parsed.version == 4


def test_ids_never_repeat():
    ids = {new_correlation_id() for _ in range(10_000)}
    assert len(ids) == 10_000
