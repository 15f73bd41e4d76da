from __future__ import annotations

import pytest

from precheck.models import BudgetSubject


@pytest.fixture
def subject() -> BudgetSubject:
    return BudgetSubject(user_id="user-1", org_id="org-1")
