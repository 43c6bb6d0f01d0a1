"""Session bootstrap: seed the environment before any CRM module imports config."""

from __future__ import annotations

import pytest

from shared.testing.environment import apply_required_test_environment

apply_required_test_environment()

from shared import health as healthmod  # noqa: E402


@pytest.fixture
def clean_health(monkeypatch):
    """Give one test its own empty health registry."""

    monkeypatch.setattr(healthmod, "_components", {})
    return healthmod
