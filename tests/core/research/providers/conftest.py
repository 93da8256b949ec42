"""Shared fixtures for research provider tests."""

import pytest

from research_synth.core.research.providers.resilience import reset_resilience_manager_for_testing


@pytest.fixture(autouse=True)
def _fresh_resilience_state():
    """Circuit breakers and rate limiters are process-wide; start clean."""
    reset_resilience_manager_for_testing()
    yield
    reset_resilience_manager_for_testing()
