"""Pytest configuration and shared fixtures."""

import pytest

from portal_forge.models.config import RetryPolicy, WorkflowConfig


def pytest_configure(config):
    """Register the asyncio marker used by workflow and pipeline tests."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


@pytest.fixture
def fast_workflow_config() -> WorkflowConfig:
    """Workflow config with no real waiting: fixed zero backoff, short timeouts."""
    return WorkflowConfig(
        retry=RetryPolicy(max_attempts=3, backoff="fixed", initial_delay_seconds=0.0),
        call_timeout_seconds=0.2,
        pipeline_poll_interval_seconds=0.0,
        pipeline_timeout_seconds=1.0,
    )
