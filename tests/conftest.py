"""Shared pytest fixtures for linegate tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_webhook_gateway():
    """Reset the process-wide gateway to avoid cross-test contamination.

    The webhook route builds its gateway lazily and keeps it in a
    module-level global. A gateway built for one test's settings must not
    serve the next test.
    """
    import linegate.api.routes.webhooks_line as webhook_module

    webhook_module.shutdown_gateway()
    yield
    webhook_module.shutdown_gateway()
