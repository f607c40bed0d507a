"""Shared pytest fixtures for roomblock tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_jwks_cache():
    """The JWKS cache is a module global; clear it around every test."""
    import roomblock.api.auth as auth_module

    auth_module._jwks_cache = None
    auth_module._jwks_cache_time = 0
    yield
    auth_module._jwks_cache = None
    auth_module._jwks_cache_time = 0


@pytest.fixture(autouse=True)
def _reset_running_events():
    """Per-event batch guard is process-wide state."""
    import roomblock.domain.notifications as notifications_module

    notifications_module._running_events.clear()
    yield
    notifications_module._running_events.clear()
