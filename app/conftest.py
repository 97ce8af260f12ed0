"""
Root pytest configuration for the Django project.

pytest-django reads DJANGO_SETTINGS_MODULE (config.test_settings) from
pyproject.toml. App-specific fixtures are defined in each app's
tests/conftest.py.
"""

import pytest


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_consumers.py → e2e (WebSocket sessions through the ASGI stack)
    - test_views.py, test_services.py, test_tasks.py, etc. → integration
    - test_models.py, test_payloads.py, test_hub.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_consumers.py"]

    integration_patterns = [
        "test_views.py",
        "test_services.py",
        "test_tasks.py",
        "test_signals.py",
        "test_events.py",
        "test_unread.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_managers.py",
        "test_payloads.py",
        "test_hub.py",
        "test_cache.py",
        "test_bridge.py",
        "test_model_mixins.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)
