"""
ASGI Entry Point for Expense Tracker

Serve with any ASGI server, e.g.:

    uvicorn app.main:app

Configuration is read from the environment and .env (see
expense_tracker.config). The storage backend is chosen by
STORAGE_BACKEND; "memory" needs no credentials and loses everything on
restart.

DESIGN PRINCIPLES:
1. Settings are validated before the first request, not on it
2. One set of components per process, shared by every request
3. The frontend only ever talks to the API layer
"""

import structlog

from expense_tracker.api import create_app
from expense_tracker.config import get_settings, validate_all_settings
from expense_tracker.orchestrator import create_app_components


logger = structlog.get_logger("expense_tracker.app")


def build_app():
    """Validate configuration, wire the components and return the app."""
    checks = validate_all_settings()
    failed = {name: value for name, value in checks.items() if value is False}
    if failed:
        errors = {name: checks.get(f"{name}_error") for name in failed}
        logger.error("settings_invalid", errors=errors)
        raise RuntimeError(f"Invalid configuration: {errors}")

    settings = get_settings().app
    expense_flow, budget_flow, channel = create_app_components(settings)
    logger.info(
        "app_started",
        environment=settings.app_environment,
        debug=settings.debug_mode,
        checks=checks,
    )
    return create_app(expense_flow, budget_flow, channel, settings=settings)


app = build_app()
