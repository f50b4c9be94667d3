"""HTTP API package."""

from expense_tracker.api.app import create_app, get_request_context

__all__ = ["create_app", "get_request_context"]
