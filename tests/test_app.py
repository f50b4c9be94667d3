"""Smoke test for the ASGI entry point."""

from fastapi import FastAPI

from app.main import app, build_app


def test_entry_point_builds_app():
    assert isinstance(app, FastAPI)
    assert isinstance(build_app(), FastAPI)


def test_routes_registered():
    paths = {route.path for route in app.routes}
    assert {"/expenses", "/expenses/{expense_id}", "/budget", "/dashboard", "/ws"} <= paths
