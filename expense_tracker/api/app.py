"""
HTTP Transport for the API Layer

A thin FastAPI wrapper: it turns headers into a RequestContext, hands the
body to the matching flow and returns the flow's ApiResponse as JSON with
its status code. No business rules live here.

Identity comes from the identity provider in front of this service as two
headers, X-User-Id and X-User-Name. They are trusted as-is.
"""

import asyncio
from typing import Any, Optional

import structlog
from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from expense_tracker import __version__
from expense_tracker.config import AppSettings, get_settings
from expense_tracker.models.expense import ApiResponse, RequestContext
from expense_tracker.notifications import NotificationChannel, Subscription
from expense_tracker.orchestrator import BudgetFlow, ExpenseFlow, create_app_components


logger = structlog.get_logger(__name__)


def get_request_context(
    x_user_id: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
) -> RequestContext:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=400, detail="Missing uid")
    return RequestContext(owner_id=x_user_id, display_name=x_user_name)


def _respond(result: ApiResponse) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.model_dump(mode="json"))


async def stream_events(websocket: WebSocket, subscription: Subscription) -> None:
    """
    Forward a subscription's events to a websocket until either side stops.

    A failed send ends the stream just like a client disconnect. The
    subscription is closed and both tasks are finished before this returns.
    """
    async def pump():
        async for event in subscription:
            await websocket.send_json(event.to_message())

    async def drain():
        # Clients don't send anything; this only detects the disconnect
        while True:
            await websocket.receive_text()

    tasks = [asyncio.create_task(pump()), asyncio.create_task(drain())]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if task.cancelled():
                continue
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning(
                    "live_updates_stopped",
                    owner_id=subscription.owner_id,
                    error_type=type(error).__name__,
                    error=str(error),
                )
    finally:
        subscription.close()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def create_app(
    expense_flow: Optional[ExpenseFlow] = None,
    budget_flow: Optional[BudgetFlow] = None,
    channel: Optional[NotificationChannel] = None,
    settings: Optional[AppSettings] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Components not passed in are created from settings. debug_mode turns
    on FastAPI's debug tracebacks.
    """
    settings = settings or get_settings().app
    if expense_flow is None or budget_flow is None or channel is None:
        default_expenses, default_budgets, default_channel = create_app_components(settings)
        expense_flow = expense_flow or default_expenses
        budget_flow = budget_flow or default_budgets
        channel = channel or default_channel

    app = FastAPI(title="Expense Tracker", version=__version__, debug=settings.debug_mode)

    @app.post("/expenses")
    async def create_expense(
        payload: dict[str, Any] = Body(...),
        ctx: RequestContext = Depends(get_request_context),
    ):
        return _respond(await expense_flow.create_expense(ctx, payload))

    @app.get("/expenses")
    async def list_expenses(ctx: RequestContext = Depends(get_request_context)):
        return _respond(await expense_flow.list_expenses(ctx))

    @app.get("/expenses/{expense_id}")
    async def get_expense(expense_id: str, ctx: RequestContext = Depends(get_request_context)):
        return _respond(await expense_flow.get_expense(ctx, expense_id))

    @app.get("/expenses/{expense_id}/history")
    async def get_history(expense_id: str, ctx: RequestContext = Depends(get_request_context)):
        return _respond(await expense_flow.get_history(ctx, expense_id))

    @app.put("/expenses/{expense_id}")
    async def update_expense(
        expense_id: str,
        payload: dict[str, Any] = Body(...),
        ctx: RequestContext = Depends(get_request_context),
    ):
        return _respond(await expense_flow.update_expense(ctx, expense_id, payload))

    @app.delete("/expenses/{expense_id}")
    async def delete_expense(expense_id: str, ctx: RequestContext = Depends(get_request_context)):
        return _respond(await expense_flow.delete_expense(ctx, expense_id))

    @app.get("/history")
    async def history_summary(ctx: RequestContext = Depends(get_request_context)):
        return _respond(await expense_flow.history_summary(ctx))

    @app.put("/budget")
    async def set_budget(
        payload: dict[str, Any] = Body(...),
        ctx: RequestContext = Depends(get_request_context),
    ):
        if payload.get("reset"):
            return _respond(await budget_flow.reset_budget(ctx))
        return _respond(await budget_flow.set_budget(ctx, payload.get("amount")))

    @app.delete("/budget")
    async def reset_budget(ctx: RequestContext = Depends(get_request_context)):
        return _respond(await budget_flow.reset_budget(ctx))

    @app.get("/budget")
    async def get_budget(
        include_status: bool = Query(default=True),
        ctx: RequestContext = Depends(get_request_context),
    ):
        return _respond(await budget_flow.get_budget(ctx, include_status=include_status))

    @app.get("/dashboard")
    async def get_dashboard(ctx: RequestContext = Depends(get_request_context)):
        return _respond(await budget_flow.get_dashboard(ctx))

    @app.websocket("/ws")
    async def live_updates(websocket: WebSocket, uid: str = Query(...)):
        """Push the owner's change events until the client goes away."""
        # Subscribe first so nothing published right after the handshake is missed
        with channel.subscribe(uid) as subscription:
            await websocket.accept()
            await stream_events(websocket, subscription)

    return app
