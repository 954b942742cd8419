"""FastAPI adapter — thin translation layer, no business logic."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Literal

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from turnstile import create_runtime
from turnstile.engine.models import ApprovalEvent
from turnstile.engine.runtime import ConversationRuntime

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0


class DecisionRequest(BaseModel):
    decision: Literal["APPROVED", "REJECTED"]
    user_id: str


def create_app(runtime: ConversationRuntime | None = None) -> FastAPI:
    runtime = runtime or create_runtime()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        await runtime.aclose()

    app = FastAPI(title="turnstile API", version="0.1.0", lifespan=lifespan)
    app.state.runtime = runtime

    @app.post("/frames")
    async def ingest(request: Request) -> JSONResponse:
        body = await request.body()
        event = await runtime.ingest(body)
        if event is None:
            return JSONResponse({"dropped": True}, status_code=202)
        return JSONResponse(event.model_dump(mode="json"))

    @app.get("/sessions")
    async def sessions() -> JSONResponse:
        return JSONResponse(await runtime.sessions())

    @app.get("/sessions/{session_id}/messages")
    async def messages(session_id: str, visible: bool = False) -> JSONResponse:
        if visible:
            items = await runtime.visible_messages(session_id)
        else:
            items = await runtime.messages(session_id)
        return JSONResponse([m.model_dump(mode="json") for m in items])

    @app.get("/sessions/{session_id}/responses")
    async def responses(session_id: str) -> JSONResponse:
        items = await runtime.responses(session_id)
        return JSONResponse([
            {
                "message_ids": [m.id for m in r.messages],
                "final_message_id": r.final_message.id if r.final_message is not None else None,
                "open": r.is_open,
            }
            for r in items
        ])

    @app.get("/sessions/{session_id}/interactions")
    async def interactions(session_id: str, final_message_id: str | None = None) -> JSONResponse:
        result = await runtime.interactions(session_id, final_message_id)
        return JSONResponse({
            "entries": [e.model_dump(mode="json") for e in result.entries],
            "orphan_results": result.orphan_results,
        })

    @app.get("/sessions/{session_id}/approvals")
    async def approvals(session_id: str) -> JSONResponse:
        return JSONResponse([i.model_dump(mode="json") for i in runtime.pending_approvals(session_id)])

    @app.post("/approvals/{tool_use_id}/decision")
    async def decide(tool_use_id: str, body: DecisionRequest) -> JSONResponse:
        accepted = await runtime.decide(tool_use_id, body.decision, body.user_id)
        if not accepted:
            return JSONResponse(
                {"accepted": False, "detail": "Unknown or already decided approval"},
                status_code=409,
            )
        return JSONResponse({"accepted": True})

    @app.get("/approvals/events")
    async def approval_events(request: Request, session_id: str | None = None) -> StreamingResponse:
        queue: asyncio.Queue[ApprovalEvent] = asyncio.Queue()
        unsubscribe = runtime.gatekeeper.bus.subscribe(None, queue.put_nowait)

        async def sse_stream():
            try:
                while not await request.is_disconnected():
                    try:
                        event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                    except asyncio.TimeoutError:
                        yield ": keep-alive\n\n"
                        continue
                    if session_id is not None and event.session_id != session_id:
                        continue
                    payload: dict[str, Any] = event.model_dump(mode="json")
                    yield f"event: {event.type.value}\ndata: {json.dumps(payload, default=str)}\n\n"
            finally:
                unsubscribe()

        return StreamingResponse(
            sse_stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    return app


# Module-level instance for ``uvicorn turnstile.adapters.web_fastapi.app:app``
app = create_app()


def serve() -> None:
    """Entry-point for ``turnstile-web`` console script."""
    import uvicorn

    uvicorn.run(
        "turnstile.adapters.web_fastapi.app:app",
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )
