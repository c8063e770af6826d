from __future__ import annotations

from uuid import uuid4

import uvicorn
from fastapi import FastAPI

from approval_center.core.logging import configure_logging
from approval_center.core.logging.context import log_context

from .deps import get_registry, get_state_dir
from .routes_approvals import router as approvals_router

app = FastAPI(title="Approval Center API")
configure_logging(get_state_dir())

app.include_router(approvals_router, prefix="/approvals", tags=["approvals"])


@app.middleware("http")
async def request_context_middleware(request, call_next):
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid4())
    with log_context(correlation_id=correlation_id):
        response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


@app.get("/healthz")
def healthz() -> dict[str, object]:
    return {"ok": True, "approval_types": get_registry().list_types()}


def run() -> None:
    uvicorn.run("approval_center.apps.api.main:app", host="127.0.0.1", port=8000)
