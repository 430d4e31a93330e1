from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from src.config import settings
from src.db import supabase
from src.domain.sweeper import build_webhook_sweeper
from src.routers import (
    super_admin,
    internal_webhooks,
    webhooks,
)

app = FastAPI(title="Keys Pay Webhooks", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.webhook_sweeper = build_webhook_sweeper(supabase, settings)


@app.middleware("http")
async def attach_request_id(request: Request, call_next):
    request_id = (
        request.headers.get("X-Request-ID")
        or request.headers.get("X-Correlation-ID")
        or str(uuid4())
    )
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response

app.include_router(super_admin.router)
app.include_router(internal_webhooks.router)
app.include_router(webhooks.router)


@app.get("/")
async def root():
    return {"status": "ok", "service": "keyspay-webhooks"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
