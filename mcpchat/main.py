"""FastAPI entry-point exposing tool-server and chat controls."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from mcpchat.api.chat import router as chat_router
from mcpchat.api.mcp import router as mcp_router
from mcpchat.config import Config
from mcpchat.runtime import Runtime, build_runtime


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle manager for FastAPI application."""
        # Startup: build the runtime unless one was injected
        if getattr(app.state, "runtime", None) is None:
            app.state.runtime = build_runtime(Config.from_env())
        yield
        # Shutdown: stop every tool server process
        await app.state.runtime.shutdown()

    app = FastAPI(title="MCP Tool Chat", lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(mcp_router)
    app.include_router(chat_router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
