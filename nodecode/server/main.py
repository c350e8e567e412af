"""
NodeCode FastAPI + Socket.IO server.

Start with:
    python -m nodecode.server.main

Or via uvicorn directly:
    uvicorn nodecode.server.main:socket_app --port 3001
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from nodecode.config import Settings
from nodecode.server.routes.graph_routes import router
from nodecode.server.socket_server import create_socket_app
from nodecode.server.state import Workspace

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

def create_app(workspace: Optional[Workspace] = None) -> FastAPI:
    workspace = workspace or Workspace(Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await workspace.start()
        try:
            yield
        finally:
            await workspace.close()

    app = FastAPI(title="NodeCode API", version="1.0.0", lifespan=lifespan)
    app.state.workspace = workspace

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "sync": workspace.sync.status.value}

    return app


def build_socket_app(settings: Optional[Settings] = None):
    settings = settings or Settings.from_env()
    workspace = Workspace(settings)
    return create_socket_app(create_app(workspace), workspace)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

load_dotenv()
settings = Settings.from_env()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

# uvicorn target: Socket.IO traffic is served here, everything else falls
# through to the FastAPI app.
socket_app = build_socket_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(socket_app, host=settings.host, port=settings.port)
