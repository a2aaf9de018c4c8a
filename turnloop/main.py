"""
turnloop: FastAPI entrypoint.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env before anything else
load_dotenv()

from turnloop.config import TurnLoopConfig, get_settings, load_config
from turnloop.routers.sessions import router as sessions_router
from turnloop.tools.http_provider import HttpToolProvider

logger = logging.getLogger(__name__)


async def connect_tool_providers(cfg: TurnLoopConfig) -> list[HttpToolProvider]:
    """Fetch each configured provider's catalog; unreachable providers are skipped."""
    providers: list[HttpToolProvider] = []
    for provider_cfg in cfg.tools.providers:
        provider = HttpToolProvider(
            name=provider_cfg.name,
            base_url=provider_cfg.base_url,
            timeout=provider_cfg.timeout_seconds,
            headers=provider_cfg.headers,
        )
        try:
            await provider.refresh()
        except Exception:
            logger.exception(f"Failed to connect tool provider '{provider_cfg.name}', skipping")
            await provider.close()
            continue
        providers.append(provider)
    return providers


@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg = load_config()
    app.state.tool_providers = await connect_tool_providers(cfg)

    yield

    for provider in app.state.tool_providers:
        await provider.close()


app = FastAPI(
    title="turnloop",
    description="Agent turn engine: streamed generation with tool-use rounds",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router, prefix="/api")


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": "0.1.0"}


def start():
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "turnloop.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    start()
