"""Gate FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import aiohttp
from fastapi import FastAPI

from .api.routes import router as api_router
from .config import GateSettings
from .service import GateService, build_service


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


def create_app(
    service: Optional[GateService] = None, api_key: Optional[str] = None
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        service: Prebuilt gate service; built from GATE_* settings when None
        api_key: Key required in X-GATE-API-KEY; taken from the settings
            when the service is built here
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        session: Optional[aiohttp.ClientSession] = None
        gate = service
        if gate is None:
            settings = GateSettings.from_env()
            timeout = aiohttp.ClientTimeout(total=90, connect=30)
            session = aiohttp.ClientSession(timeout=timeout)
            gate = build_service(settings, session)
            if api_key is None:
                app.state.api_key = settings.api_key

        app.state.gate = gate
        await gate.start()
        try:
            yield
        finally:
            await gate.stop()
            app.state.gate = None
            app.state.api_key = api_key
            if session is not None:
                await session.close()

    app = FastAPI(
        title="Gate API",
        version="0.1.0",
        description="Attribution-gated content decision service",
        lifespan=lifespan,
    )

    app.state.api_key = api_key
    app.include_router(api_router)

    return app


app = create_app()
