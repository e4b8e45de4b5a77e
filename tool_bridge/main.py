"""
Tool Bridge - Main Application Entry Point

FastAPI application exposing the bridge: a local model runtime (Ollama)
drives external tool servers through the orchestrator.

Startup (lifespan):
    1. Configure logging from Settings
    2. Load the bridge file (model endpoint + tool servers)
    3. Start every tool server, register static and discovered tools
    4. Start periodic health probes
Shutdown always stops every tool server, including on startup failure.

Run with:
    tool-bridge                       # console script, see run()
    uvicorn tool_bridge.main:app
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI

from tool_bridge import __version__
from tool_bridge.api.routes.health import router as health_router
from tool_bridge.api.routes.servers import router as servers_router
from tool_bridge.api.routes.sessions import router as sessions_router
from tool_bridge.api.routes.tools import router as tools_router
from tool_bridge.core.config import BridgeConfig, Settings, get_settings, load_bridge_config
from tool_bridge.observability.logging import configure_logging
from tool_bridge.processes.manager import ProcessManager
from tool_bridge.processes.state import HealthState
from tool_bridge.providers.base import ModelInterface
from tool_bridge.providers.ollama import OllamaModel
from tool_bridge.rpc.translator import ProtocolTranslator
from tool_bridge.services.orchestrator import BridgeOrchestrator
from tool_bridge.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

# Application metadata
APP_NAME = "Tool Bridge"
APP_DESCRIPTION = "Bridge between a local model runtime and JSON-RPC tool servers"


def create_app(
    settings: Optional[Settings] = None,
    bridge_config: Optional[BridgeConfig] = None,
    model: Optional[ModelInterface] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use. Defaults to get_settings().
        bridge_config: Already-loaded bridge file. Defaults to loading
            ``settings.config_path`` at startup.
        model: Model adapter. Defaults to OllamaModel for the configured
            endpoint.

    Returns:
        The application; collaborators live on ``app.state`` while it runs.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        configure_logging(settings.log_level)
        logger.info(f"{APP_NAME} v{__version__} starting in {settings.environment} mode")

        config = bridge_config or load_bridge_config(settings.config_path)
        translator = ProtocolTranslator()
        registry = ToolRegistry()
        manager = ProcessManager(settings, registry=registry, translator=translator)
        model_interface = model or OllamaModel(
            model=config.model.model,
            base_url=config.model.base_url,
            timeout=config.model.timeout or settings.llm_timeout_seconds,
        )

        app.state.settings = settings
        app.state.bridge_config = config
        app.state.registry = registry
        app.state.manager = manager
        app.state.orchestrator = BridgeOrchestrator(
            model_interface, registry, manager, translator=translator, settings=settings
        )

        try:
            async with manager:
                statuses = await manager.start_all(config.servers)
                failed = [s.name for s in statuses if s.state is HealthState.FAILED]
                if failed:
                    logger.warning(f"Tool servers failed to start: {', '.join(failed)}")
                logger.info(
                    f"Started {len(statuses) - len(failed)}/{len(statuses)} tool servers, "
                    f"{len(registry)} tools registered"
                )
                manager.start_health_checks()
                yield
        finally:
            await model_interface.aclose()
            logger.info(f"{APP_NAME} shut down")

    app = FastAPI(
        title=APP_NAME,
        description=APP_DESCRIPTION,
        version=__version__,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(health_router)
    app.include_router(tools_router)
    app.include_router(sessions_router)
    app.include_router(servers_router)

    @app.get("/", tags=["Info"])
    async def root() -> dict[str, Any]:
        """Root endpoint returning basic service information."""
        return {
            "service": settings.service_name,
            "version": __version__,
            "docs": "/docs" if settings.environment != "production" else "disabled",
        }

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the application with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "tool_bridge.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
