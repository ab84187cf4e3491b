"""FastAPI application exposing /chat and /health."""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from streamforge.api.chat_endpoint import ChatEndpoint
from streamforge.telemetry.monitoring import ApplicationMonitor, HealthMonitor
from streamforge.utils.logger import logger


def create_app(endpoint: Optional[ChatEndpoint] = None, monitor: Optional[HealthMonitor] = None) -> FastAPI:
    """
    Build the application.

    Args:
        endpoint: Chat endpoint to serve; built with the monitor when omitted
        monitor: Health monitor shared by the chat and health routes

    Returns:
        Configured FastAPI app
    """
    if monitor is None:
        monitor = endpoint.monitor if endpoint is not None else ApplicationMonitor()
    if endpoint is None:
        endpoint = ChatEndpoint(monitor=monitor)

    app = FastAPI(title="streamforge", description="Segmented, tool-aware chat streaming")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.chat_endpoint = endpoint
    app.state.monitor = monitor

    @app.post("/chat")
    async def chat(request: Request) -> Response:
        return await endpoint.handle(request)

    @app.api_route("/health", methods=["GET", "POST"])
    async def health() -> JSONResponse:
        status = monitor.get_health_status()
        return JSONResponse(status_code=status.http_status, content=status.to_response_body())

    logger.info("streamforge application created")
    return app
