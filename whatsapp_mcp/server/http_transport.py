"""
Streamable HTTP transport for the WhatsApp MCP server.

Routes:
- POST|GET|DELETE /mcp: MCP endpoint, multiplexed by SessionTransportManager
- GET /qr: pairing QR code as JSON
- GET /qr.png: pairing QR code as a PNG image
- GET /qr.html: auto-refreshing pairing page
- GET /auth/status: connection/authentication flags
- GET /api/health: liveness check

CORS exposes `Mcp-Session-Id` so browser clients can read their session token.
"""

import contextlib
import html
import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from whatsapp_mcp.client.pairing import decode_pairing_image

if TYPE_CHECKING:
    from whatsapp_mcp.server.mcp_server import WhatsAppMCPServer

logger = logging.getLogger(__name__)

AUTH_POLL_INTERVAL_MS = 10000


def create_app(mcp_server: "WhatsAppMCPServer") -> Starlette:
    """Build the Starlette app serving `/mcp` and the auxiliary views.

    Args:
        mcp_server: Server whose state machine and MCP server are exposed

    Returns:
        Starlette application (its lifespan runs the session manager)
    """
    machine = mcp_server.machine
    manager = mcp_server.session_manager or mcp_server.create_session_manager()
    base_url = mcp_server.config.http.base_url

    async def qr_code(request: Request) -> Any:
        """Pairing QR code as JSON."""
        state = machine.state
        if state.authenticated:
            return JSONResponse({"authenticated": True, "message": "WhatsApp is already authenticated"})

        if not state.pairing_image:
            return JSONResponse(
                {
                    "authenticated": False,
                    "qrAvailable": False,
                    "message": "QR code not yet generated. Please wait for WhatsApp to initialize.",
                }
            )

        return JSONResponse(
            {
                "authenticated": False,
                "qrAvailable": True,
                "qrCodeDataURL": state.pairing_image,
                "message": "Scan this QR code with your WhatsApp mobile app",
            }
        )

    async def qr_code_image(request: Request) -> Any:
        """Pairing QR code as a PNG image."""
        state = machine.state
        if state.authenticated:
            return PlainTextResponse("WhatsApp is already authenticated")

        if not state.pairing_image:
            return PlainTextResponse("QR code not available yet", status_code=404)

        try:
            image = decode_pairing_image(state.pairing_image)
        except Exception as e:
            logger.exception("Error serving QR code image: %s", e)
            return PlainTextResponse("Failed to serve QR code image", status_code=500)

        return Response(content=image, media_type="image/png")

    async def qr_code_page(request: Request) -> Any:
        """Auto-refreshing pairing page."""
        return HTMLResponse(render_qr_page(machine.state.authenticated, machine.state.pairing_image, base_url))

    async def auth_status(request: Request) -> Any:
        """Connection and authentication flags."""
        state = machine.state
        return JSONResponse(
            {
                "isConnected": state.connected,
                "isReady": state.ready,
                "isAuthenticated": state.authenticated,
                "qrAvailable": state.qr_available,
                "lastSeen": state.last_seen.isoformat() if state.last_seen else None,
            }
        )

    async def health_check(request: Request) -> Any:
        """
        Simple health check endpoint.

        Returns 200 OK if the server is running.
        """
        return JSONResponse(
            {
                "status": "ok",
                "message": "HTTP server is running",
                "sessions": len(manager),
                "phase": machine.phase.value,
            }
        )

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with manager.run():
            yield

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=list(mcp_server.config.http.cors_origins),
            allow_methods=["GET", "POST", "DELETE"],
            allow_headers=["Content-Type", "Mcp-Session-Id", "Last-Event-Id"],
            expose_headers=["Mcp-Session-Id"],
        ),
    ]

    return Starlette(
        routes=[
            Route("/mcp", manager),
            Route("/qr", qr_code, methods=["GET"]),
            Route("/qr.png", qr_code_image, methods=["GET"]),
            Route("/qr.html", qr_code_page, methods=["GET"]),
            Route("/auth/status", auth_status, methods=["GET"]),
            Route("/api/health", health_check, methods=["GET", "HEAD"]),
        ],
        middleware=middleware,
        lifespan=lifespan,
    )


def render_qr_page(authenticated: bool, pairing_image: str | None, base_url: str) -> str:
    """Render the pairing page; it polls /auth/status and reloads once authenticated."""
    if authenticated:
        body = '<div class="status authenticated">WhatsApp is already authenticated and ready!</div>'
    elif pairing_image:
        body = (
            '<div class="status pending">Scan this QR code with your WhatsApp mobile app</div>\n'
            '<div class="qr-code">'
            f'<img src="{html.escape(pairing_image)}" alt="WhatsApp QR Code" style="max-width: 100%; height: auto;">'
            "</div>\n"
            "<p><small>The QR code will refresh automatically when a new one is generated.</small></p>"
        )
    else:
        body = (
            '<div class="status error">'
            "QR code not yet generated. Please wait for WhatsApp to initialize..."
            "</div>"
        )

    poll = ""
    if not authenticated:
        poll = f"""
        setInterval(() => {{
            fetch('/auth/status')
                .then(r => r.json())
                .then(data => {{ if (data.isAuthenticated) {{ window.location.reload(); }} }});
        }}, {AUTH_POLL_INTERVAL_MS});"""

    return f"""<!DOCTYPE html>
<html>
<head>
    <title>WhatsApp MCP - QR Code Authentication</title>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <style>
        body {{ font-family: Arial, sans-serif; text-align: center; padding: 20px; background: #f5f5f5; }}
        .container {{ max-width: 500px; margin: 0 auto; background: white; padding: 30px; border-radius: 10px; }}
        .status {{ padding: 15px; border-radius: 5px; margin: 20px 0; }}
        .authenticated {{ background: #d4edda; color: #155724; }}
        .pending {{ background: #fff3cd; color: #856404; }}
        .error {{ background: #f8d7da; color: #721c24; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>WhatsApp MCP Authentication</h1>
        {body}
        <button onclick="window.location.reload()">Refresh</button>
        <p><small>MCP endpoint: <code>{html.escape(base_url)}/mcp</code></small></p>
    </div>
    <script>{poll}
    </script>
</body>
</html>"""


async def run_http_server(mcp_server: "WhatsAppMCPServer", host: str = "localhost", port: int = 3000) -> None:
    """
    Serve the streamable HTTP transport until uvicorn exits.

    Args:
        mcp_server: Server to expose
        host: Host to bind to
        port: Port to bind to
    """
    app = create_app(mcp_server)

    logger.info("MCP Server listening on http://%s:%s/mcp", host, port)
    logger.info("HTTP endpoints:")
    logger.info("  POST|GET|DELETE /mcp - MCP streamable HTTP transport")
    logger.info("  GET  /qr - QR code (JSON)")
    logger.info("  GET  /qr.png - QR code image")
    logger.info("  GET  /qr.html - QR code page")
    logger.info("  GET  /auth/status - Authentication status")
    logger.info("  GET  /api/health - Liveness check")

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
        access_log=False,
    )
    server = uvicorn.Server(config)

    try:
        await server.serve()
    except Exception as e:
        logger.exception("HTTP server error: %s", e)
        raise


__all__ = ["create_app", "render_qr_page", "run_http_server"]
