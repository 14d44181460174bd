from fastapi import FastAPI, HTTPException, Query, Response, Request, Depends, Header
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
from typing import Optional

from config import settings, VERSION
from events import EventManager
from hls_proxy import HLSProxy, UpstreamError, PLAYLIST_CONTENT_TYPE
from manifest_rewriter import configured_mode, rewrite_manifest
from models import SessionCreateRequest, SessionEvent, WebhookConfig
from proxy_failover import FailoverEngine, ProxyProber, find_working_proxy
from proxy_registry import proxy_registry
from session_manager import SessionManager

logger = logging.getLogger(__name__)

PLAYLIST_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD",
    "Access-Control-Allow-Headers": "Content-Type",
}

hls_proxy = HLSProxy()
prober = ProxyProber()
failover_engine = FailoverEngine(prober, proxy_registry)
session_manager = SessionManager(failover_engine, prober)
event_manager = EventManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    logger.info(f"HLS failover proxy starting up (rewrite mode: {configured_mode().value})...")
    await event_manager.start()

    session_manager.set_event_manager(event_manager)
    await session_manager.start()

    def log_event_handler(event: SessionEvent):
        """Simple event handler that logs all events"""
        logger.info(
            f"Event: {event.event_type.value} for {event.channel} (session {event.session_id})")

    event_manager.add_handler(log_event_handler)

    yield

    logger.info("HLS failover proxy shutting down...")
    await session_manager.stop()
    await event_manager.stop()
    await prober.aclose()
    await hls_proxy.stop()


app = FastAPI(
    title="hls-failover-proxy",
    version=VERSION,
    description="HLS manifest rewriting proxy with SSAI cue handling and relay failover",
    lifespan=lifespan,
    root_path=settings.ROOT_PATH,
    docs_url=settings.DOCS_URL,
    redoc_url=settings.REDOC_URL,
    openapi_url=settings.OPENAPI_URL,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)


async def verify_token(
    x_api_token: Optional[str] = Header(None, alias="X-API-Token"),
    api_token: Optional[str] = Query(
        None, description="API token (alternative to X-API-Token header)")
):
    """
    Verify API token if API_TOKEN is configured.
    Token can be provided via:
    - X-API-Token header (recommended)
    - api_token query parameter (for browser access or when headers are difficult)

    If API_TOKEN is not set in environment, authentication is disabled.
    """
    if not settings.API_TOKEN:
        return True

    provided_token = x_api_token or api_token

    if not provided_token:
        raise HTTPException(
            status_code=401,
            detail="API token required. Provide token via X-API-Token header or api_token query parameter.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if provided_token != settings.API_TOKEN:
        raise HTTPException(
            status_code=403,
            detail="Invalid API token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return True


def validate_source(src: Optional[str]) -> str:
    """Reject missing, non-HTTPS, or non-allow-listed source URLs."""
    if not src or not src.strip():
        raise HTTPException(status_code=400, detail="Missing src parameter")
    src = src.strip()
    if settings.HTTPS_ONLY and not src.startswith("https://"):
        raise HTTPException(status_code=400, detail="Only HTTPS URLs allowed")
    if not proxy_registry.is_allowed_url(src):
        logger.warning(f"Rejected source outside allow-list: {src}")
        raise HTTPException(status_code=403, detail="Source host is not allowed")
    return src


@app.api_route("/api/hls", methods=["GET", "HEAD"])
async def get_hls(request: Request, src: Optional[str] = Query(None, description="Absolute upstream URL")):
    """Fetch a playlist or segment through the proxy, rewriting playlists on the way out"""
    src = validate_source(src)

    try:
        upstream = await hls_proxy.fetch(src)
    except UpstreamError as e:
        raise HTTPException(status_code=502, detail=f"Upstream error: {e}")

    if upstream.is_playlist:
        content = rewrite_manifest(upstream.text, upstream.final_url).encode("utf-8")
        media_type = PLAYLIST_CONTENT_TYPE
    else:
        content = upstream.content
        media_type = upstream.content_type

    if request.method == "HEAD":
        return Response(status_code=200, media_type=media_type, headers=PLAYLIST_HEADERS)
    return Response(content=content, media_type=media_type, headers=PLAYLIST_HEADERS)


@app.get("/api/hls/inspect", dependencies=[Depends(verify_token)])
async def inspect_hls(src: Optional[str] = Query(None, description="Absolute upstream playlist URL")):
    """Cue and playlist diagnostics for an upstream manifest"""
    src = validate_source(src)
    try:
        return await hls_proxy.inspect(src)
    except UpstreamError as e:
        raise HTTPException(status_code=502, detail=f"Upstream error: {e}")


@app.get("/api/proxy/endpoints")
async def list_endpoints():
    """Relay endpoints in the order failover tries them"""
    return {"endpoints": [e.to_dict() for e in proxy_registry.endpoints]}


@app.get("/api/proxy/failover")
async def find_proxy(
    channel: str = Query(..., min_length=1, max_length=64),
    max_attempts: Optional[int] = Query(None, ge=1),
    preferred: str = Query("auto", description="Relay name to try first, or 'auto'")
):
    """Find a working relay for a channel; returns 503 with every attempt when all fail"""
    outcome = await find_working_proxy(failover_engine, channel, max_attempts, preferred)
    if not outcome.success:
        return JSONResponse(status_code=503, content=outcome.to_dict())
    return outcome.to_dict()


@app.post("/api/sessions")
async def create_session(request: SessionCreateRequest):
    """Start a player session on the first working relay"""
    session, outcome = await session_manager.create_session(
        request.channel, request.preferred_proxy, request.max_attempts)
    if session is None:
        return JSONResponse(status_code=503, content={
            "error": "Stream unavailable",
            "failover": outcome.to_dict(),
        })
    return {"session": session.to_dict(), "failover": outcome.to_dict()}


@app.get("/api/sessions", dependencies=[Depends(verify_token)])
async def list_sessions():
    return {
        "sessions": [s.to_dict() for s in session_manager.sessions.values()],
        "total": len(session_manager.sessions),
    }


@app.get("/api/sessions/{session_id}")
async def get_session(session_id: str):
    session = session_manager.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session.to_dict()


@app.get("/api/sessions/{session_id}/events", dependencies=[Depends(verify_token)])
async def get_session_events(session_id: str):
    """Events emitted for a live session, oldest first"""
    if session_manager.get_session(session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"events": [e.model_dump(mode="json") for e in event_manager.events_for_session(session_id)]}


@app.post("/api/sessions/{session_id}/failure")
async def report_session_failure(session_id: str):
    """Report a segment/playlist failure; may switch the session to another relay"""
    result = await session_manager.report_failure(session_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return result


@app.post("/api/sessions/{session_id}/success")
async def report_session_success(session_id: str):
    session = await session_manager.report_success(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session.to_dict()


@app.delete("/api/sessions/{session_id}")
async def close_session(session_id: str):
    if not await session_manager.close_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"message": f"Session {session_id} closed"}


@app.get("/health", dependencies=[Depends(verify_token)])
async def health_check():
    """Health check endpoint with detailed status"""
    return {
        "status": "healthy",
        "version": VERSION,
        "rewrite_mode": configured_mode().value,
        "relays": len(proxy_registry),
        "active_sessions": len(session_manager.sessions),
        "events": dict(event_manager.counts),
    }

# Webhook Management Endpoints


@app.post("/webhooks", dependencies=[Depends(verify_token)])
async def add_webhook(webhook: WebhookConfig):
    """Add a new webhook configuration"""
    event_manager.add_webhook(webhook)
    return {
        "message": "Webhook added successfully",
        "webhook_url": str(webhook.url),
        "events": [e.value for e in webhook.events],
        "channels": webhook.channels,
    }


@app.get("/webhooks", dependencies=[Depends(verify_token)])
async def list_webhooks():
    """List all configured webhooks"""
    return {
        "webhooks": [
            {
                "url": str(wh.url),
                "events": [e.value for e in wh.events],
                "channels": wh.channels,
                "timeout": wh.timeout,
                "retry_attempts": wh.retry_attempts
            }
            for wh in event_manager.webhooks
        ]
    }


@app.delete("/webhooks", dependencies=[Depends(verify_token)])
async def remove_webhook(webhook_url: str = Query(..., description="Webhook URL to remove")):
    """Remove a webhook configuration"""
    if not event_manager.remove_webhook(webhook_url):
        raise HTTPException(status_code=404, detail="Webhook not found")
    return {"message": f"Webhook {webhook_url} removed"}
