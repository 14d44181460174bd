#!/usr/bin/env python3
"""
hls-failover-proxy - Main Entry Point
HLS manifest rewriting proxy with SSAI cue handling and relay failover.
"""

import uvicorn
import logging
import sys
import os
import asyncio

# Add the src directory to Python path so local modules in `src/` can be imported
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

# Import configs AFTER setting up the path
from config import settings, VERSION
from proxy_registry import proxy_registry


def main():
    """Main function to start the proxy server."""

    # Try to use uvloop for better async performance
    try:
        import uvloop
        asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        use_uvloop = True
    except ImportError:
        use_uvloop = False

    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger = logging.getLogger(__name__)
    logger.info("="*60)
    logger.info(
        f"⚡️ Starting hls-failover-proxy v{VERSION} on {settings.HOST}:{settings.PORT}")
    logger.info("="*60)
    logger.info(f"ℹ️  Log level set to: {settings.LOG_LEVEL}")
    if use_uvloop:
        logger.info("✅ Using uvloop for optimized async I/O performance")
    else:
        logger.info(
            "✅ Using standard asyncio (install uvloop for better performance)")

    if settings.DEV_SKIP_ENABLED:
        logger.info("✅ Manifest rewriting: skip mode (ad segments removed)")
    else:
        logger.info("✅ Manifest rewriting: annotate mode")
    logger.info(
        f"✅ {len(proxy_registry)} relays configured: {', '.join(proxy_registry.names())}")
    logger.info(
        f"✅ Failover: {settings.PROXY_MAX_ATTEMPTS} attempts, "
        f"{settings.PROXY_PROBE_TIMEOUT_MS}ms probe timeout, {settings.PROXY_RETRY_DELAY_MS}ms retry delay")

    if settings.RELOAD:
        logger.info("🔄 Auto-reload is enabled.")

    uvicorn.run(
        "api:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
        loop="uvloop" if use_uvloop and not settings.RELOAD else "asyncio"
    )


if __name__ == "__main__":
    main()
