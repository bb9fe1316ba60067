#!/usr/bin/env python3
"""
SocialHub API entry point

    uvicorn app:app --host 0.0.0.0 --port 8000
"""
import logging
import os

from socialhub.core.app_factory import create_app

logger = logging.getLogger(__name__)

app = create_app()

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    logger.info(f"Starting SocialHub API on port {port}")
    uvicorn.run(app, host="0.0.0.0", port=port)
