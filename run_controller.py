#!/usr/bin/env python
"""
Controller startup script

Run from project root to start the AI Controller API.
"""

import logging
import os

import uvicorn

if __name__ == "__main__":
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "ai_controller.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=int(os.getenv("PORT", "3035")),
        reload=os.getenv("RELOAD", "false").lower() == "true",
        log_level=log_level.lower()
    )
