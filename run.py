#!/usr/bin/env python3
"""Start the speaking feedback API with uvicorn."""
import uvicorn

from speaking_feedback.config.settings import settings

if __name__ == "__main__":
    # Logging is configured by the app factory; keep uvicorn from replacing it.
    uvicorn.run(
        "speaking_feedback.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=None,
    )
