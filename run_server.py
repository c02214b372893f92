#!/usr/bin/env python3
"""
Board server launcher
Configures logging and serves the FastAPI application with uvicorn
"""
import logging
import os
import sys
import uvicorn
from config import DEFAULT_HOST, DEFAULT_PORT, LOG_LEVEL, DB_PATH, UPLOAD_DIR


def main():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logger = logging.getLogger("run_server")
    logger.info("Starting board server on %s:%s", DEFAULT_HOST, DEFAULT_PORT)
    # Relative data paths resolve against the directory the server was started from
    logger.info("Database: %s, uploads: %s", os.path.abspath(DB_PATH), os.path.abspath(UPLOAD_DIR))

    try:
        from app import app

        uvicorn.run(
            app,
            host=DEFAULT_HOST,
            port=DEFAULT_PORT,
            reload=False,
            access_log=True,
            log_config=None,
        )
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("Error starting server")
        sys.exit(1)


if __name__ == "__main__":
    main()
