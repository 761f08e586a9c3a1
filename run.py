#!/usr/bin/env python3
"""
fxdesk settlement service
Main execution script - Run this file to start the API server
"""

import logging
import os

import uvicorn


def main():
    """Main entry point for the fxdesk API server."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    port_env = os.environ.get("PORT")
    port = 8000
    if port_env:
        try:
            port = int(port_env)
        except ValueError:
            logging.warning("Invalid PORT value: %s, using default 8000", port_env)

    logging.info("Starting fxdesk on port %s (API docs at http://localhost:%s/docs)", port, port)
    uvicorn.run(
        "fxdesk.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
