#!/usr/bin/env python3
"""
TicketScan FastAPI Application Entrypoint

The endpoints and pipeline wiring live in ticketscan/api.py.
This file is just a simple entrypoint for uvicorn.
Reads HOST, PORT, LOG_LEVEL from environment (loaded from .env when available).
"""
import os

from dotenv import load_dotenv

load_dotenv()

from ticketscan.api import app  # noqa: E402

if __name__ == "__main__":
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")

    port_str = os.getenv("PORT", "8000")
    try:
        port = int(port_str)
    except ValueError:
        port = 8000

    log_level = os.getenv("LOG_LEVEL", "info").lower()
    # Uvicorn supported levels: critical, error, warning, info, debug, trace
    if log_level not in {"critical", "error", "warning", "info", "debug", "trace"}:
        log_level = "info"

    uvicorn.run(app, host=host, port=port, log_level=log_level)
