"""Command-line entry point that runs the API server under uvicorn."""

from __future__ import annotations

import dotenv
import uvicorn

from consent_audit import config
from consent_audit.utils import logger

log = logger.create_logger("Server")


def main() -> None:
    """Entry point for running the server."""
    dotenv.load_dotenv()
    server = config.ServerConfig()

    log.section("Consent Audit Server")
    log.success(f"Server listening on {server.host}:{server.port}")
    log.info("Environment", {"env": server.environment})

    uvicorn.run(
        "consent_audit.app:app",
        host=server.host,
        port=server.port,
        reload=not server.is_production,
    )


if __name__ == "__main__":
    main()
