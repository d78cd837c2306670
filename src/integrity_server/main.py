"""
Play Integrity attestation server
Main FastAPI application
"""

import logging
from typing import Optional

from fastapi import FastAPI

from . import __version__
from .config import AttestationSettings
from .routers import attestation
from .services.attestation import AttestationError, AttestationService
from .utils.errors import attestation_error_handler

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)-7s] - %(name)s: %(message)s"


def create_app(settings: Optional[AttestationSettings] = None,
               service: Optional[AttestationService] = None) -> FastAPI:
    """
    Build the application.

    Settings are loaded and validated from the environment when not given;
    invalid configuration terminates the process.
    """
    if service is None:
        if settings is None:
            settings = AttestationSettings.load_and_validate()
        service = AttestationService(settings)

    app = FastAPI(
        title="Play Integrity Server",
        description="Verifies Play Integrity and SafetyNet attestation tokens.",
        version=__version__,
    )
    app.state.attestation_service = service

    app.add_exception_handler(AttestationError, attestation_error_handler)
    app.include_router(attestation.router)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "ok",
            "service": "integrity-server",
            "nonces": service.ledger.get_stats(),
            "play_integrity": service.play_integrity.get_configuration_status(),
        }

    return app


def run():
    """Console entry point."""
    import uvicorn

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    settings = AttestationSettings.load_and_validate()
    app = create_app(settings)
    logger.info(f"Play Integrity Server Implementation is alive on http://localhost:{settings.port}")
    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
