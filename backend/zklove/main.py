"""
zklove — Core API Entry Point.

Privacy-preserving compatibility matching: profiles are published only as
commitments, likes carry zero-knowledge compatibility proofs, and detail
disclosure is paid for in Aura.
"""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from zklove.api.dating import router as dating_router
from zklove.api.dating import zklove_error_handler
from zklove.core.config import Settings, settings
from zklove.core.errors import ZKLoveError
from zklove.services.dating_service import ZKDatingService

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logging.getLogger("zklove").setLevel(level.upper())


def create_app(
    app_settings: Optional[Settings] = None,
    service: Optional[ZKDatingService] = None,
) -> FastAPI:
    app_settings = app_settings or settings
    app = FastAPI(
        title=app_settings.PROJECT_NAME,
        description="Zero-knowledge dating compatibility core",
        version="0.1.0",
        openapi_url=f"{app_settings.API_V1_STR}/openapi.json",
    )

    # --- CORS Configuration ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.dating_service = service or ZKDatingService.from_settings(app_settings)
    app.add_exception_handler(ZKLoveError, zklove_error_handler)
    app.include_router(dating_router, prefix=app_settings.API_V1_STR)

    return app


configure_logging(settings.LOG_LEVEL)
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("zklove.main:app", host="0.0.0.0", port=settings.PORT, reload=True)
