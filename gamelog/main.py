# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2025 The GameLog Authors

"""
GameLog Main Application

FastAPI application exposing the admin endpoints for version checks and
in-place updates of a self-hosted GameLog container.
"""

import hmac
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from . import __version__
from .config import config, setup_logging
from .deployment import get_deployment_info
from .releases import ReleaseClient, check_for_updates
from .schemas import (
    DeploymentInfoResponse,
    HealthResponse,
    MessageResponse,
    StartUpdateRequest,
    UpdateProgressInfo,
    UpdateStartedResponse,
    UpdateStatusResponse,
    VersionCheckResponse,
)
from .session import UpdateSession, reset_update_session
from .updater import InPlaceUpdater

# Setup logging
setup_logging(config.logging)
logger = logging.getLogger(__name__)

# =============================================================================
# SERVICE INITIALIZATION
# =============================================================================

# Initialized on startup
release_client: Optional[ReleaseClient] = None
update_session: Optional[UpdateSession] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    global release_client, update_session

    logger.info("GameLog %s starting up...", __version__)

    updater_config = config.updater
    release_client = ReleaseClient(
        updater_config.github_owner,
        updater_config.github_repo,
        token=updater_config.github_token or os.environ.get("GITHUB_TOKEN"),
        artifact_template=updater_config.artifact_template,
    )
    update_session = reset_update_session(grace_period=updater_config.status_grace_period)

    if not config.server.admin_key:
        logger.warning("No admin key configured; admin endpoints are disabled")

    logger.info("GameLog ready on http://%s:%d", config.server.host, config.server.port)

    yield  # Application runs here

    logger.info("GameLog shutting down...")
    if update_session and update_session.task and not update_session.task.done():
        logger.warning("Shutting down while an update is still running")
    logger.info("GameLog shutdown complete")


# =============================================================================
# APPLICATION SETUP
# =============================================================================

app = FastAPI(
    title="GameLog",
    description="Personal video game backlog tracker - admin update API",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


def _create_updater() -> InPlaceUpdater:
    """Build the updater for one run."""
    return InPlaceUpdater(
        config.updater,
        release_client=release_client,
        environment=config.server.environment,
    )


def _get_session() -> UpdateSession:
    if update_session is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return update_session


# =============================================================================
# AUTHENTICATION
# =============================================================================

async def verify_admin_key(x_admin_key: Optional[str] = Header(None)) -> bool:
    """Verify admin key."""
    if not config.server.admin_key:
        raise HTTPException(status_code=503, detail="Admin access is not configured")

    if not x_admin_key:
        raise HTTPException(
            status_code=401,
            detail="Admin key required. Use 'X-Admin-Key' header."
        )

    if not hmac.compare_digest(x_admin_key.encode(), config.server.admin_key.encode()):
        raise HTTPException(status_code=401, detail="Invalid admin key")

    return True


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Wrap HTTP errors in the {"error": {...}} envelope the dashboard reads."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.detail,
                "type": "api_error",
                "code": str(exc.status_code)
            }
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Log the traceback; clients only see a generic 500 envelope."""
    logger.exception("Unexpected error: %s", exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "message": "Internal server error",
                "type": "internal_error",
                "code": "500"
            }
        }
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint. Stays responsive while an update runs."""
    if update_session is None:
        return HealthResponse(status="starting", version=__version__)

    return HealthResponse(
        status="ok",
        version=__version__,
        update_in_progress=update_session.in_progress,
    )


@app.get("/api/admin/version", response_model=VersionCheckResponse)
async def get_version_info(admin: bool = Depends(verify_admin_key)):
    """Compare the running version with the latest GitHub release."""
    if release_client is None:
        raise HTTPException(status_code=503, detail="Service not ready")

    result = await check_for_updates(release_client, __version__)
    return result.to_dict()


@app.get("/api/admin/version/deployment-info", response_model=DeploymentInfoResponse)
async def get_deployment_details(admin: bool = Depends(verify_admin_key)):
    """Report how this instance was deployed."""
    try:
        return await get_deployment_info(config.updater.app_dir, config.server.environment)
    except Exception as e:
        logger.exception("Error getting deployment info: %s", e)
        raise HTTPException(status_code=500, detail="Failed to get deployment information")


@app.get("/api/admin/update", response_model=UpdateStatusResponse)
async def get_update_status(admin: bool = Depends(verify_admin_key)):
    """Return whether an update is running and its latest progress."""
    session = _get_session()
    progress = session.current_status()

    return UpdateStatusResponse(
        update_in_progress=session.in_progress,
        progress=UpdateProgressInfo(**progress.to_dict()) if progress else None,
    )


@app.post("/api/admin/update", response_model=UpdateStartedResponse)
async def start_update(
    request: Optional[StartUpdateRequest] = Body(None),
    admin: bool = Depends(verify_admin_key),
):
    """
    Start an in-place update in the background.

    Installs ``version`` from the body, or the latest release when omitted.
    Poll GET /api/admin/update for progress.
    """
    session = _get_session()

    if session.in_progress:
        raise HTTPException(status_code=409, detail="Update already in progress")

    if request is not None and request.version:
        target_version = request.version
    else:
        if release_client is None:
            raise HTTPException(status_code=503, detail="Service not ready")
        version_info = await check_for_updates(release_client, __version__)
        if not version_info.has_update or not version_info.latest_version:
            raise HTTPException(status_code=400, detail="No updates available")
        target_version = version_info.latest_version

    # Another request may have started while the version check was awaited
    if not session.try_start():
        raise HTTPException(status_code=409, detail="Update already in progress")

    try:
        session.launch(_create_updater, target_version)
    except Exception as e:
        logger.exception("Update initialization error: %s", e)
        session.force_reset()
        raise HTTPException(status_code=500, detail="Failed to start update process")

    logger.info("Update to %s started", target_version)
    return UpdateStartedResponse(target_version=target_version)


@app.delete("/api/admin/update", response_model=MessageResponse)
async def reset_update_status(admin: bool = Depends(verify_admin_key)):
    """
    Reset the update status (emergency use).

    Clears the in-progress flag; a run that is still active is not stopped.
    """
    session = _get_session()
    session.force_reset()
    logger.warning("Update status reset by admin")
    return MessageResponse(message="Update status reset")


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gamelog.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=False,
        log_level=config.logging.level.lower(),
    )
