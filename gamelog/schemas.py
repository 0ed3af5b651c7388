# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2025 The GameLog Authors

"""
GameLog Pydantic Schemas

Request/response models for the admin update API. Field names are
camelCase on the wire to match the dashboard client.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict


# =============================================================================
# REQUEST MODELS
# =============================================================================

class StartUpdateRequest(BaseModel):
    """Body of POST /api/admin/update. Empty body installs the latest release."""
    version: Optional[str] = Field(default=None, description="Release version to install")


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class UpdateProgressInfo(BaseModel):
    """Latest progress of a running update."""
    stage: str = Field(..., description="starting, downloading, extracting, backing_up, updating, restarting, completed or error")
    message: str = Field(..., description="Human-readable progress message")
    progress: Optional[int] = Field(default=None, ge=0, le=100, description="Percent complete")
    error: Optional[str] = Field(default=None, description="Error message when stage is error")
    backup_path: Optional[str] = Field(default=None, alias="backupPath", description="Backup used for recovery")

    model_config = ConfigDict(populate_by_name=True)


class UpdateStatusResponse(BaseModel):
    """Response of GET /api/admin/update."""
    update_in_progress: bool = Field(..., alias="updateInProgress")
    progress: Optional[UpdateProgressInfo] = Field(default=None)

    model_config = ConfigDict(populate_by_name=True)


class UpdateStartedResponse(BaseModel):
    """Acknowledgement that a background update was started."""
    message: str = Field(default="Update process started")
    update_in_progress: bool = Field(default=True, alias="updateInProgress")
    target_version: str = Field(..., alias="targetVersion")

    model_config = ConfigDict(populate_by_name=True)


class MessageResponse(BaseModel):
    """Plain acknowledgement."""
    message: str


class ReleaseSummary(BaseModel):
    """Release details shown when an update is available."""
    name: str
    tag: str
    published_at: str = Field(..., alias="publishedAt")
    url: str
    notes: str

    model_config = ConfigDict(populate_by_name=True)


class VersionCheckResponse(BaseModel):
    """Response of GET /api/admin/version."""
    current_version: str = Field(..., alias="currentVersion")
    latest_version: Optional[str] = Field(default=None, alias="latestVersion")
    has_update: bool = Field(default=False, alias="hasUpdate")
    release_info: Optional[ReleaseSummary] = Field(default=None, alias="releaseInfo")
    error: Optional[str] = None
    message: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Running GameLog version")
    update_in_progress: bool = Field(default=False, alias="updateInProgress")

    model_config = ConfigDict(populate_by_name=True)


class ContainerConfigInfo(BaseModel):
    """Settings of the running container."""
    port: str
    volumes: List[str] = Field(default_factory=list)
    env_vars: List[str] = Field(default_factory=list, alias="envVars")
    name: str

    model_config = ConfigDict(populate_by_name=True)


class DeploymentInfoResponse(BaseModel):
    """Response of GET /api/admin/version/deployment-info."""
    method: str = Field(..., description="compose, docker or git")
    config: Optional[ContainerConfigInfo] = Field(default=None, description="Only for plain docker")
