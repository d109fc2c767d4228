from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class PublishRequest(BaseModel):
    deploymentName: Optional[str] = None
    createdBy: Optional[str] = None


class RollbackRequest(BaseModel):
    routableName: str = Field(min_length=1)
    deploymentId: str = Field(min_length=1)


class DeploymentRenameRequest(BaseModel):
    deploymentId: str = Field(min_length=1)
    deploymentName: str
