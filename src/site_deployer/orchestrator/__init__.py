"""Deployment orchestration."""

from .locks import DeploymentInProgress, RunLock
from .models import DeploymentOutcome
from .pipeline import DeploymentPipeline

__all__ = [
    "DeploymentInProgress",
    "DeploymentOutcome",
    "DeploymentPipeline",
    "RunLock",
]
