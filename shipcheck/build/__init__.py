"""Vendoring, image building and the build-plan executor."""

from .image import DockerImageBuilder, ImageBuilder
from .orchestrator import BuildOrchestrator, BuildOutcome, application_coordinates
from .vendor import GoModVendorer, Vendorer

__all__ = [
    "BuildOrchestrator",
    "BuildOutcome",
    "DockerImageBuilder",
    "GoModVendorer",
    "ImageBuilder",
    "Vendorer",
    "application_coordinates",
]
