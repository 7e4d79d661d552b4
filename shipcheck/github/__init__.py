"""GitHub App integration: authentication and the check-run status service."""

from .auth import AppAuthenticator
from .client import APPROVED, REJECTED, GitHubClient, StatusService

__all__ = ["APPROVED", "AppAuthenticator", "GitHubClient", "REJECTED", "StatusService"]
