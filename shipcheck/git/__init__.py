"""Git collaborators: cloning, diffing and scoped working copies."""

from .vcs import GitCLI, VersionControl, is_null_sha
from .workspace import temporary_checkout

__all__ = ["GitCLI", "VersionControl", "is_null_sha", "temporary_checkout"]
