from .project import IProjectRepository
from .pending_cleanup import IPendingCleanupRepository

__all__ = ["IProjectRepository", "IPendingCleanupRepository"]
