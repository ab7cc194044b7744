from .sqlalchemy_project_repository import SqlalchemyProjectRepository
from .sqlalchemy_pending_cleanup_repository import SqlalchemyPendingCleanupRepository

__all__ = ["SqlalchemyProjectRepository", "SqlalchemyPendingCleanupRepository"]
