from .project import Project
from .member import Member
from .pending_cleanup import PendingCleanup

__all__ = ["Project", "Member", "PendingCleanup"]
