from typing import List
from sqlalchemy.orm import Session
from showcase.database import models
from showcase.repositories.interfaces import IPendingCleanupRepository

class SqlalchemyPendingCleanupRepository(IPendingCleanupRepository):
    def __init__(self, db_session: Session):
        self.db = db_session

    def add(self, ref: str, reason: str, attempts: int) -> models.PendingCleanup:
        entry = models.PendingCleanup(ref=ref, reason=reason, attempts=attempts)
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def list_all(self) -> List[models.PendingCleanup]:
        return self.db.query(models.PendingCleanup).order_by(models.PendingCleanup.id.asc()).all()

    def remove(self, entry: models.PendingCleanup) -> bool:
        if entry:
            self.db.delete(entry)
            self.db.commit()
            return True
        return False
