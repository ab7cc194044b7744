from abc import ABC, abstractmethod
from typing import List
from showcase.database import models

class IPendingCleanupRepository(ABC):
    @abstractmethod
    def add(self, ref: str, reason: str, attempts: int) -> models.PendingCleanup:
        """삭제하지 못한 첨부 파일을 정리 대기 목록에 기록합니다."""
        pass

    @abstractmethod
    def list_all(self) -> List[models.PendingCleanup]:
        """정리 대기 중인 모든 기록을 오래된 순으로 조회합니다."""
        pass

    @abstractmethod
    def remove(self, entry: models.PendingCleanup) -> bool:
        """정리가 끝난 기록을 삭제합니다."""
        pass
