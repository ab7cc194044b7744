from abc import ABC, abstractmethod
from typing import List, Optional, Dict, Any, Set
from showcase.database import models

class IProjectRepository(ABC):
    @abstractmethod
    def create(self, fields: Dict[str, Any], members: List[Dict[str, Any]]) -> int:
        """
        프로젝트 행과 모든 멤버 행을 하나의 트랜잭션으로 생성합니다.

        Args:
            fields: 프로젝트 스칼라 필드 (title, date, courses, description, cover, gallery_refs).
            members: 순서대로 삽입할 멤버 필드 딕셔너리의 리스트.

        Returns:
            생성된 프로젝트의 ID.
        """
        pass

    @abstractmethod
    def find_by_id(self, project_id: int) -> Optional[models.Project]:
        """고유 ID로 프로젝트와 (삽입 순서로 정렬된) 멤버를 조회합니다."""
        pass

    @abstractmethod
    def end_read(self):
        """스냅샷 읽기로 시작된 읽기 트랜잭션을 종료합니다. 이후의 쓰기는 새 트랜잭션에서 시작됩니다."""
        pass

    @abstractmethod
    def list_all(self) -> List[models.Project]:
        """모든 프로젝트를 최신 ID 순으로, 멤버를 포함하여 조회합니다."""
        pass

    @abstractmethod
    def update(
        self,
        project_id: int,
        fields: Dict[str, Any],
        members: List[Dict[str, Any]],
        expected_version: Optional[int] = None,
    ) -> Optional[models.Project]:
        """
        기존 멤버 행을 모두 삭제하고 새 멤버를 삽입한 뒤 프로젝트 필드를 갱신합니다.
        전체가 하나의 트랜잭션입니다.

        Returns:
            갱신된 프로젝트. ID가 없으면 None.

        Raises:
            ConcurrentModificationError: expected_version이 현재 버전과 다를 때.
        """
        pass

    @abstractmethod
    def delete(self, project_id: int, expected_version: Optional[int] = None) -> bool:
        """멤버 행과 프로젝트 행을 하나의 트랜잭션으로 삭제합니다. ID가 없으면 False."""
        pass

    @abstractmethod
    def list_attachment_refs(self) -> Set[str]:
        """프로젝트와 멤버가 현재 참조하는 모든 첨부 파일 이름을 조회합니다."""
        pass
