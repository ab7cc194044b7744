import json
from typing import List, Optional, Dict, Any, Set
from sqlalchemy import select, update, delete
from sqlalchemy.orm import Session, selectinload
from showcase.database import models
from showcase.database.transaction import transaction
from showcase.repositories.interfaces import IProjectRepository
from showcase.services.exceptions import ConcurrentModificationError

# 요청에서 직접 갱신할 수 있는 프로젝트 컬럼
_PROJECT_COLUMNS = ("title", "date", "courses", "description", "cover")

class SqlalchemyProjectRepository(IProjectRepository):
    def __init__(self, db_session: Session):
        self.db = db_session

    def create(self, fields: Dict[str, Any], members: List[Dict[str, Any]]) -> int:
        project = models.Project(**self._column_values(fields))
        project.members = [self._build_member(position, data) for position, data in enumerate(members)]
        with transaction(self.db):
            self.db.add(project)
            self.db.flush()  # 프로젝트 INSERT 후 멤버 INSERT
            project_id = project.id
        return project_id

    def find_by_id(self, project_id: int) -> Optional[models.Project]:
        return (
            self.db.query(models.Project)
            .options(selectinload(models.Project.members))
            .filter(models.Project.id == project_id)
            .first()
        )

    def end_read(self):
        self.db.rollback()

    def list_all(self) -> List[models.Project]:
        return (
            self.db.query(models.Project)
            .options(selectinload(models.Project.members))
            .order_by(models.Project.id.desc())
            .all()
        )

    def update(
        self,
        project_id: int,
        fields: Dict[str, Any],
        members: List[Dict[str, Any]],
        expected_version: Optional[int] = None,
    ) -> Optional[models.Project]:
        with transaction(self.db):
            expected_version = self._check_version(project_id, expected_version)
            if expected_version is None:
                return None

            self.db.execute(delete(models.Member).where(models.Member.project_id == project_id))
            new_members = [self._build_member(position, data) for position, data in enumerate(members)]
            for member in new_members:
                member.project_id = project_id
            self.db.add_all(new_members)
            self.db.flush()

            values = self._column_values(fields)
            values["version"] = expected_version + 1
            result = self.db.execute(
                update(models.Project)
                .where(models.Project.id == project_id, models.Project.version == expected_version)
                .values(**values)
            )
            if result.rowcount != 1:
                raise ConcurrentModificationError(
                    f"Project '{project_id}' was modified by another request."
                )

        return self.find_by_id(project_id)

    def delete(self, project_id: int, expected_version: Optional[int] = None) -> bool:
        with transaction(self.db):
            expected_version = self._check_version(project_id, expected_version)
            if expected_version is None:
                return False

            self.db.execute(delete(models.Member).where(models.Member.project_id == project_id))
            result = self.db.execute(
                delete(models.Project)
                .where(models.Project.id == project_id, models.Project.version == expected_version)
            )
            if result.rowcount != 1:
                raise ConcurrentModificationError(
                    f"Project '{project_id}' was modified by another request."
                )
        return True

    def list_attachment_refs(self) -> Set[str]:
        refs = set()
        for cover, gallery in self.db.query(models.Project.cover, models.Project.gallery).all():
            if cover:
                refs.add(cover)
            refs.update(json.loads(gallery or "[]"))
        for (image,) in self.db.query(models.Member.image).filter(models.Member.image.isnot(None)).all():
            refs.add(image)
        return refs

    def _check_version(self, project_id: int, expected_version: Optional[int]) -> Optional[int]:
        """현재 버전을 읽어 기대 버전과 비교합니다. 프로젝트가 없으면 None."""
        current = self.db.execute(
            select(models.Project.version).where(models.Project.id == project_id)
        ).scalar_one_or_none()
        if current is None:
            return None
        if expected_version is not None and current != expected_version:
            raise ConcurrentModificationError(
                f"Project '{project_id}' is at version {current}, expected {expected_version}."
            )
        return current

    @staticmethod
    def _column_values(fields: Dict[str, Any]) -> Dict[str, Any]:
        values = {key: fields[key] for key in _PROJECT_COLUMNS if key in fields}
        if "gallery_refs" in fields:
            values["gallery"] = json.dumps(list(fields["gallery_refs"]))
        return values

    @staticmethod
    def _build_member(position: int, data: Dict[str, Any]) -> models.Member:
        return models.Member(
            uid=data["uid"],
            position=position,
            name=data["name"],
            titles=data.get("titles") or "",
            email=data.get("email") or "",
            image=data.get("image"),
            is_responsible=bool(data.get("is_responsible")),
        )
