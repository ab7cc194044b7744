import json
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from showcase.database import models
from showcase.repositories.interfaces import IProjectRepository
from showcase.services.attachment_service import AttachmentService
from showcase.services.exceptions import (
    ProjectNotFoundError,
    ProjectValidationError,
    ProjectTransactionError,
    ConcurrentModificationError,
)
from showcase.utils.attachment_diff import (
    KeyedRef,
    ProjectSnapshot,
    diff_cover,
    diff_gallery,
    find_orphans,
    reconcile_member_images,
    take_snapshot,
)

logger = logging.getLogger(__name__)

_UID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


@dataclass(frozen=True)
class Upload:
    """요청과 함께 도착한 파일 하나. member_uid는 멤버 이미지를 특정 멤버에 묶을 때 사용합니다."""
    filename: str
    content: bytes
    member_uid: Optional[str] = None


class ProjectService:
    """
    프로젝트 생성/수정/삭제 요청 하나를 처리하는 오케스트레이터.

    요청마다 RECEIVED → VALIDATED → TX_OPEN → {TX_COMMITTED → CLEANUP_DONE | TX_ABORTED}
    순서로 진행합니다. 파일 삭제는 반드시 트랜잭션 커밋 이후에만 일어납니다.
    """

    def __init__(self, project_repo: IProjectRepository, attachment_service: AttachmentService, max_gallery_files: int = 10):
        """
        ProjectService를 초기화합니다.

        Args:
            project_repo: 프로젝트/멤버 데이터에 접근하기 위한 리포지토리.
            attachment_service: 첨부 파일 저장/삭제를 담당하는 서비스.
            max_gallery_files: 요청 하나에 허용되는 갤러리 업로드 최대 개수.
        """
        self.project_repo = project_repo
        self.attachment_service = attachment_service
        self.max_gallery_files = max_gallery_files

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------

    def list_projects(self) -> List[Dict[str, Any]]:
        """모든 프로젝트를 최신 ID 순으로, 순서가 유지된 멤버와 함께 조회합니다."""
        return [self._serialize(p) for p in self.project_repo.list_all()]

    def get_project(self, project_id: int) -> Dict[str, Any]:
        """
        ID로 특정 프로젝트를 조회합니다.

        Raises:
            ProjectNotFoundError: 해당 ID의 프로젝트를 찾을 수 없을 때.
        """
        project = self.project_repo.find_by_id(project_id)
        if not project:
            raise ProjectNotFoundError(f"Project with id '{project_id}' not found.")
        return self._serialize(project)

    # ------------------------------------------------------------------
    # 생성
    # ------------------------------------------------------------------

    def create_project(
        self,
        title: str,
        date: str = "",
        courses: str = "",
        description: str = "",
        members: Any = None,
        cover: Optional[Upload] = None,
        member_images: Optional[Sequence[Upload]] = None,
        gallery: Optional[Sequence[Upload]] = None,
    ) -> Dict[str, Any]:
        """
        프로젝트와 멤버를 하나의 트랜잭션으로 생성합니다.

        멤버 이미지는 member_uid가 있으면 그 멤버에, 없으면 업로드 순서대로
        앞쪽 멤버부터 배정됩니다.

        Returns:
            생성된 프로젝트의 ID를 담은 딕셔너리.

        Raises:
            ProjectValidationError: 형식 오류, 필수 필드 누락, 책임자 수가 1이 아닐 때.
            ProjectTransactionError: 트랜잭션이 실패해 롤백되었을 때.
        """
        # RECEIVED
        member_dicts = self._normalize_members(self._decode_list(members, "members"))
        member_images = list(member_images or [])
        gallery = list(gallery or [])

        # VALIDATED
        self._validate_title(title)
        self._validate_uploads(member_dicts, member_images, gallery)
        logger.debug("Create project: VALIDATED (%d members)", len(member_dicts))

        cover_ref = self._store(cover) if cover else None
        gallery_refs = [self._store(upload) for upload in gallery]
        image_refs = [KeyedRef(self._store(upload), upload.member_uid) for upload in member_images]

        assignment = reconcile_member_images([m["uid"] for m in member_dicts], [], image_refs)
        for member, image in zip(member_dicts, assignment.images):
            member["image"] = image

        fields = {
            "title": title,
            "date": date or "",
            "courses": courses or "",
            "description": description or "",
            "cover": cover_ref,
            "gallery_refs": gallery_refs,
        }

        # TX_OPEN
        try:
            project_id = self.project_repo.create(fields, member_dicts)
        except SQLAlchemyError as e:
            logger.error("Create project: TX_ABORTED: %s", e)
            raise ProjectTransactionError("Failed to create project.") from e
        logger.info("Project %s created with %d members", project_id, len(member_dicts))

        # TX_COMMITTED → CLEANUP_DONE
        self.attachment_service.delete_many(assignment.unused_uploads)
        return {"id": project_id}

    # ------------------------------------------------------------------
    # 수정
    # ------------------------------------------------------------------

    def update_project(
        self,
        project_id: int,
        title: str,
        date: str = "",
        courses: str = "",
        description: str = "",
        members: Any = None,
        previous_member_images: Any = None,
        gallery_remove: Any = None,
        cover: Optional[Upload] = None,
        member_images: Optional[Sequence[Upload]] = None,
        gallery: Optional[Sequence[Upload]] = None,
        version: Any = None,
    ) -> Dict[str, Any]:
        """
        프로젝트 필드를 갱신하고 멤버를 통째로 교체하며 갤러리는 차이(diff)로 병합합니다.

        스냅샷은 트랜잭션 전에 읽고, 커밋이 끝난 뒤 스냅샷과 최종 상태를 비교해
        더 이상 참조되지 않는 첨부 파일을 삭제합니다.

        Raises:
            ProjectNotFoundError: 해당 ID의 프로젝트가 없을 때.
            ProjectValidationError: 형식 오류나 불변식 위반.
            ConcurrentModificationError: 스냅샷 이후 다른 요청이 먼저 변경했을 때.
            ProjectTransactionError: 트랜잭션이 실패해 롤백되었을 때.
        """
        # RECEIVED
        members_raw = self._decode_list(members, "members")
        previous_images = self._decode_list(previous_member_images, "previous_member_images")
        remove = self._decode_list(gallery_remove, "gallery_remove")
        member_images = list(member_images or [])
        gallery = list(gallery or [])

        project = self.project_repo.find_by_id(project_id)
        if not project:
            raise ProjectNotFoundError(f"Project with id '{project_id}' not found.")
        snapshot = take_snapshot(project)
        self.project_repo.end_read()
        expected_version = snapshot.version if version is None else self._parse_version(version)

        # VALIDATED
        self._validate_title(title)
        member_dicts = self._normalize_members(members_raw)
        previous_images = self._validate_previous_images(previous_images, len(member_dicts), snapshot)
        if not all(isinstance(ref, str) for ref in remove):
            raise ProjectValidationError("'gallery_remove' must be a list of attachment names.")
        self._validate_uploads(member_dicts, member_images, gallery)

        uids = [m["uid"] for m in member_dicts]
        placeholders = [KeyedRef(f"<upload:{i}>", u.member_uid) for i, u in enumerate(member_images)]
        plan = reconcile_member_images(uids, previous_images, placeholders, snapshot)
        self._check_unique_images(plan.images)
        logger.debug("Update project %s: VALIDATED (snapshot version %s)", project_id, snapshot.version)

        cover_ref = self._store(cover) if cover else None
        gallery_refs = [self._store(upload) for upload in gallery]
        image_refs = [KeyedRef(self._store(upload), upload.member_uid) for upload in member_images]

        assignment = reconcile_member_images(uids, previous_images, image_refs, snapshot)
        for member, image in zip(member_dicts, assignment.images):
            member["image"] = image
        gallery_diff = diff_gallery(snapshot.gallery, remove, gallery_refs)
        cover_diff = diff_cover(snapshot.cover, cover_ref)

        fields = {
            "title": title,
            "date": date or "",
            "courses": courses or "",
            "description": description or "",
            "gallery_refs": gallery_diff.final,
        }
        if cover_ref:
            fields["cover"] = cover_ref

        # TX_OPEN
        try:
            updated = self.project_repo.update(project_id, fields, member_dicts, expected_version)
        except ConcurrentModificationError:
            logger.warning("Update project %s: TX_ABORTED (concurrent modification)", project_id)
            raise
        except SQLAlchemyError as e:
            logger.error("Update project %s: TX_ABORTED: %s", project_id, e)
            raise ProjectTransactionError(f"Failed to update project '{project_id}'.") from e
        if updated is None:
            raise ProjectNotFoundError(f"Project with id '{project_id}' not found.")

        # TX_COMMITTED: 스냅샷과 최종 상태를 비교해 고아 파일 계산
        final_refs = [cover_diff.final] + gallery_diff.final + assignment.images
        orphans = find_orphans(snapshot, [ref for ref in final_refs if ref])
        logger.debug("Update project %s: TX_COMMITTED, %d orphaned attachments", project_id, len(orphans))

        # CLEANUP_DONE
        self.attachment_service.delete_many(orphans + assignment.unused_uploads)
        logger.info("Project %s updated to version %s", project_id, updated.version)
        return {"id": project_id, "version": updated.version, "message": "Project updated."}

    # ------------------------------------------------------------------
    # 삭제
    # ------------------------------------------------------------------

    def delete_project(self, project_id: int, version: Any = None) -> bool:
        """
        프로젝트와 멤버 행을 삭제한 뒤, 이들이 참조하던 모든 첨부 파일을 삭제합니다.

        Raises:
            ProjectNotFoundError: 해당 ID의 프로젝트가 없을 때.
            ConcurrentModificationError: 스냅샷 이후 다른 요청이 먼저 변경했을 때.
            ProjectTransactionError: 트랜잭션이 실패해 롤백되었을 때.
        """
        project = self.project_repo.find_by_id(project_id)
        if not project:
            raise ProjectNotFoundError(f"Project with id '{project_id}' not found.")
        snapshot = take_snapshot(project)
        self.project_repo.end_read()
        expected_version = snapshot.version if version is None else self._parse_version(version)

        try:
            deleted = self.project_repo.delete(project_id, expected_version)
        except SQLAlchemyError as e:
            logger.error("Delete project %s: TX_ABORTED: %s", project_id, e)
            raise ProjectTransactionError(f"Failed to delete project '{project_id}'.") from e
        if not deleted:
            raise ProjectNotFoundError(f"Project with id '{project_id}' not found.")

        self.attachment_service.delete_many(snapshot.all_refs())
        logger.info("Project %s deleted", project_id)
        return True

    def reconcile_attachments(self) -> List[str]:
        """
        업로드 디렉터리와 DB를 비교해 어떤 엔티티도 참조하지 않는 파일을 찾아냅니다.

        롤백된 트랜잭션이 남긴 파일이나 정리 대기 중인 파일이 여기에 해당합니다.
        목록만 반환하며 삭제하지는 않습니다.
        """
        stored = self.attachment_service.list_stored_refs()
        referenced = self.project_repo.list_attachment_refs()
        return sorted(stored - referenced)

    # ------------------------------------------------------------------
    # 내부 도우미
    # ------------------------------------------------------------------

    def _store(self, upload: Upload) -> str:
        return self.attachment_service.store(upload.content, upload.filename)

    @staticmethod
    def _decode_list(value: Any, field_name: str) -> List[Any]:
        """JSON 문자열 또는 리스트를 리스트로 디코딩합니다. None은 빈 리스트입니다."""
        if value is None or value == "":
            return []
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as e:
                raise ProjectValidationError(f"'{field_name}' is not valid JSON.") from e
        if not isinstance(value, list):
            raise ProjectValidationError(f"'{field_name}' must be a list.")
        return value

    @staticmethod
    def _validate_title(title: Any):
        if not isinstance(title, str) or not title.strip():
            raise ProjectValidationError("'title' is required.")

    @staticmethod
    def _parse_version(version: Any) -> int:
        try:
            return int(version)
        except (TypeError, ValueError):
            raise ProjectValidationError("'version' must be an integer.")

    @staticmethod
    def _normalize_members(raw_members: List[Any]) -> List[Dict[str, Any]]:
        """멤버 항목을 검증해 정규화하고, 책임자가 정확히 한 명인지 확인합니다."""
        normalized = []
        seen_uids = set()
        for index, item in enumerate(raw_members):
            if not isinstance(item, dict):
                raise ProjectValidationError(f"Member #{index} must be an object.")
            name = item.get("name")
            if not isinstance(name, str) or not name.strip():
                raise ProjectValidationError(f"Member #{index} requires a name.")
            for key in ("titles", "email"):
                if item.get(key) is not None and not isinstance(item.get(key), str):
                    raise ProjectValidationError(f"Member #{index} field '{key}' must be a string.")

            uid = item.get("uid") or uuid.uuid4().hex
            if not isinstance(uid, str) or not _UID_PATTERN.match(uid):
                raise ProjectValidationError(f"Member #{index} has an invalid uid.")
            if uid in seen_uids:
                raise ProjectValidationError(f"Member uid '{uid}' appears more than once.")
            seen_uids.add(uid)

            normalized.append({
                "uid": uid,
                "name": name,
                "titles": item.get("titles") or "",
                "email": item.get("email") or "",
                "is_responsible": bool(item.get("is_responsible")),
            })

        responsible = [m for m in normalized if m["is_responsible"]]
        if len(responsible) == 0:
            raise ProjectValidationError("A responsible member must be designated for the project.")
        if len(responsible) > 1:
            raise ProjectValidationError("A project may have only one responsible member.")
        return normalized

    @staticmethod
    def _validate_previous_images(previous_images: List[Any], member_count: int, snapshot: ProjectSnapshot) -> List[Optional[str]]:
        if len(previous_images) > member_count:
            raise ProjectValidationError("'previous_member_images' is longer than 'members'.")
        owned = set(image for image in snapshot.member_images if image)
        normalized = []
        for ref in previous_images:
            # null과 빈 문자열은 모두 '이전 이미지 없음'
            if ref is None or ref == "":
                normalized.append(None)
                continue
            if not isinstance(ref, str):
                raise ProjectValidationError("'previous_member_images' entries must be strings or null.")
            if ref not in owned:
                raise ProjectValidationError(f"Image '{ref}' does not belong to a member of this project.")
            normalized.append(ref)
        return normalized

    def _validate_uploads(self, member_dicts: List[Dict[str, Any]], member_images: List[Upload], gallery: List[Upload]):
        if len(gallery) > self.max_gallery_files:
            raise ProjectValidationError(f"At most {self.max_gallery_files} gallery files are allowed.")
        uids = set(m["uid"] for m in member_dicts)
        keyed = set()
        for upload in member_images:
            if upload.member_uid is None:
                continue
            if upload.member_uid not in uids:
                raise ProjectValidationError(f"Image for unknown member uid '{upload.member_uid}'.")
            if upload.member_uid in keyed:
                raise ProjectValidationError(f"More than one image for member uid '{upload.member_uid}'.")
            keyed.add(upload.member_uid)

    @staticmethod
    def _check_unique_images(images: List[Optional[str]]):
        assigned = [image for image in images if image]
        if len(assigned) != len(set(assigned)):
            raise ProjectValidationError("An image can belong to only one member.")

    @staticmethod
    def _serialize(project: models.Project) -> Dict[str, Any]:
        return {
            "id": project.id,
            "title": project.title,
            "date": project.date,
            "courses": project.courses,
            "description": project.description,
            "cover": project.cover,
            "gallery": project.gallery_refs,
            "version": project.version,
            "members": [
                {
                    "uid": m.uid,
                    "name": m.name,
                    "titles": m.titles or "",
                    "email": m.email or "",
                    "image": m.image,
                    "is_responsible": bool(m.is_responsible),
                }
                for m in project.members
            ],
        }
