import logging
import os
import re
import secrets
import threading
import time
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from showcase.repositories.interfaces import IPendingCleanupRepository
from showcase.services.exceptions import AttachmentCleanupError

logger = logging.getLogger(__name__)

# 생성된 ref만 허용: 경로 구분자나 '..'이 들어갈 수 없음
_REF_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_EXTENSION_PATTERN = re.compile(r"^\.[A-Za-z0-9]{1,10}$")


class AttachmentService:
    """업로드된 첨부 파일을 평면(flat) 디렉터리에 저장하고 삭제합니다."""
    _ref_lock = threading.Lock()
    _last_timestamp = 0

    def __init__(
        self,
        upload_dir: str,
        cleanup_repo: Optional[IPendingCleanupRepository] = None,
        max_attempts: int = 3,
        retry_delay: float = 0.2,
    ):
        """
        AttachmentService를 초기화합니다.

        Args:
            upload_dir: 첨부 파일을 저장할 디렉터리. 없으면 생성합니다.
            cleanup_repo: 삭제에 끝내 실패한 ref를 기록할 리포지토리.
            max_attempts: 삭제 1건당 최대 시도 횟수.
            retry_delay: 재시도 사이의 대기 시간(초). 시도마다 두 배로 늘어납니다.
        """
        self.upload_dir = upload_dir
        self.cleanup_repo = cleanup_repo
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        os.makedirs(self.upload_dir, exist_ok=True)

    def generate_ref(self, original_filename: str = "") -> str:
        """
        이전에 생성된 적 없는 새 ref를 만듭니다.

        단조 증가하는 나노초 타임스탬프와 임의 접미사를 결합하며,
        원본 파일의 확장자(영숫자만)를 보존합니다.
        """
        with self._ref_lock:
            timestamp = max(time.time_ns(), AttachmentService._last_timestamp + 1)
            AttachmentService._last_timestamp = timestamp
        suffix = secrets.randbelow(10 ** 9)
        extension = os.path.splitext(original_filename or "")[1].lower()
        if not _EXTENSION_PATTERN.match(extension):
            extension = ""
        return f"upload-{timestamp}-{suffix:09d}{extension}"

    def store(self, content: bytes, original_filename: str = "") -> str:
        """
        바이트를 새 ref 이름으로 저장하고 ref를 반환합니다.

        파일은 배타적 생성 모드('xb')로 열기 때문에 기존 파일을 덮어쓰는 일은 없습니다.
        """
        while True:
            ref = self.generate_ref(original_filename)
            try:
                with open(self.path_for(ref), "xb") as f:
                    f.write(content)
            except FileExistsError:
                continue
            logger.debug("Stored attachment %s (%d bytes)", ref, len(content))
            return ref

    def path_for(self, ref: str) -> str:
        """
        ref를 업로드 디렉터리 안의 경로로 변환합니다.

        Raises:
            ValueError: ref가 평범한 파일 이름이 아닐 때.
        """
        if not ref or not _REF_PATTERN.match(ref) or ".." in ref:
            raise ValueError(f"Invalid attachment ref: {ref!r}")
        return os.path.join(self.upload_dir, ref)

    def exists(self, ref: str) -> bool:
        try:
            return os.path.isfile(self.path_for(ref))
        except ValueError:
            return False

    def list_stored_refs(self) -> Set[str]:
        """업로드 디렉터리에 실제로 존재하는 모든 파일 이름."""
        return {
            name for name in os.listdir(self.upload_dir)
            if os.path.isfile(os.path.join(self.upload_dir, name))
        }

    def delete(self, ref: str) -> bool:
        """
        첨부 파일을 최선을 다해(best-effort) 삭제합니다. 예외를 던지지 않습니다.

        파일이 이미 없으면 삭제된 것으로 봅니다. 그 밖의 OSError는
        max_attempts번까지 재시도하고, 끝내 실패하면 정리 대기 기록을 남깁니다.
        반드시 소유 트랜잭션이 커밋된 뒤에만 호출해야 합니다.

        Returns:
            파일이 더 이상 존재하지 않으면 True, 정리 대기로 넘겼으면 False.
        """
        try:
            self._unlink_with_retry(ref)
            return True
        except AttachmentCleanupError as e:
            logger.error("Cleanup Warning: %s", e)
            self._record_pending(ref, str(e))
            return False

    def delete_many(self, refs: Iterable[str]) -> Dict[str, List[str]]:
        """여러 ref를 순서대로 삭제하고, 삭제된 것과 정리 대기로 넘긴 것을 돌려줍니다."""
        result = {"deleted": [], "pending": []}
        for ref in dict.fromkeys(refs):
            if self.delete(ref):
                result["deleted"].append(ref)
            else:
                result["pending"].append(ref)
        return result

    def retry_pending_cleanups(self) -> Dict[str, List[str]]:
        """
        정리 대기 기록을 하나씩 다시 삭제해 봅니다.
        성공한 기록은 제거하고, 실패한 기록은 남겨 둡니다.
        """
        result = {"deleted": [], "remaining": []}
        if self.cleanup_repo is None:
            return result

        for entry in self.cleanup_repo.list_all():
            try:
                self._unlink_with_retry(entry.ref)
            except AttachmentCleanupError as e:
                logger.warning("Pending cleanup for '%s' still failing: %s", entry.ref, e)
                result["remaining"].append(entry.ref)
                continue
            self.cleanup_repo.remove(entry)
            result["deleted"].append(entry.ref)
        return result

    def _unlink_with_retry(self, ref: str) -> None:
        try:
            path = self.path_for(ref)
        except ValueError as e:
            raise AttachmentCleanupError(str(e)) from e

        delay = self.retry_delay
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                os.remove(path)
                logger.info("Attachment deleted: %s", ref)
                return
            except FileNotFoundError:
                logger.info("Attachment already gone, skipping delete: %s", ref)
                return
            except OSError as e:
                last_error = e
                logger.warning("Failed to delete attachment '%s' (attempt %d/%d): %s",
                               ref, attempt, self.max_attempts, e)
                if attempt < self.max_attempts and delay > 0:
                    time.sleep(delay)
                    delay *= 2
        raise AttachmentCleanupError(
            f"Failed to delete attachment '{ref}' after {self.max_attempts} attempts: {last_error}"
        )

    def _record_pending(self, ref: str, reason: str) -> None:
        if self.cleanup_repo is None:
            logger.error("Attachment '%s' needs manual cleanup: %s", ref, reason)
            return
        try:
            self.cleanup_repo.add(ref, reason, self.max_attempts)
        except SQLAlchemyError:
            logger.exception("Could not record pending cleanup for attachment '%s'", ref)
