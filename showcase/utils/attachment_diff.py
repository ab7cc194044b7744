# showcase/utils/attachment_diff.py
"""
이전 상태(스냅샷)와 요청된 최종 상태를 비교하는 순수 함수 모음.
I/O를 하지 않으므로 DB나 파일 시스템 없이 테스트할 수 있습니다.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class ProjectSnapshot:
    """트랜잭션 시작 전에 읽어 둔 프로젝트의 첨부 파일 상태."""
    project_id: int
    version: int
    cover: Optional[str]
    gallery: Tuple[str, ...]
    member_images: Tuple[Optional[str], ...]
    member_images_by_uid: Dict[str, str] = field(default_factory=dict)

    def all_refs(self) -> List[str]:
        """스냅샷이 참조하는 모든 첨부 파일 이름 (중복 없이, 등장 순서대로)."""
        refs = []
        if self.cover:
            refs.append(self.cover)
        refs.extend(self.gallery)
        refs.extend(image for image in self.member_images if image)
        return list(dict.fromkeys(refs))


@dataclass
class GalleryDiff:
    kept: List[str]
    final: List[str]
    orphaned: List[str]


@dataclass
class CoverDiff:
    final: Optional[str]
    orphaned: List[str]


@dataclass
class MemberImageAssignment:
    images: List[Optional[str]]
    orphaned: List[str]
    unused_uploads: List[str]


@dataclass(frozen=True)
class KeyedRef:
    """멤버 uid가 지정된(또는 지정되지 않은) 새 업로드 이미지의 ref."""
    ref: str
    member_uid: Optional[str] = None


def take_snapshot(project) -> ProjectSnapshot:
    """ORM 객체에서 값만 복사해 불변 스냅샷을 만듭니다."""
    return ProjectSnapshot(
        project_id=project.id,
        version=project.version,
        cover=project.cover,
        gallery=tuple(project.gallery_refs),
        member_images=tuple(member.image for member in project.members),
        member_images_by_uid={member.uid: member.image for member in project.members if member.image},
    )


def diff_gallery(previous: Sequence[str], remove: Iterable[str], uploaded: Sequence[str]) -> GalleryDiff:
    """
    갤러리 변경분을 계산합니다.

    kept = previous \\ remove (순서 유지), final = kept ++ uploaded (업로드 순서),
    orphaned = previous \\ kept. previous에 없던 remove 항목은 무시됩니다.
    """
    remove_set = set(remove)
    kept = [ref for ref in previous if ref not in remove_set]
    orphaned = [ref for ref in previous if ref in remove_set]
    return GalleryDiff(kept=kept, final=kept + list(uploaded), orphaned=orphaned)


def diff_cover(previous: Optional[str], new: Optional[str]) -> CoverDiff:
    """새 표지가 있으면 이전 표지는 고아가 되고, 없으면 이전 표지를 유지합니다."""
    if new is None:
        return CoverDiff(final=previous, orphaned=[])
    return CoverDiff(final=new, orphaned=[previous] if previous else [])


def reconcile_member_images(
    member_uids: Sequence[str],
    previous_images: Sequence[Optional[str]],
    uploads: Sequence[KeyedRef],
    snapshot: Optional[ProjectSnapshot] = None,
) -> MemberImageAssignment:
    """
    새 멤버 목록의 각 위치에 이미지를 배정합니다.

    위치 i마다 다음 우선순위를 따릅니다.
      1. 이 멤버의 uid로 지정된 새 업로드
      2. previous_images[i]가 null이 아니면 그 값을 그대로 유지 (위치 기반 계약)
      3. previous_images에 i번째 항목 자체가 없으면 스냅샷에서 같은 uid를 가진 멤버의 이미지
      4. uid가 없는 업로드 중 아직 쓰지 않은 다음 것 (업로드 순서), 없으면 None

    previous_images[i]가 None이면 이전 이미지가 없는 위치로 보고 4번으로 넘어갑니다.
    2번은 호출자가 멤버와 이전 이미지 배열을 같은 순서로 보낼 때만 올바릅니다.
    스냅샷에 있었지만 결과에 없는 이미지는 orphaned로 보고합니다.
    """
    keyed: Dict[str, str] = {}
    queue: List[str] = []
    unused: List[str] = []
    for upload in uploads:
        if upload.member_uid and upload.member_uid not in keyed:
            keyed[upload.member_uid] = upload.ref
        elif upload.member_uid:
            unused.append(upload.ref)
        else:
            queue.append(upload.ref)

    by_uid = snapshot.member_images_by_uid if snapshot else {}
    used_keys = set()
    images: List[Optional[str]] = []
    for position, uid in enumerate(member_uids):
        has_entry = position < len(previous_images)
        previous = previous_images[position] if has_entry else None
        if uid in keyed:
            image = keyed[uid]
            used_keys.add(uid)
        elif previous:
            image = previous
        elif uid in by_uid and not has_entry:
            image = by_uid[uid]
        elif queue:
            image = queue.pop(0)
        else:
            image = None
        images.append(image)

    unused.extend(ref for uid, ref in keyed.items() if uid not in used_keys)
    unused.extend(queue)

    assigned = set(image for image in images if image)
    old_images = snapshot.member_images if snapshot else ()
    orphaned = list(dict.fromkeys(image for image in old_images if image and image not in assigned))
    return MemberImageAssignment(images=images, orphaned=orphaned, unused_uploads=unused)


def find_orphans(snapshot: ProjectSnapshot, final_refs: Iterable[str]) -> List[str]:
    """스냅샷이 참조하던 ref 중 최종 상태에 남지 않은 것을 순서대로 반환합니다."""
    final_set = set(final_refs)
    return [ref for ref in snapshot.all_refs() if ref not in final_set]
