# tests/test_showcase_properties.py
"""
실제 SQLite 파일 DB와 임시 업로드 디렉터리를 사용해
생성/수정/삭제 전체 흐름의 성질을 검증합니다.
"""
import pytest

from showcase.database.database import create_db_engine, create_session_factory
from showcase.database.db_init import initialize_db
from showcase.repositories.sqlalchemy import SqlalchemyProjectRepository, SqlalchemyPendingCleanupRepository
from showcase.services.attachment_service import AttachmentService
from showcase.services.project_service import ProjectService, Upload
from showcase.services.exceptions import *

# ===================================================================
#  Fixture 설정
# ===================================================================

@pytest.fixture
def session_factory(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'showcase.db'}")
    initialize_db(engine)
    yield create_session_factory(engine)
    engine.dispose()

@pytest.fixture
def upload_dir(tmp_path):
    return str(tmp_path / "uploads")

@pytest.fixture
def open_service(session_factory, upload_dir):
    """요청 하나에 해당하는 (세션, ProjectService) 쌍을 만드는 함수를 돌려줍니다."""
    sessions = []

    def _open():
        session = session_factory()
        sessions.append(session)
        attachments = AttachmentService(upload_dir, SqlalchemyPendingCleanupRepository(session), retry_delay=0)
        return ProjectService(SqlalchemyProjectRepository(session), attachments)

    yield _open
    for session in sessions:
        session.close()

def members(*responsible_flags):
    return [{"name": f"Member {i}", "is_responsible": flag} for i, flag in enumerate(responsible_flags)]

def files(*names):
    return [Upload(name, name.encode()) for name in names]

def dangling_refs(service: ProjectService):
    """DB가 참조하지만 디스크에 없는 첨부 파일 이름."""
    referenced = service.project_repo.list_attachment_refs()
    return sorted(ref for ref in referenced if not service.attachment_service.exists(ref))

# ===================================================================
#  성질 검증
# ===================================================================

def test_create_with_one_responsible_stores_members_in_input_order(open_service):
    service = open_service()
    payload = [
        {"name": "Ana", "is_responsible": False},
        {"name": "Bo", "is_responsible": True},
        {"name": "Cy", "is_responsible": False},
    ]

    project_id = service.create_project("Robot", members=payload)["id"]

    project = open_service().get_project(project_id)
    assert [m["name"] for m in project["members"]] == ["Ana", "Bo", "Cy"]
    assert [m["is_responsible"] for m in project["members"]] == [False, True, False]

@pytest.mark.parametrize("flags", [(), (False,), (True, True)])
def test_rejected_requests_change_nothing(open_service, upload_dir, flags):
    """책임자 수가 잘못된 생성/수정 요청은 DB와 업로드 디렉터리를 전혀 바꾸지 않습니다."""
    service = open_service()
    project_id = service.create_project("Robot", members=members(True), gallery=files("a.png"))["id"]
    before = open_service().get_project(project_id)
    stored_before = service.attachment_service.list_stored_refs()

    with pytest.raises(ProjectValidationError):
        open_service().create_project("Other", members=members(*flags), gallery=files("x.png"))
    with pytest.raises(ProjectValidationError):
        open_service().update_project(project_id, "Changed", members=members(*flags), gallery=files("y.png"))

    reader = open_service()
    assert [p["id"] for p in reader.list_projects()] == [project_id]
    assert reader.get_project(project_id) == before
    assert reader.attachment_service.list_stored_refs() == stored_before

def test_gallery_round_trip_keeps_upload_order(open_service):
    service = open_service()

    project_id = service.create_project("Robot", members=members(True), gallery=files("a.png", "b.png", "c.png"))["id"]

    gallery = open_service().get_project(project_id)["gallery"]
    assert len(gallery) == 3
    assert len(set(gallery)) == 3
    contents = []
    for ref in gallery:
        with open(service.attachment_service.path_for(ref), "rb") as f:
            contents.append(f.read())
    assert contents == [b"a.png", b"b.png", b"c.png"]

def test_update_removes_b_adds_d(open_service):
    """갤러리 [a,b,c]에서 b를 지우고 d를 추가하면 [a,c,d]가 되고 b 파일만 사라집니다."""
    service = open_service()
    project_id = service.create_project("Robot", members=members(True), gallery=files("a.png", "b.png", "c.png"))["id"]
    a, b, c = open_service().get_project(project_id)["gallery"]

    open_service().update_project(project_id, "Robot", members=members(True), gallery_remove=[b], gallery=files("d.png"))

    reader = open_service()
    gallery = reader.get_project(project_id)["gallery"]
    assert gallery[:2] == [a, c]
    assert len(gallery) == 3
    d = gallery[2]
    assert not reader.attachment_service.exists(b)
    assert all(reader.attachment_service.exists(ref) for ref in (a, c, d))

def test_update_keeps_member_images_by_position_and_uid(open_service):
    service = open_service()
    project_id = service.create_project(
        "Robot", members=members(True, False), member_images=files("ana.png", "bo.png")
    )["id"]
    created = open_service().get_project(project_id)
    ana, bo = [m["image"] for m in created["members"]]

    # 순서를 바꿔 보내도 uid가 있으면 각자의 이미지를 유지
    reordered = [
        dict(created["members"][1], is_responsible=False),
        dict(created["members"][0], is_responsible=True),
    ]
    open_service().update_project(project_id, "Robot", members=reordered)

    reader = open_service()
    updated = reader.get_project(project_id)
    assert [m["image"] for m in updated["members"]] == [bo, ana]
    assert reader.attachment_service.exists(ana) and reader.attachment_service.exists(bo)

def test_update_keeps_image_named_at_position_over_uid_image(open_service):
    """uid가 같은 멤버라도 같은 위치에 명시한 이전 이미지가 유지되고 그 파일은 남아 있어야 합니다."""
    service = open_service()
    project_id = service.create_project(
        "Robot", members=members(True, False), member_images=files("ana.png", "bo.png")
    )["id"]
    created = open_service().get_project(project_id)
    ana, bo = [m["image"] for m in created["members"]]

    open_service().update_project(
        project_id, "Robot", members=[created["members"][0]], previous_member_images=[bo]
    )

    reader = open_service()
    assert [m["image"] for m in reader.get_project(project_id)["members"]] == [bo]
    assert reader.attachment_service.exists(bo)
    assert not reader.attachment_service.exists(ana)
    assert dangling_refs(reader) == []

def test_update_treats_empty_previous_image_as_absent(open_service):
    """빈 문자열 이전 이미지는 '이미지 없음'으로 보고 다음 업로드를 배정합니다."""
    service = open_service()
    project_id = service.create_project(
        "Robot", members=members(True, False), member_images=files("ana.png")
    )["id"]
    created = open_service().get_project(project_id)
    ana = created["members"][0]["image"]

    open_service().update_project(
        project_id, "Robot", members=created["members"],
        previous_member_images=[ana, ""], member_images=files("n.png"),
    )

    reader = open_service()
    images = [m["image"] for m in reader.get_project(project_id)["members"]]
    assert images[0] == ana
    with open(reader.attachment_service.path_for(images[1]), "rb") as f:
        assert f.read() == b"n.png"

def test_delete_removes_rows_and_every_attachment(open_service):
    service = open_service()
    project_id = service.create_project(
        "Robot", members=members(True, False),
        cover=Upload("cover.png", b"c"),
        member_images=files("ana.png", "bo.png"),
        gallery=files("a.png", "b.png"),
    )["id"]
    project = open_service().get_project(project_id)
    refs = [project["cover"], *project["gallery"], *[m["image"] for m in project["members"]]]
    assert len(refs) == 5

    assert open_service().delete_project(project_id) is True

    reader = open_service()
    with pytest.raises(ProjectNotFoundError):
        reader.get_project(project_id)
    assert reader.project_repo.list_attachment_refs() == set()
    assert not any(reader.attachment_service.exists(ref) for ref in refs)

def test_ten_thousand_stores_yield_distinct_refs(upload_dir):
    attachments = AttachmentService(upload_dir)

    refs = [attachments.store(b"", "x.jpg") for _ in range(10_000)]

    assert len(set(refs)) == 10_000

def test_concurrent_updates_on_same_project_are_detected(open_service):
    """
    같은 프로젝트에 대한 두 수정 요청이 겹치는 경우를 재현합니다.

    A가 스냅샷을 읽은 직후 B가 갤러리에서 b를 지우고 커밋(파일 b 삭제)합니다.
    A가 낡은 스냅샷으로 [a,b,c,e]를 쓰면 DB가 지워진 파일 b를 참조하게 되므로,
    A는 충돌로 거부되어야 하고 정리 단계도 실행되지 않아야 합니다.
    """
    service = open_service()
    project_id = service.create_project("Robot", members=members(True), gallery=files("a.png", "b.png", "c.png"))["id"]
    a, b, c = open_service().get_project(project_id)["gallery"]

    service_a = open_service()
    service_b = open_service()
    original_find = service_a.project_repo.find_by_id

    def find_then_let_b_win(pid):
        project = original_find(pid)
        # 스냅샷 읽기와 트랜잭션 사이에 끼어드는 요청 B
        service_b.update_project(pid, "Robot", members=members(True), gallery_remove=[b], gallery=files("d.png"))
        return project

    service_a.project_repo.find_by_id = find_then_let_b_win

    with pytest.raises(ConcurrentModificationError):
        service_a.update_project(project_id, "Robot (A)", members=members(True), gallery=files("e.png"))

    reader = open_service()
    project = reader.get_project(project_id)
    assert project["title"] == "Robot"
    assert project["gallery"][:2] == [a, c]
    assert project["version"] == 2
    # 감지: DB가 참조하는 파일 중 사라진 것이 없어야 함
    assert dangling_refs(reader) == []
    # A가 저장했던 e는 참조되지 않은 채 남으며 reconcile로 찾을 수 있음
    leaked = reader.reconcile_attachments()
    assert len(leaked) == 1
    with open(reader.attachment_service.path_for(leaked[0]), "rb") as f:
        assert f.read() == b"e.png"

def test_stale_delete_is_rejected(open_service):
    service = open_service()
    project_id = service.create_project("Robot", members=members(True), gallery=files("a.png"))["id"]
    open_service().update_project(project_id, "Robot v2", members=members(True))

    with pytest.raises(ConcurrentModificationError):
        open_service().delete_project(project_id, version=1)
    assert open_service().get_project(project_id)["version"] == 2
