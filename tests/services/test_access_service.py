# tests/services/test_access_service.py
import httpx
import pytest

from showcase.services.access_service import AccessService
from showcase.services.exceptions import TokenInvalidError, PermissionDeniedError, DirectoryServiceError

DIRECTORY_URL = "https://directory.example.com/api/me/"

# ===================================================================
#  Fixture 설정
# ===================================================================

def make_service(handler) -> AccessService:
    """httpx.MockTransport로 디렉터리 서비스 응답을 흉내 내는 AccessService를 만듭니다."""
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return AccessService(DIRECTORY_URL, ["docente", "estagiario"], http_client=client)

def directory_returning(role):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer good-token"
        return httpx.Response(200, json={"nome": "Ana", "vinculo": {"categoria": role}})
    return handler

# ===================================================================
#  authorize 테스트
# ===================================================================
class TestAuthorize:
    @pytest.mark.parametrize("role", ["docente", "estagiario"])
    def test_allowed_role_returns_principal(self, role):
        service = make_service(directory_returning(role))

        principal = service.authorize("good-token")

        assert principal["vinculo"]["categoria"] == role

    def test_other_role_is_denied(self):
        service = make_service(directory_returning("discente"))

        with pytest.raises(PermissionDeniedError):
            service.authorize("good-token")

    def test_role_must_match_exactly(self):
        """역할 이름의 일부만 일치하는 경우(부분 문자열)는 허용하지 않습니다."""
        service = make_service(directory_returning("docent"))

        with pytest.raises(PermissionDeniedError):
            service.authorize("good-token")

    def test_missing_role_field_is_denied(self):
        service = make_service(lambda request: httpx.Response(200, json={"nome": "Ana"}))

        with pytest.raises(PermissionDeniedError):
            service.authorize("good-token")

    def test_missing_token(self):
        service = make_service(directory_returning("docente"))

        with pytest.raises(TokenInvalidError):
            service.authorize(None)

    def test_rejected_token(self):
        service = make_service(lambda request: httpx.Response(401, json={"detail": "expired"}))

        with pytest.raises(TokenInvalidError):
            service.authorize("expired-token")

    def test_directory_error_status(self):
        service = make_service(lambda request: httpx.Response(503, text="down"))

        with pytest.raises(DirectoryServiceError):
            service.authorize("good-token")

    def test_directory_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)
        service = make_service(handler)

        with pytest.raises(DirectoryServiceError):
            service.authorize("good-token")

    def test_directory_invalid_json(self):
        service = make_service(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(DirectoryServiceError):
            service.authorize("good-token")

def test_close_leaves_injected_client_open():
    client = httpx.Client(transport=httpx.MockTransport(directory_returning("docente")))
    service = AccessService(DIRECTORY_URL, ["docente"], http_client=client)

    service.close()

    assert not client.is_closed
