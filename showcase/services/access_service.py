import logging
from typing import Any, Dict, Iterable, Optional

import httpx

from showcase.services.exceptions import (
    TokenInvalidError, PermissionDeniedError, DirectoryServiceError
)

logger = logging.getLogger(__name__)


class AccessService:
    """
    외부 디렉터리 서비스에 bearer 토큰을 조회해 호출자의 역할을 확인합니다.
    변경(생성/수정/삭제) 요청은 허용된 역할을 가진 사용자만 수행할 수 있습니다.
    """

    def __init__(
        self,
        directory_url: str,
        allowed_roles: Iterable[str],
        role_field: str = "vinculo.categoria",
        timeout: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ):
        """
        AccessService를 초기화합니다.

        Args:
            directory_url: 토큰 소유자의 정보를 돌려주는 디렉터리 서비스 URL.
            allowed_roles: 변경 요청이 허용되는 역할 이름들.
            role_field: 응답 JSON에서 역할을 찾을 점(.) 구분 경로.
            timeout: 요청 타임아웃(초).
            http_client: 주입할 httpx.Client. 없으면 직접 만들고 close()에서 닫습니다.
        """
        self.directory_url = directory_url
        self.allowed_roles = frozenset(allowed_roles)
        self.role_field = role_field
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.Client(timeout=timeout)

    def resolve_principal(self, token: Optional[str]) -> Dict[str, Any]:
        """
        토큰으로 디렉터리 서비스를 조회해 사용자 정보를 반환합니다.

        Raises:
            TokenInvalidError: 토큰이 없거나 디렉터리가 401을 돌려줄 때.
            DirectoryServiceError: 디렉터리에 연결할 수 없거나 응답이 비정상일 때.
        """
        if not token:
            raise TokenInvalidError("Missing bearer token.")

        try:
            response = self.http_client.get(
                self.directory_url, headers={"Authorization": f"Bearer {token}"}
            )
        except httpx.HTTPError as e:
            logger.error("Directory request failed: %s", e)
            raise DirectoryServiceError("Directory service is unavailable.") from e

        if response.status_code == 401:
            raise TokenInvalidError("Directory token is invalid or expired.")
        if response.status_code != 200:
            logger.error("Directory returned status %d: %s",
                         response.status_code, response.text[:500])
            raise DirectoryServiceError(
                f"Directory service returned status {response.status_code}."
            )

        try:
            return response.json()
        except ValueError as e:
            raise DirectoryServiceError("Directory service returned invalid JSON.") from e

    def authorize(self, token: Optional[str]) -> Dict[str, Any]:
        """
        토큰을 검증하고 역할이 허용 목록에 있으면 사용자 정보를 반환합니다.

        Raises:
            TokenInvalidError: 토큰이 없거나 유효하지 않을 때.
            PermissionDeniedError: 역할이 허용 목록에 없을 때.
            DirectoryServiceError: 디렉터리 서비스 오류.
        """
        principal = self.resolve_principal(token)
        role = self._extract_role(principal)
        if role not in self.allowed_roles:
            logger.info("Access denied for role %r", role)
            raise PermissionDeniedError("Not authorized.")
        return principal

    def _extract_role(self, principal: Dict[str, Any]) -> Optional[str]:
        value: Any = principal
        for key in self.role_field.split("."):
            if not isinstance(value, dict):
                return None
            value = value.get(key)
        return value if isinstance(value, str) else None

    def close(self):
        if self._owns_client:
            self.http_client.close()
