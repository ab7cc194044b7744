"""프로젝트 쇼케이스 설정."""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """환경 변수(및 .env 파일)에서 읽어 오는 애플리케이션 설정."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # Database
    DATABASE_URL: str = "sqlite:///showcase.db"

    # Attachments
    UPLOAD_DIR: str = "uploads"
    MAX_GALLERY_FILES: int = 10
    CLEANUP_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    CLEANUP_RETRY_DELAY: float = 0.2

    # Directory service (Access Gate)
    DIRECTORY_URL: str = "https://suap.ifsul.edu.br/api/rh/meus-dados/"
    DIRECTORY_TIMEOUT: float = 10.0
    ROLE_FIELD: str = "vinculo.categoria"
    ALLOWED_ROLES: str = "docente,estagiario"
    AUTH_COOKIE_NAME: str = "SUAP_token"

    # Server
    HOST: str = ""
    PORT: int = 5500
    LOG_LEVEL: str = "INFO"

    @property
    def allowed_roles_list(self) -> List[str]:
        """쉼표로 구분된 ALLOWED_ROLES를 공백을 제거한 리스트로 반환합니다."""

        if not self.ALLOWED_ROLES:
            return []

        return [role.strip() for role in self.ALLOWED_ROLES.split(",") if role.strip()]


settings = Settings()
