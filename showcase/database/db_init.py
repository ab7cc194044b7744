import logging

from .database import Base, create_db_engine
from . import models  # noqa: F401  모든 모델을 metadata에 등록

logger = logging.getLogger(__name__)


def initialize_db(engine):
    """
    DB와 테이블을 생성합니다. (이미 존재하면 생성하지 않음)
    프로젝트/멤버/정리대기(pending_cleanups) 테이블을 SQLAlchemy 모델로 만듭니다.
    """
    logger.info("DB 초기화 중 (SQLAlchemy 사용)...")
    Base.metadata.create_all(bind=engine)
    logger.info("테이블 생성 완료.")


if __name__ == '__main__':
    from showcase.config import settings

    logging.basicConfig(level=settings.LOG_LEVEL)
    db_engine = create_db_engine(settings.DATABASE_URL)
    try:
        initialize_db(db_engine)
    finally:
        db_engine.dispose()
