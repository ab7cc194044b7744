from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

# 모든 모델 클래스가 상속받을 Base 클래스
# 이 클래스를 상속받아 모델을 정의하면, SQLAlchemy가 테이블을 인식합니다.
Base = declarative_base()


def create_db_engine(database_url: str):
    """
    데이터베이스 연결 문자열로 SQLAlchemy 엔진을 생성합니다.

    엔진은 프로세스 전역 객체가 아니라 호출자가 명시적으로 만들고
    dispose()로 닫는 핸들입니다.
    """
    # connect_args는 SQLite에서만 필요합니다. (thread-safe 설정)
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(database_url, connect_args=connect_args)


def create_session_factory(engine):
    """
    요청 단위 세션을 만드는 팩토리를 생성합니다.

    autocommit=False, autoflush=False로 설정하여, 명시적으로 commit을 호출해야 DB에 반영됩니다.
    """
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
