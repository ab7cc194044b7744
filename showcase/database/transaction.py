from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session


@contextmanager
def transaction(session: Session) -> Iterator[Session]:
    """
    여러 SQL 문을 하나의 트랜잭션으로 묶어 실행합니다.

    블록이 정상 종료되면 commit하고, 어떤 예외든 발생하면 rollback한 뒤
    예외를 그대로 다시 던집니다. 커밋 전에는 블록 안의 어떤 문장도
    다른 세션에 보이지 않습니다.

    사용 예시:
        with transaction(db):
            db.add(project)
            db.flush()
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
