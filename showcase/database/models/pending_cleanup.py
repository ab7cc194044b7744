from sqlalchemy import Column, Integer, String, Text, DateTime, func
from ..database import Base

class PendingCleanup(Base):
    """
    커밋 이후 재시도 끝에도 삭제하지 못한 첨부 파일 기록입니다.
    운영자가 수동으로 정리하거나 cleanup 액션으로 다시 시도할 대상입니다.
    """
    __tablename__ = "pending_cleanups"
    id = Column(Integer, primary_key=True, index=True)
    ref = Column(String, nullable=False, index=True)
    reason = Column(Text, nullable=False, default="")
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())
