from sqlalchemy import Boolean, Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from ..database import Base

class Member(Base):
    """
    프로젝트 참여자 한 명을 나타냅니다. 정확히 하나의 Project에 속합니다.
    position은 표시 순서, uid는 요청 사이에서 멤버를 식별하는 안정적인 키입니다.
    """
    __tablename__ = "members"
    id = Column(Integer, primary_key=True, index=True)
    uid = Column(String(64), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    titles = Column(String, nullable=False, default="")
    email = Column(String, nullable=False, default="")
    image = Column(String, nullable=True)
    is_responsible = Column(Boolean, nullable=False, default=False)

    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    project = relationship("Project", back_populates="members")
