import json
from typing import List

from sqlalchemy import Column, Integer, String, Text
from sqlalchemy.orm import relationship
from ..database import Base

class Project(Base):
    """
    쇼케이스에 전시되는 하나의 프로젝트를 나타냅니다.
    표지(cover), 갤러리 이미지, 순서가 있는 멤버 목록을 가지며
    멤버 행은 이 Project 모델에 종속됩니다.

    version 컬럼은 낙관적 잠금 카운터입니다. 리포지토리의 UPDATE/DELETE 문은 항상
    'WHERE version = :읽은_버전' 조건으로 실행되므로, 그 사이 다른 요청이
    먼저 커밋했다면 영향받은 행이 0이 되어 변경이 거부됩니다.
    """
    __tablename__ = "projects"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    date = Column(String, nullable=False, default="")
    courses = Column(String, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    cover = Column(String, nullable=True)
    # 표시 순서를 유지하는 JSON 인코딩 리스트
    gallery = Column(Text, nullable=False, default="[]")
    version = Column(Integer, nullable=False, default=1)

    members = relationship(
        "Member",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Member.position",
    )

    @property
    def gallery_refs(self) -> List[str]:
        return json.loads(self.gallery or "[]")

    @gallery_refs.setter
    def gallery_refs(self, refs: List[str]):
        self.gallery = json.dumps(list(refs))
