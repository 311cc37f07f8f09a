from sqlalchemy import Column, Integer, String, DateTime, JSON
from datetime import datetime
from portal.core.database import Base

class Document(Base):
    __tablename__ = "documents"
    seq = Column(Integer, primary_key=True, autoincrement=True)   # insertion order
    path = Column(String(512), unique=True, index=True, nullable=False)   # "deliverables/<id>/feedback/<id>"
    collection = Column(String(512), index=True, nullable=False)           # path minus the last segment
    doc_id = Column(String(64), nullable=False)
    data = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
