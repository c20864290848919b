from sqlalchemy import Column, String, Text, Float, Date, ForeignKey, DateTime, Uuid
from datetime import datetime
import uuid
from ..core.db import Base

class Rfp(Base):
    __tablename__ = "rfps"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, nullable=False, index=True)
    title = Column(String, nullable=False)
    rfp_number = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    estimated_value = Column(Float, nullable=True)
    due_date = Column(Date, nullable=True)
    submission_method = Column(String, nullable=True)
    organization_id = Column(Uuid, ForeignKey("organizations.id"), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)
