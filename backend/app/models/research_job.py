from sqlalchemy import Column, String, Text, Integer

from ..core.db import Base
from .job_record import JobRecordMixin, running_entity_index

class ResearchJob(JobRecordMixin, Base):
    __tablename__ = "research_jobs"
    __table_args__ = (running_entity_index("research_jobs"),)

    prompt = Column(Text, nullable=False)
    model_used = Column(String, nullable=True)
    tokens_used = Column(Integer, nullable=True)
