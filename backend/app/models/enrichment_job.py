from sqlalchemy import Column, String, Integer, JSON

from ..core.db import Base
from .job_record import JobRecordMixin, running_entity_index

class EnrichmentJob(JobRecordMixin, Base):
    __tablename__ = "enrichment_jobs"
    __table_args__ = (running_entity_index("enrichment_jobs"),)

    request_payload = Column(JSON, nullable=False)  # hints sent to the provider
    external_job_id = Column(String, nullable=True, index=True)  # provider enrichment_id
    credits_used = Column(Integer, nullable=True)
