from sqlalchemy import Column, String, Text, JSON, DateTime, ForeignKey, Uuid
from datetime import datetime
import uuid
from ..core.db import Base

class Person(Base):
    __tablename__ = "people"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, nullable=False, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    mobile_phone = Column(String, nullable=True)
    job_title = Column(String, nullable=True)
    linkedin_url = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    address_street = Column(String, nullable=True)
    address_city = Column(String, nullable=True)
    address_state = Column(String, nullable=True)
    address_postal_code = Column(String, nullable=True)
    address_country = Column(String, nullable=True)
    # Primary employer, used as company/domain hint for research and enrichment
    organization_id = Column(Uuid, ForeignKey("organizations.id"), nullable=True)
    custom_fields = Column(JSON, nullable=False, default=dict)
    # Last enrichment outcome, kept for display
    enrichment_status = Column(String, nullable=True)
    enriched_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)
