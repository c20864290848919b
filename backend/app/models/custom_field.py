from sqlalchemy import Column, String, Text, Float, Boolean, Integer, JSON, Uuid
import uuid
from ..core.db import Base

class CustomFieldDefinition(Base):
    __tablename__ = "custom_field_definitions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, nullable=False, index=True)
    entity_type = Column(String, nullable=False)  # 'organization' | 'person'
    name = Column(String, nullable=False)         # key inside entity.custom_fields
    label = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    field_type = Column(String, nullable=False, default="text")
    options = Column(JSON, nullable=True)  # [{"value": ..., "label": ...}] for select types
    display_order = Column(Integer, nullable=False, default=0)
    is_ai_extractable = Column(Boolean, nullable=True, default=True)
    ai_extraction_hint = Column(Text, nullable=True)
    ai_confidence_threshold = Column(Float, nullable=True)
