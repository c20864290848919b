from sqlalchemy import Column, String, Text, Float, Integer, Uuid
import uuid
from ..core.db import Base

class ResearchSettings(Base):
    """Per-project overrides for how research prompts are built and sent."""

    __tablename__ = "research_settings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, nullable=False, unique=True)
    system_prompt = Column(Text, nullable=True)
    user_prompt_template = Column(Text, nullable=True)
    model_id = Column(String, nullable=True)
    temperature = Column(Float, nullable=True)
    max_tokens = Column(Integer, nullable=True)
