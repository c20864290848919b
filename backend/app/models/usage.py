from sqlalchemy import Column, String, Integer, JSON, DateTime, Uuid
from datetime import datetime
import uuid
from ..core.db import Base

class ProviderUsageLog(Base):
    """Append-only ledger of metered provider usage (tokens or credits)."""

    __tablename__ = "provider_usage_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider = Column(String, nullable=False, index=True)  # 'openrouter', 'fullenrich'
    project_id = Column(Uuid, nullable=True)
    units = Column(Integer, nullable=False)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
