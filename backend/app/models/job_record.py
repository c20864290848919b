from sqlalchemy import Column, String, Text, JSON, Enum, DateTime, Integer, Index, Uuid, text
from datetime import datetime
import uuid
import enum


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class EntityType(str, enum.Enum):
    ORGANIZATION = "organization"
    PERSON = "person"
    RFP = "rfp"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class JobRecordMixin:
    """
    Columns shared by every job table.

    A job is created ``pending`` or ``running`` and terminates exactly once
    into ``completed`` (result set, error null) or ``failed`` (error set).
    """

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, nullable=False, index=True)
    entity_type = Column(
        Enum(EntityType, native_enum=False, length=16, values_callable=_enum_values),
        nullable=False,
    )
    entity_id = Column(Uuid, nullable=False, index=True)
    status = Column(
        Enum(JobStatus, native_enum=False, length=16, values_callable=_enum_values),
        nullable=False,
        default=JobStatus.PENDING,
    )
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    error_code = Column(String, nullable=True)  # AdapterErrorKind value
    # Bookkeeping written after a terminal state, by the apply step
    applied_fields = Column(JSON, nullable=True)
    fields_updated = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def running_entity_index(table_name: str) -> Index:
    """At most one running job per entity, enforced by the database."""
    return Index(
        f"uq_{table_name}_running_entity",
        "entity_type",
        "entity_id",
        unique=True,
        sqlite_where=text("status = 'running'"),
        postgresql_where=text("status = 'running'"),
    )
