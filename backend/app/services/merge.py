# backend/app/services/merge.py
"""
Field Merge Resolver.

Pure functions that turn a canonical result plus the entity's current values
into FieldMappings, and decide which of them may be applied under a merge
policy. Nothing here touches the database.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel

from ..schemas.canonical import ContactEnrichmentResult

DEFAULT_FIELD_CONFIDENCE = 0.5

SKIP = None

ORGANIZATION_FIELD_MAPPINGS: Dict[str, Optional[str]] = {
    "company_name": "name",
    "website": "website",
    "industry": "industry",
    "employee_count": "employee_count",
    "annual_revenue": "annual_revenue",
    "description": "description",
    "headquarters.city": "address_city",
    "headquarters.state": "address_state",
    "headquarters.country": "address_country",
}

PERSON_FIELD_MAPPINGS: Dict[str, Optional[str]] = {
    "full_name": SKIP,        # names are never overwritten by research
    "current_title": "job_title",
    "current_company": SKIP,  # organization linkage is handled elsewhere
    "email": "email",
    "phone": "phone",
    "linkedin_url": "linkedin_url",
    "location.city": "address_city",
    "location.state": "address_state",
    "location.country": "address_country",
    "bio": "notes",
}

RESEARCH_FIELD_MAPPINGS = {
    "organization": ORGANIZATION_FIELD_MAPPINGS,
    "person": PERSON_FIELD_MAPPINGS,
}


class MergePolicy(str, enum.Enum):
    FILL_EMPTY = "fill_empty"
    OVERWRITE = "overwrite"


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


@dataclass
class FieldMapping:
    source_field: str
    target_field: str
    target_is_custom: bool
    value: Any
    current_value: Any = None
    confidence: Optional[float] = None

    @property
    def is_null(self) -> bool:
        return is_empty(self.value)

    @property
    def should_update(self) -> bool:
        """True when the target is currently empty."""
        return is_empty(self.current_value)

    def as_update(self) -> Dict[str, Any]:
        return {
            "field_name": self.target_field,
            "is_custom": self.target_is_custom,
            "value": self.value,
        }


def get_nested_value(obj: Any, path: str) -> Any:
    current = obj
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def _as_dict(result: Any) -> Dict[str, Any]:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    return dict(result or {})


def _custom_confidence(scores: Mapping[str, Any], name: str) -> float:
    for key in (f"custom_{name}", f"custom_fields.{name}", name):
        score = scores.get(key)
        if isinstance(score, (int, float)):
            return float(score)
    return DEFAULT_FIELD_CONFIDENCE


def resolve_research(
    result: Any,
    entity_type: str,
    snapshot: Mapping[str, Any],
    custom_field_names: Optional[Iterable[str]] = None,
) -> List[FieldMapping]:
    """
    Build a FieldMapping for every recognised, non-empty field of a research result.

    ``custom_field_names`` limits which custom fields are considered; when
    omitted every key of ``result.custom_fields`` is.
    """
    data = _as_dict(result)
    scores = data.get("confidence_scores") or {}
    mappings: List[FieldMapping] = []

    for source_path, target in RESEARCH_FIELD_MAPPINGS.get(entity_type, {}).items():
        if target is SKIP:
            continue
        value = get_nested_value(data, source_path)
        if is_empty(value):
            continue
        confidence = scores.get(source_path.replace(".", "_"))
        mappings.append(
            FieldMapping(
                source_field=source_path,
                target_field=target,
                target_is_custom=False,
                value=value,
                current_value=snapshot.get(target),
                confidence=float(confidence) if isinstance(confidence, (int, float)) else DEFAULT_FIELD_CONFIDENCE,
            )
        )

    custom_values = data.get("custom_fields") or {}
    current_custom = snapshot.get("custom_fields") or {}
    names = list(custom_field_names) if custom_field_names is not None else list(custom_values)
    for name in names:
        value = custom_values.get(name)
        if is_empty(value):
            continue
        mappings.append(
            FieldMapping(
                source_field=f"custom_fields.{name}",
                target_field=name,
                target_is_custom=True,
                value=value,
                current_value=current_custom.get(name),
                confidence=_custom_confidence(scores, name),
            )
        )

    return mappings


def resolve_enrichment(
    result: ContactEnrichmentResult,
    snapshot: Mapping[str, Any],
) -> List[FieldMapping]:
    """
    Map a contact enrichment result onto person fields.

    Email falls back email -> work_email -> first candidate; phone falls back
    phone -> mobile_phone -> first candidate.
    """
    location = result.location
    candidates = [
        ("email", "email", result.best_email),
        ("phone", "phone", result.best_phone),
        ("job_title", "job_title", result.job_title),
        ("linkedin_url", "linkedin_url", result.linkedin_url),
        ("location.city", "address_city", location.city if location else None),
        ("location.state", "address_state", location.state if location else None),
        ("location.country", "address_country", location.country if location else None),
    ]

    mappings: List[FieldMapping] = []
    for source, target, value in candidates:
        if is_empty(value):
            continue
        mappings.append(
            FieldMapping(
                source_field=source,
                target_field=target,
                target_is_custom=False,
                value=value,
                current_value=snapshot.get(target),
                confidence=result.confidence_score,
            )
        )
    return mappings


def select_applicable(
    mappings: Iterable[FieldMapping],
    policy: MergePolicy = MergePolicy.FILL_EMPTY,
    confidence_score: Optional[float] = None,
    min_confidence: Optional[float] = None,
    field_thresholds: Optional[Mapping[str, float]] = None,
) -> List[FieldMapping]:
    """
    Filter mappings down to the ones that may be written.

    - a result-level ``confidence_score`` below ``min_confidence`` rejects everything
      (an unscored result is not gated)
    - empty values are never applied
    - under FILL_EMPTY, targets that already hold a value are left alone
    - ``field_thresholds`` gates individual fields on their own confidence
    """
    if (
        min_confidence is not None
        and confidence_score is not None
        and confidence_score < min_confidence
    ):
        return []

    selected: List[FieldMapping] = []
    for m in mappings:
        if m.is_null:
            continue
        if policy == MergePolicy.FILL_EMPTY and not m.should_update:
            continue
        threshold = (field_thresholds or {}).get(m.target_field)
        if threshold is not None and m.confidence is not None and m.confidence < threshold:
            continue
        selected.append(m)
    return selected
