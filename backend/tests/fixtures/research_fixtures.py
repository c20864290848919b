"""
Shared test data for research and enrichment tests.

Entity factories write straight to the session; provider payloads mirror
what OpenRouter and FullEnrich actually send.
"""
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from app.models.custom_field import CustomFieldDefinition
from app.models.organization import Organization
from app.models.person import Person
from app.models.rfp import Rfp


PROJECT_ID = UUID("6f1d2c3b-4a59-4e7d-8c21-0b9a8f7e6d5c")


# ---------------------------------------------------------------------------
# Entity factories
# ---------------------------------------------------------------------------

def make_organization(db, project_id: UUID = PROJECT_ID, **fields) -> Organization:
    values: Dict[str, Any] = {"name": "Acme Corp", "custom_fields": {}}
    values.update(fields)
    org = Organization(id=uuid4(), project_id=project_id, **values)
    db.add(org)
    db.commit()
    db.refresh(org)
    return org


def make_person(db, project_id: UUID = PROJECT_ID, **fields) -> Person:
    values: Dict[str, Any] = {"first_name": "Ada", "last_name": "Lovelace", "custom_fields": {}}
    values.update(fields)
    person = Person(id=uuid4(), project_id=project_id, **values)
    db.add(person)
    db.commit()
    db.refresh(person)
    return person


def make_rfp(db, project_id: UUID = PROJECT_ID, **fields) -> Rfp:
    values: Dict[str, Any] = {"title": "Municipal Fleet Telematics"}
    values.update(fields)
    rfp = Rfp(id=uuid4(), project_id=project_id, **values)
    db.add(rfp)
    db.commit()
    db.refresh(rfp)
    return rfp


def make_custom_field(db, project_id: UUID = PROJECT_ID, **fields) -> CustomFieldDefinition:
    values: Dict[str, Any] = {
        "entity_type": "organization",
        "name": "tech_stack",
        "label": "Tech Stack",
        "field_type": "text",
    }
    values.update(fields)
    definition = CustomFieldDefinition(id=uuid4(), project_id=project_id, **values)
    db.add(definition)
    db.commit()
    db.refresh(definition)
    return definition


# ---------------------------------------------------------------------------
# Research results
# ---------------------------------------------------------------------------

ORGANIZATION_RESULT: Dict[str, Any] = {
    "company_name": "Acme Corporation",
    "website": "https://acme.example",
    "industry": "Industrial Automation",
    "employee_count": 1200,
    "annual_revenue": "$250M",
    "description": "Maker of industrial control systems.",
    "headquarters": {"city": "Denver", "state": "CO", "country": "USA"},
    "founded_year": 1987,
    "key_products": ["PLCs", "SCADA"],
    "competitors": ["Globex"],
    "recent_news": [],
    "custom_fields": {"tech_stack": "Python, Rust"},
    "confidence_scores": {
        "company_name": 0.95,
        "industry": 0.9,
        "employee_count": 0.6,
        "custom_tech_stack": 0.8,
    },
}

PERSON_RESULT: Dict[str, Any] = {
    "full_name": "Ada Lovelace",
    "current_title": "Chief Analyst",
    "current_company": "Analytical Engines Ltd",
    "email": "ada@engines.example",
    "phone": None,
    "linkedin_url": "https://linkedin.com/in/ada",
    "location": {"city": "London", "state": None, "country": "UK"},
    "custom_fields": {},
    "confidence_scores": {"current_title": 0.9, "email": 0.7},
}

RFP_RESULT: Dict[str, Any] = {
    "executive_summary": "The city is replacing its fleet tracking vendor.",
    "key_insights": ["Incumbent contract expires in Q3"],
    "recommended_actions": ["Schedule a pre-bid call"],
    "sources": [
        {
            "url": "https://city.example/rfp/123",
            "title": "RFP 123",
            "domain": "city.example",
            "section": "organization_profile",
        }
    ],
    "competitor_analysis": {
        "likely_bidders": [{"name": "Globex", "likelihood": "high"}],
    },
}


# ---------------------------------------------------------------------------
# FullEnrich payloads
# ---------------------------------------------------------------------------

def fullenrich_v1_record(
    person_id: Optional[UUID] = None,
    job_id: Optional[UUID] = None,
    **contact: Any,
) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "contact": {
            "emails": [{"email": "ada@work.example", "status": "DELIVERABLE", "type": "work"}],
            "phones": [{"number": "+44 20 7946 0000", "region": "GB"}],
            "personal_emails": [{"email": "ada@home.example"}],
            "most_probable_email": "ada@work.example",
            "most_probable_phone": "+44 20 7946 0000",
            "profile": {
                "first_name": "Ada",
                "last_name": "Lovelace",
                "full_name": "Ada Lovelace",
                "job_title": "Chief Analyst",
                "linkedin_url": "https://linkedin.com/in/ada",
                "location": {"city": "London", "country": "UK"},
            },
        },
    }
    record["contact"].update(contact)
    if person_id is not None and job_id is not None:
        record["custom"] = {"person_id": str(person_id), "job_id": str(job_id)}
    return record


def fullenrich_v1_payload(
    enrichment_id: str,
    records: List[Dict[str, Any]],
    status: str = "FINISHED",
    credits: Optional[int] = 2,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "enrichment_id": enrichment_id,
        "name": "enrichment-batch",
        "status": status,
        "datas": records,
    }
    if credits is not None:
        payload["cost"] = {"credits": credits}
    return payload


def simple_payload(
    job_id: str,
    results: List[Dict[str, Any]],
    status: str = "completed",
    **extra: Any,
) -> Dict[str, Any]:
    payload = {"job_id": job_id, "status": status, "results": results}
    payload.update(extra)
    return payload
