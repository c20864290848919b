"""
Tests for merge.py - Field Merge Resolver

Covers mapping of research and enrichment results onto entity fields,
merge policies, confidence gating and re-resolving after an apply.
"""
import pytest

from app.schemas.canonical import (
    ContactCandidate,
    ContactEnrichmentResult,
    Location,
    OrganizationResearch,
    load_result,
)
from app.services.entities import apply_field_updates, entity_snapshot
from app.services.merge import (
    DEFAULT_FIELD_CONFIDENCE,
    FieldMapping,
    MergePolicy,
    is_empty,
    resolve_enrichment,
    resolve_research,
    select_applicable,
)

from tests.fixtures.research_fixtures import (
    ORGANIZATION_RESULT,
    PERSON_RESULT,
    make_custom_field,
    make_organization,
)


def _targets(mappings):
    return {m.target_field: m for m in mappings}


class TestIsEmpty:
    """Values that count as 'nothing there'."""

    @pytest.mark.parametrize("value", [None, "", "   ", [], {}])
    def test_empty_values(self, value):
        assert is_empty(value)

    @pytest.mark.parametrize("value", [0, False, "x", ["a"], {"a": 1}])
    def test_non_empty_values(self, value):
        assert not is_empty(value)


class TestResolveResearch:
    """Research results map onto standard and custom fields."""

    def test_organization_fields_are_mapped(self):
        result = load_result(OrganizationResearch, ORGANIZATION_RESULT)
        mappings = _targets(resolve_research(result, "organization", {"name": "Acme Corp"}))

        assert mappings["name"].value == "Acme Corporation"
        assert mappings["name"].current_value == "Acme Corp"
        assert mappings["employee_count"].value == 1200
        assert mappings["address_city"].value == "Denver"
        assert mappings["address_country"].value == "USA"

    def test_confidence_comes_from_scores_with_default(self):
        mappings = _targets(resolve_research(ORGANIZATION_RESULT, "organization", {}))

        assert mappings["name"].confidence == 0.95
        assert mappings["employee_count"].confidence == 0.6
        # No score for website
        assert mappings["website"].confidence == DEFAULT_FIELD_CONFIDENCE

    def test_null_values_produce_no_mapping(self):
        mappings = _targets(resolve_research(PERSON_RESULT, "person", {}))

        assert "phone" not in mappings
        assert "address_state" not in mappings
        assert mappings["address_city"].value == "London"

    def test_skipped_person_fields_are_never_mapped(self):
        mappings = resolve_research(PERSON_RESULT, "person", {})
        sources = {m.source_field for m in mappings}

        assert "full_name" not in sources
        assert "current_company" not in sources
        assert _targets(mappings)["job_title"].value == "Chief Analyst"

    def test_custom_fields_use_custom_confidence_key(self):
        mappings = _targets(
            resolve_research(
                ORGANIZATION_RESULT,
                "organization",
                {"custom_fields": {"tech_stack": ""}},
                custom_field_names=["tech_stack"],
            )
        )

        custom = mappings["tech_stack"]
        assert custom.target_is_custom
        assert custom.value == "Python, Rust"
        assert custom.current_value == ""
        assert custom.confidence == 0.8

    def test_custom_field_names_limit_what_is_considered(self):
        data = dict(ORGANIZATION_RESULT, custom_fields={"tech_stack": "Go", "region": "EMEA"})
        mappings = _targets(resolve_research(data, "organization", {}, custom_field_names=["region"]))

        assert "region" in mappings
        assert "tech_stack" not in mappings


class TestResolveEnrichment:
    """Contact enrichment fallbacks and location mapping."""

    def test_email_falls_back_to_work_email_then_candidates(self):
        result = ContactEnrichmentResult(work_email="w@acme.example")
        assert _targets(resolve_enrichment(result, {}))["email"].value == "w@acme.example"

        result = ContactEnrichmentResult(emails=[ContactCandidate(value="c@acme.example")])
        assert _targets(resolve_enrichment(result, {}))["email"].value == "c@acme.example"

    def test_phone_falls_back_to_mobile_then_candidates(self):
        result = ContactEnrichmentResult(mobile_phone="+1 555 0100")
        assert _targets(resolve_enrichment(result, {}))["phone"].value == "+1 555 0100"

        result = ContactEnrichmentResult(phones=[ContactCandidate(value="+1 555 0199")])
        assert _targets(resolve_enrichment(result, {}))["phone"].value == "+1 555 0199"

    def test_no_contact_data_yields_no_mappings(self):
        assert resolve_enrichment(ContactEnrichmentResult(), {}) == []

    def test_location_and_confidence(self):
        result = ContactEnrichmentResult(
            email="ada@work.example",
            location=Location(city="London", country="UK"),
            confidence_score=0.9,
        )
        mappings = _targets(resolve_enrichment(result, {"email": "old@example.com"}))

        assert mappings["address_city"].value == "London"
        assert mappings["address_country"].value == "UK"
        assert mappings["email"].current_value == "old@example.com"
        assert all(m.confidence == 0.9 for m in mappings.values())


class TestSelectApplicable:
    """Merge policy and confidence gates."""

    def _mappings(self):
        return [
            FieldMapping("industry", "industry", False, "Automation", current_value=None, confidence=0.9),
            FieldMapping("website", "website", False, "https://new.example", current_value="https://old.example", confidence=0.9),
            FieldMapping("description", "description", False, "", current_value=None, confidence=0.9),
        ]

    def test_fill_empty_only_touches_empty_targets(self):
        selected = select_applicable(self._mappings(), MergePolicy.FILL_EMPTY)
        assert [m.target_field for m in selected] == ["industry"]

    def test_overwrite_replaces_existing_values(self):
        selected = select_applicable(self._mappings(), MergePolicy.OVERWRITE)
        assert [m.target_field for m in selected] == ["industry", "website"]

    def test_null_values_are_never_applied(self):
        selected = select_applicable(self._mappings(), MergePolicy.OVERWRITE)
        assert "description" not in [m.target_field for m in selected]

    def test_result_below_min_confidence_is_rejected(self):
        selected = select_applicable(
            self._mappings(), MergePolicy.OVERWRITE, confidence_score=0.3, min_confidence=0.5
        )
        assert selected == []

    def test_result_above_min_confidence_is_accepted(self):
        selected = select_applicable(
            self._mappings(), MergePolicy.OVERWRITE, confidence_score=0.6, min_confidence=0.5
        )
        assert len(selected) == 2

    def test_unscored_result_is_not_gated(self):
        selected = select_applicable(
            self._mappings(), MergePolicy.OVERWRITE, confidence_score=None, min_confidence=0.5
        )
        assert len(selected) == 2

    def test_field_thresholds_gate_individual_fields(self):
        mappings = [
            FieldMapping("custom_fields.tier", "tier", True, "gold", confidence=0.6),
            FieldMapping("custom_fields.region", "region", True, "EMEA", confidence=0.8),
        ]
        selected = select_applicable(
            mappings, MergePolicy.FILL_EMPTY, field_thresholds={"tier": 0.7, "region": 0.7}
        )
        assert [m.target_field for m in selected] == ["region"]


class TestResolveAfterApply:
    def test_resolving_again_after_apply_selects_nothing(self, db_session):
        """Applying a selection under FILL_EMPTY is idempotent."""
        make_custom_field(db_session)
        org = make_organization(db_session)
        first = select_applicable(
            resolve_research(ORGANIZATION_RESULT, "organization", entity_snapshot(org), ["tech_stack"]),
            MergePolicy.FILL_EMPTY,
        )
        assert first

        apply_field_updates(db_session, org, "organization", [m.as_update() for m in first])
        second = select_applicable(
            resolve_research(ORGANIZATION_RESULT, "organization", entity_snapshot(org), ["tech_stack"]),
            MergePolicy.FILL_EMPTY,
        )
        assert second == []
