"""Tests for structural validation and display-type inference."""

import random

import pytest

from blueprintforge.llm.exceptions import ErrorKind, ValidationError
from blueprintforge.llm.validation import (
    BLUEPRINT_SPEC,
    DYNAMIC_QUESTIONS_SPEC,
    ValidationSpec,
    infer_display_type,
    validate_document,
)
from llm_fakes import blueprint_document, questions_document


class TestSectionCardinality:
    """Fixed-size section arrays."""

    def test_exact_count_passes(self):
        result = validate_document(questions_document(), DYNAMIC_QUESTIONS_SPEC)

        assert result.section_count == 10
        assert result.dropped_sections == []
        assert [s["id"] for s in result.document["sections"]] == [
            f"s{n}" for n in range(1, 11)
        ]

    def test_malformed_sections_are_dropped(self):
        document = questions_document()
        document["sections"][2] = {"id": "s3", "questions": []}  # no title
        document["sections"][5] = {"id": "s6", "title": "No questions"}
        document["sections"][7] = "not a section"

        result = validate_document(document, DYNAMIC_QUESTIONS_SPEC)

        assert result.section_count == 7
        assert [d["index"] for d in result.dropped_sections] == [2, 5, 7]
        assert result.dropped_sections[0]["reason"] == "missing title"
        assert result.dropped_sections[1]["reason"] == "missing questions list"
        assert result.dropped_sections[2]["reason"] == "not an object"

    def test_too_few_valid_sections(self):
        document = questions_document(section_count=4)

        with pytest.raises(ValidationError) as exc_info:
            validate_document(document, DYNAMIC_QUESTIONS_SPEC, provider="primary")

        error = exc_info.value
        assert error.kind == ErrorKind.VALIDATION_ERROR
        assert error.code == "INSUFFICIENT_SECTIONS"
        assert error.provider == "primary"

    def test_minimum_is_inclusive(self):
        result = validate_document(questions_document(section_count=5), DYNAMIC_QUESTIONS_SPEC)

        assert result.section_count == 5

    def test_out_of_sequence_and_duplicate_ids_are_dropped(self):
        document = questions_document()
        extra = dict(document["sections"][0], id="s11")
        duplicate = dict(document["sections"][1])
        document["sections"].extend([extra, duplicate])

        result = validate_document(document, DYNAMIC_QUESTIONS_SPEC)

        assert result.section_count == 10
        reasons = [d["reason"] for d in result.dropped_sections]
        assert reasons == ["id 's11' outside expected sequence", "duplicate id 's2'"]

    def test_too_many_sections(self):
        spec = ValidationSpec(
            name="open_ids",
            required_fields=("sections",),
            sections_key="sections",
            expected_section_count=3,
            min_valid_sections=1,
        )
        document = {
            "sections": [{"id": f"x{n}", "title": "T"} for n in range(4)]
        }

        with pytest.raises(ValidationError) as exc_info:
            validate_document(document, spec)

        assert exc_info.value.code == "TOO_MANY_SECTIONS"

    def test_sections_are_ordered_by_id(self):
        document = questions_document()
        random.Random(7).shuffle(document["sections"])

        result = validate_document(document, DYNAMIC_QUESTIONS_SPEC)

        assert [s["id"] for s in result.document["sections"]][:3] == ["s1", "s2", "s3"]

    def test_description_is_coerced_to_string(self):
        document = questions_document()
        document["sections"][0]["description"] = 42

        result = validate_document(document, DYNAMIC_QUESTIONS_SPEC)

        assert result.document["sections"][0]["description"] == "42"

    def test_input_is_not_mutated(self):
        document = questions_document()
        document["sections"][0]["description"] = 42

        validate_document(document, DYNAMIC_QUESTIONS_SPEC)

        assert document["sections"][0]["description"] == 42

    @pytest.mark.parametrize(
        "value,code",
        [
            ([], "INVALID_STRUCTURE"),
            ("text", "INVALID_STRUCTURE"),
            ({"metadata": {}}, "MISSING_FIELDS"),
            ({"sections": {"s1": {}}}, "INVALID_STRUCTURE"),
        ],
    )
    def test_structural_failures(self, value, code):
        with pytest.raises(ValidationError) as exc_info:
            validate_document(value, DYNAMIC_QUESTIONS_SPEC)

        assert exc_info.value.code == code


class TestBlueprintValidation:
    """Keyed-section documents with metadata."""

    def test_valid_blueprint(self):
        result = validate_document(blueprint_document(), BLUEPRINT_SPEC)

        assert result.section_count == 2
        assert result.document["executive_summary"]["displayType"] == "markdown"
        assert result.document["implementation_timeline"]["displayType"] == "timeline"
        assert result.inferred_display_types == {"implementation_timeline": "timeline"}

    def test_missing_metadata(self):
        document = blueprint_document()
        del document["metadata"]

        with pytest.raises(ValidationError) as exc_info:
            validate_document(document, BLUEPRINT_SPEC)

        assert exc_info.value.code == "MISSING_FIELDS"

    def test_metadata_not_an_object(self):
        document = blueprint_document()
        document["metadata"] = "Sales Enablement"

        with pytest.raises(ValidationError) as exc_info:
            validate_document(document, BLUEPRINT_SPEC)

        assert exc_info.value.code == "MISSING_METADATA"

    def test_missing_metadata_field(self):
        document = blueprint_document()
        del document["metadata"]["organization"]

        with pytest.raises(ValidationError) as exc_info:
            validate_document(document, BLUEPRINT_SPEC)

        assert exc_info.value.code == "MISSING_METADATA_FIELD"
        assert exc_info.value.issues == ["organization"]

    def test_no_sections(self):
        document = {"metadata": blueprint_document()["metadata"], "_notes": {"a": 1}}

        with pytest.raises(ValidationError) as exc_info:
            validate_document(document, BLUEPRINT_SPEC)

        assert exc_info.value.code == "NO_SECTIONS"

    def test_unknown_display_type_is_coerced(self):
        document = blueprint_document()
        document["executive_summary"]["displayType"] = "carousel"

        result = validate_document(document, BLUEPRINT_SPEC)

        assert result.document["executive_summary"]["displayType"] == "markdown"
        assert result.coerced_display_types == {"executive_summary": "carousel"}

    @pytest.mark.parametrize("tag", [["chart"], {"type": "chart"}, 7])
    def test_non_string_display_type_is_coerced(self, tag):
        document = blueprint_document()
        document["executive_summary"]["displayType"] = tag

        result = validate_document(document, BLUEPRINT_SPEC)

        assert result.document["executive_summary"]["displayType"] == "markdown"
        assert result.coerced_display_types == {"executive_summary": str(tag)}

    def test_scalar_top_level_keys_are_not_sections(self):
        document = blueprint_document()
        document["version"] = 2

        result = validate_document(document, BLUEPRINT_SPEC)

        assert result.section_count == 2
        assert result.document["version"] == 2


class TestDisplayTypeInference:
    """Ordered shape rules."""

    @pytest.mark.parametrize(
        "key,section,expected",
        [
            ("plan", {"phases": [{"name": "Pilot", "start_date": "2025-01-01"}]}, "timeline"),
            ("plan", {"modules": [{"name": "Intro", "duration": "2 weeks"}]}, "timeline"),
            ("plan", {"milestones": [{"name": "Launch", "date": "2025-06-01"}]}, "timeline"),
            ("plan", {"risks": [{"risk": "Attrition"}]}, "table"),
            ("plan", {"human_resources": []}, "table"),
            ("plan", {"chartConfig": {"type": "bar"}, "total": 12}, "chart"),
            ("plan", {"completion": "85%"}, "infographic"),
            ("plan", {"score": 4.5}, "infographic"),
            ("plan", {"kpis": ["retention"]}, "infographic"),
            ("delivery_schedule", {"content": "Weekly"}, "timeline"),
            ("budget_overview", {"content": "Costs"}, "table"),
            ("target_audience", {"content": "New hires"}, "infographic"),
            ("introduction", {"content": "Welcome"}, "markdown"),
            ("plan", {"enabled": True}, "markdown"),
        ],
    )
    def test_rules(self, key, section, expected):
        assert infer_display_type(key, section) == expected

    def test_dated_records_win_over_key_hints(self):
        section = {"phases": [{"start_date": "2025-01-01"}]}
        assert infer_display_type("risk_register", section) == "timeline"

    def test_custom_default(self):
        assert infer_display_type("notes", {"content": "x"}, default="table") == "table"
