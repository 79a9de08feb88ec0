"""
Structural validation of generated documents.

A ValidationSpec describes the shape a flow expects: required fields, where
the content sections live, how sections are tagged for presentation and,
for fixed-size flows, how many sections with which identifiers must exist.
`validate_document` checks a parsed value against it and returns a
normalized copy.
"""

import copy
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from blueprintforge.utils.logging import get_logger

from .exceptions import ValidationError

logger = get_logger(__name__)

DISPLAY_TYPES = frozenset({"infographic", "timeline", "chart", "table", "markdown"})
DEFAULT_DISPLAY_TYPE = "markdown"

_PERCENT_RE = re.compile(r"^\s*-?\d+(\.\d+)?\s*%\s*$")


@dataclass(frozen=True)
class ValidationSpec:
    """
    Shape contract for one generation flow.

    Sections live either in an array under `sections_key` or, when that is
    None, as the object-valued top-level keys other than `metadata_key`.
    """

    name: str
    required_fields: Tuple[str, ...] = ()
    metadata_key: Optional[str] = None
    required_metadata_fields: Tuple[str, ...] = ()
    sections_key: Optional[str] = None
    display_type_key: Optional[str] = None
    valid_display_types: frozenset = DISPLAY_TYPES
    default_display_type: str = DEFAULT_DISPLAY_TYPE
    expected_section_count: Optional[int] = None
    min_valid_sections: Optional[int] = None
    enforce_id_sequence: bool = False
    section_id_key: str = "id"
    section_id_prefix: str = ""
    section_title_key: str = "title"
    section_content_key: Optional[str] = None

    @property
    def record_collections(self) -> Tuple[str, ...]:
        """Array keys whose elements are whole records for repair purposes."""
        return (self.sections_key,) if self.sections_key else ()

    @property
    def expected_ids(self) -> List[str]:
        """`<prefix>1` .. `<prefix>N` when ids must follow the fixed sequence."""
        if not (self.enforce_id_sequence and self.expected_section_count):
            return []
        return [
            f"{self.section_id_prefix}{n}"
            for n in range(1, self.expected_section_count + 1)
        ]


BLUEPRINT_SPEC = ValidationSpec(
    name="blueprint",
    metadata_key="metadata",
    required_fields=("metadata",),
    required_metadata_fields=("title", "organization", "role", "generated_at"),
    display_type_key="displayType",
)

DYNAMIC_QUESTIONS_SPEC = ValidationSpec(
    name="dynamic_questions",
    required_fields=("sections",),
    sections_key="sections",
    expected_section_count=10,
    min_valid_sections=5,
    enforce_id_sequence=True,
    section_id_prefix="s",
    section_content_key="questions",
)


@dataclass
class ValidationResult:
    """Normalized document and what validation changed to produce it."""

    document: Dict[str, Any]
    section_count: int
    dropped_sections: List[Dict[str, Any]] = field(default_factory=list)
    inferred_display_types: Dict[str, str] = field(default_factory=dict)
    coerced_display_types: Dict[str, str] = field(default_factory=dict)


# Display-type inference rules, evaluated top to bottom.
Predicate = Callable[[str, Dict[str, Any]], bool]


def _first_item(section: Dict[str, Any], key: str) -> Any:
    value = section.get(key)
    if isinstance(value, list) and value and isinstance(value[0], dict):
        return value[0]
    return None


def _has_dated_records(key: str, section: Dict[str, Any]) -> bool:
    phase = _first_item(section, "phases")
    if phase is not None and phase.get("start_date"):
        return True
    module = _first_item(section, "modules")
    if module is not None and module.get("duration"):
        return True
    milestone = _first_item(section, "milestones") or _first_item(section, "timeline")
    return milestone is not None and any(
        field_name in milestone for field_name in ("date", "start_date", "end_date")
    )


def _has_tabular_records(key: str, section: Dict[str, Any]) -> bool:
    return isinstance(section.get("risks"), list) or isinstance(
        section.get("human_resources"), list
    )


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    return isinstance(value, str) and bool(_PERCENT_RE.match(value))


def _has_metrics(key: str, section: Dict[str, Any]) -> bool:
    if any(section.get(name) for name in ("objectives", "kpis", "metrics", "demographics")):
        return True
    return any(_is_number(value) for value in section.values())


def _has_chart_config(key: str, section: Dict[str, Any]) -> bool:
    return bool(section.get("chartConfig") or section.get("chartType"))


def _key_hint(*hints: str) -> Predicate:
    def predicate(key: str, section: Dict[str, Any]) -> bool:
        lowered = key.lower()
        return any(hint in lowered for hint in hints)

    return predicate


DISPLAY_TYPE_RULES: Tuple[Tuple[Predicate, str], ...] = (
    (_has_dated_records, "timeline"),
    (_has_tabular_records, "table"),
    (_has_chart_config, "chart"),
    (_has_metrics, "infographic"),
    (_key_hint("timeline", "schedule", "implementation"), "timeline"),
    (_key_hint("resource", "budget", "risk"), "table"),
    (_key_hint("metric", "kpi", "objective", "audience", "assessment"), "infographic"),
)


def infer_display_type(
    key: str, section: Dict[str, Any], default: str = DEFAULT_DISPLAY_TYPE
) -> str:
    """Pick a presentation tag from a section's field shape."""
    for predicate, display_type in DISPLAY_TYPE_RULES:
        if predicate(key, section):
            return display_type
    return default


def _fail(
    spec: ValidationSpec,
    message: str,
    code: str,
    provider: Optional[str],
    issues: Optional[List[str]] = None,
) -> ValidationError:
    logger.error(
        f"Validation failed for {spec.name}: {message}",
        extra={
            "event": "validation.failure",
            "spec": spec.name,
            "code": code,
            "provider": provider,
            "issues": issues or [],
        },
    )
    return ValidationError(message, provider, code=code, issues=issues)


def _section_problem(
    section: Any, spec: ValidationSpec, allowed_ids: List[str], seen_ids: set
) -> Optional[str]:
    """Reason a section must be dropped, or None if it is well formed."""
    if not isinstance(section, dict):
        return "not an object"
    section_id = section.get(spec.section_id_key)
    if not section_id:
        return "missing id"
    if not isinstance(section_id, (str, int)):
        return "id is not a string"
    if not section.get(spec.section_title_key):
        return "missing title"
    if spec.section_content_key and not isinstance(
        section.get(spec.section_content_key), list
    ):
        return f"missing {spec.section_content_key} list"
    if allowed_ids and section_id not in allowed_ids:
        return f"id {section_id!r} outside expected sequence"
    if section_id in seen_ids:
        return f"duplicate id {section_id!r}"
    return None


def _validate_section_array(
    document: Dict[str, Any], spec: ValidationSpec, provider: Optional[str]
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    sections = document.get(spec.sections_key)
    if not isinstance(sections, list):
        raise _fail(
            spec, f"'{spec.sections_key}' must be a list", "INVALID_STRUCTURE", provider
        )

    allowed_ids = spec.expected_ids
    seen_ids: set = set()
    valid: List[Dict[str, Any]] = []
    dropped: List[Dict[str, Any]] = []

    for index, section in enumerate(sections):
        problem = _section_problem(section, spec, allowed_ids, seen_ids)
        if problem is not None:
            section_id = section.get(spec.section_id_key) if isinstance(section, dict) else None
            dropped.append({"index": index, "id": section_id, "reason": problem})
            logger.warning(
                f"Dropping malformed section at index {index}: {problem}",
                extra={
                    "event": "validation.section_dropped",
                    "spec": spec.name,
                    "section_id": section_id,
                    "reason": problem,
                },
            )
            continue

        seen_ids.add(section[spec.section_id_key])
        description = section.get("description")
        if description is not None and not isinstance(description, str):
            section["description"] = str(description)
        valid.append(section)

    if spec.expected_section_count is not None:
        minimum = (
            spec.min_valid_sections
            if spec.min_valid_sections is not None
            else spec.expected_section_count
        )
        if len(valid) > spec.expected_section_count:
            raise _fail(
                spec,
                f"Expected exactly {spec.expected_section_count} sections, got {len(valid)}",
                "TOO_MANY_SECTIONS",
                provider,
            )
        if len(valid) < minimum:
            raise _fail(
                spec,
                f"Only {len(valid)} valid sections, at least {minimum} of "
                f"{spec.expected_section_count} required",
                "INSUFFICIENT_SECTIONS",
                provider,
                issues=[f"{d['id'] or d['index']}: {d['reason']}" for d in dropped],
            )
        if allowed_ids:
            order = {section_id: n for n, section_id in enumerate(allowed_ids)}
            valid.sort(key=lambda s: order[s[spec.section_id_key]])

    return valid, dropped


def validate_document(
    value: Any, spec: ValidationSpec, provider: Optional[str] = None
) -> ValidationResult:
    """
    Validate a parsed document and return a normalized copy.

    Args:
        value: Parsed JSON value
        spec: Shape contract to enforce
        provider: Provider that produced the document, for error context

    Returns:
        ValidationResult with the normalized document

    Raises:
        ValidationError: If the document does not have the required shape
    """
    if not isinstance(value, dict):
        raise _fail(spec, "Document is not an object", "INVALID_STRUCTURE", provider)

    document = copy.deepcopy(value)

    missing = [name for name in spec.required_fields if name not in document]
    if missing:
        raise _fail(
            spec,
            f"Missing required fields: {', '.join(missing)}",
            "MISSING_FIELDS",
            provider,
            issues=missing,
        )

    if spec.metadata_key:
        metadata = document.get(spec.metadata_key)
        if not isinstance(metadata, dict):
            raise _fail(spec, "Missing metadata section", "MISSING_METADATA", provider)
        missing_meta = [
            name for name in spec.required_metadata_fields if not metadata.get(name)
        ]
        if missing_meta:
            raise _fail(
                spec,
                f"Metadata missing required fields: {', '.join(missing_meta)}",
                "MISSING_METADATA_FIELD",
                provider,
                issues=missing_meta,
            )

    dropped: List[Dict[str, Any]] = []
    if spec.sections_key:
        valid, dropped = _validate_section_array(document, spec, provider)
        document[spec.sections_key] = valid
        keyed_sections = [
            (str(section.get(spec.section_id_key)), section) for section in valid
        ]
    else:
        keyed_sections = [
            (key, section)
            for key, section in document.items()
            if key != spec.metadata_key
            and not key.startswith("_")
            and isinstance(section, dict)
        ]

    if not keyed_sections:
        raise _fail(spec, "Document has no content sections", "NO_SECTIONS", provider)

    inferred: Dict[str, str] = {}
    coerced: Dict[str, str] = {}
    if spec.display_type_key:
        tag_key = spec.display_type_key
        for key, section in keyed_sections:
            tag = section.get(tag_key)
            if not tag:
                tag = infer_display_type(key, section, spec.default_display_type)
                section[tag_key] = tag
                inferred[key] = tag
                logger.info(
                    f"Inferred {tag_key} {tag!r} for section {key}",
                    extra={"event": "validation.inferred_display_type", "section": key},
                )
            if not isinstance(tag, str) or tag not in spec.valid_display_types:
                logger.warning(
                    f"Unknown {tag_key} {tag!r} in section {key}, using "
                    f"{spec.default_display_type!r}",
                    extra={
                        "event": "validation.invalid_display_type",
                        "section": key,
                        "invalid_type": tag,
                    },
                )
                coerced[key] = str(tag)
                section[tag_key] = spec.default_display_type

    logger.info(
        f"Validated {spec.name} with {len(keyed_sections)} sections",
        extra={
            "event": "validation.success",
            "spec": spec.name,
            "provider": provider,
            "section_count": len(keyed_sections),
            "dropped_sections": len(dropped),
        },
    )

    return ValidationResult(
        document=document,
        section_count=len(keyed_sections),
        dropped_sections=dropped,
        inferred_display_types=inferred,
        coerced_display_types=coerced,
    )
