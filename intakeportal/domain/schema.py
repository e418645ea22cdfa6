"""Schema-driven visibility and validation for intake steps.

Step definitions are declarative; the engine decides, against a flat answer
map, which fields currently apply and whether their answers are acceptable.
Hidden fields never block: they are excluded from both required-ness and
validation.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import math
import re
from typing import Any, Iterable, Literal, Mapping, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from intakeportal.core.errors import NotFound, ValidationFailed
from intakeportal.domain.models import AnswerValue, Answers


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    PHONE = "phone"
    NUMBER = "number"
    CURRENCY = "currency"
    PERCENT = "percent"
    DATE = "date"
    SINGLE_SELECT = "single_select"
    MULTI_SELECT = "multi_select"
    BOOLEAN = "boolean"
    UPLOAD = "upload"
    SIGNATURE = "signature"


ARRAY_TYPES = frozenset({FieldType.MULTI_SELECT, FieldType.UPLOAD})
NUMERIC_TYPES = frozenset({FieldType.NUMBER, FieldType.CURRENCY, FieldType.PERCENT})

_NON_NUMERIC = re.compile(r"[^0-9.\-]")


class EqualsCondition(BaseModel):
    kind: Literal["equals"] = "equals"
    field: str
    equals: Any


class HasValueCondition(BaseModel):
    kind: Literal["has_value"] = "has_value"
    field: str


class AnyOfCondition(BaseModel):
    kind: Literal["any_of"] = "any_of"
    any_of: list[EqualsCondition]


FieldCondition = Union[EqualsCondition, HasValueCondition, AnyOfCondition]


class FieldValidation(BaseModel):
    regex: str | None = None
    max_words: int | None = None
    min: float | None = None
    max: float | None = None
    # Fields sharing a sum_group must total 100 once every member is answered.
    sum_group: str | None = None
    min_files: int | None = None
    max_files: int | None = None


class FieldDefinition(BaseModel):
    name: str
    label: str
    type: FieldType = FieldType.TEXT
    required: bool = False
    options: list[str] | None = None
    validation: FieldValidation | None = None
    condition: FieldCondition | None = Field(default=None, discriminator="kind")
    upload_category: str | None = None
    help_text: str | None = None


class StepDefinition(BaseModel):
    key: str
    title: str
    subtitle: str = ""
    description: str = ""
    estimated_minutes: int = 5
    fields: list[FieldDefinition] = Field(default_factory=list)


@dataclass(frozen=True)
class FieldError:
    # field holds a field name, or a sum-group id for group-level errors.
    field: str
    message: str


_ANSWERS_ADAPTER: TypeAdapter[Answers] = TypeAdapter(Answers)


def parse_answers(raw: Mapping[str, Any] | None) -> Answers:
    """Validate an untrusted answer mapping at the boundary.

    Accepts str, int, float, bool, list[str] or None per field; anything else
    raises ValidationFailed keyed by the offending field name.
    """
    if raw is None:
        return {}
    try:
        return _ANSWERS_ADAPTER.validate_python(dict(raw), strict=True)
    except ValidationError as exc:
        field_errors: dict[str, str] = {}
        for error in exc.errors():
            loc = error.get("loc") or ("answers",)
            key = str(loc[0])
            field_errors.setdefault(key, "Unsupported answer type")
        raise ValidationFailed(field_errors) from exc
    except TypeError as exc:
        raise ValidationFailed({"answers": "Answers must be an object"}) from exc


def parse_numberish(value: Any) -> float:
    # Strip currency/percent formatting before parsing; NaN means "not a finite number".
    if isinstance(value, bool):
        return math.nan
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return math.nan
    elif isinstance(value, str):
        cleaned = _NON_NUMERIC.sub("", value)
        if not cleaned:
            return math.nan
        try:
            number = float(cleaned)
        except ValueError:
            return math.nan
    else:
        return math.nan
    return number if math.isfinite(number) else math.nan


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, list):
        return len(value) == 0
    return str(value).strip() == ""


def _condition_holds(condition: FieldCondition, answers: Mapping[str, Any]) -> bool:
    if isinstance(condition, EqualsCondition):
        actual = answers.get(condition.field)
        if isinstance(actual, list):
            return condition.equals in actual
        return actual == condition.equals
    if isinstance(condition, HasValueCondition):
        return not is_blank(answers.get(condition.field))
    return any(_condition_holds(item, answers) for item in condition.any_of)


def is_empty_for_type(field: FieldDefinition, value: Any) -> bool:
    # Emptiness is type-specific: booleans must be literally true to count as answered.
    if field.type == FieldType.BOOLEAN:
        return value is not True
    if field.type in ARRAY_TYPES:
        return not isinstance(value, list) or len(value) == 0
    if field.type in NUMERIC_TYPES:
        # Unparseable text is an answer, and fails the numeric check instead.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return isinstance(value, float) and math.isnan(value)
        return is_blank(value)
    return not isinstance(value, str) or value.strip() == ""


def _format_bound(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


class SchemaEngine:
    """Holds the ordered step definitions and evaluates answers against them."""

    def __init__(self, steps: Iterable[StepDefinition]) -> None:
        self._steps = list(steps)
        self._by_key = {step.key: step for step in self._steps}
        if len(self._by_key) != len(self._steps):
            raise ValueError("Step definition keys must be unique")

    @property
    def steps(self) -> list[StepDefinition]:
        return list(self._steps)

    @property
    def total_steps(self) -> int:
        return len(self._steps)

    def get_step(self, step_key: str) -> StepDefinition:
        step = self._by_key.get(step_key)
        if step is None:
            raise NotFound("step_definition", step_key)
        return step

    def has_step(self, step_key: str) -> bool:
        return step_key in self._by_key

    def step_number(self, step_key: str) -> int:
        return self._steps.index(self.get_step(step_key)) + 1

    def is_visible(self, field: FieldDefinition, answers: Mapping[str, Any]) -> bool:
        if field.condition is None:
            return True
        return _condition_holds(field.condition, answers)

    def is_required(self, field: FieldDefinition, answers: Mapping[str, Any]) -> bool:
        return field.required and self.is_visible(field, answers)

    def validate_field(
        self,
        field: FieldDefinition,
        value: Any,
        *,
        required: bool | None = None,
    ) -> FieldError | None:
        resolved_required = field.required if required is None else required
        if is_empty_for_type(field, value):
            if resolved_required:
                return FieldError(field.name, f"{field.label} is required")
            return None

        rules = field.validation
        if rules is None:
            return self._check_numeric(field, value, rules)

        if rules.regex and isinstance(value, str):
            if re.search(rules.regex, value.strip()) is None:
                return FieldError(field.name, f"{field.label} format is invalid")

        if rules.max_words is not None and isinstance(value, str):
            if len(value.split()) > rules.max_words:
                return FieldError(field.name, f"{field.label} cannot exceed {rules.max_words} words")

        if field.type == FieldType.UPLOAD and isinstance(value, list):
            if rules.min_files is not None and len(value) < rules.min_files:
                return FieldError(field.name, f"Add at least {rules.min_files} file(s)")
            if rules.max_files is not None and len(value) > rules.max_files:
                return FieldError(field.name, f"Maximum {rules.max_files} files allowed")

        return self._check_numeric(field, value, rules)

    def _check_numeric(
        self,
        field: FieldDefinition,
        value: Any,
        rules: FieldValidation | None,
    ) -> FieldError | None:
        if field.type not in NUMERIC_TYPES:
            return None
        number = parse_numberish(value)
        if math.isnan(number):
            return FieldError(field.name, f"{field.label} must be numeric")
        if rules is None:
            return None
        if rules.min is not None and number < rules.min:
            return FieldError(field.name, f"{field.label} must be at least {_format_bound(rules.min)}")
        if rules.max is not None and number > rules.max:
            return FieldError(field.name, f"{field.label} must be no more than {_format_bound(rules.max)}")
        return None

    def validate_sum_group(
        self,
        group_id: str,
        fields: Iterable[FieldDefinition],
        answers: Mapping[str, Any],
    ) -> FieldError | None:
        members = list(fields)
        if not members:
            return None
        # Partial groups are never flagged.
        if any(is_blank(answers.get(member.name)) for member in members):
            return None
        total = 0.0
        for member in members:
            number = parse_numberish(answers.get(member.name))
            if not math.isnan(number):
                total += number
        # Half-up rounding to the nearest integer.
        if not math.isfinite(total) or math.floor(total + 0.5) != 100:
            return FieldError(group_id, "Percentages must total 100%")
        return None

    def validate_step(self, step_key: str, answers: Mapping[str, Any]) -> list[FieldError]:
        step = self.get_step(step_key)
        visible = [field for field in step.fields if self.is_visible(field, answers)]

        errors: list[FieldError] = []
        for field in visible:
            error = self.validate_field(field, answers.get(field.name), required=field.required)
            if error is not None:
                errors.append(error)

        groups: list[str] = []
        for field in step.fields:
            group = field.validation.sum_group if field.validation else None
            if group and group not in groups:
                groups.append(group)
        for group in groups:
            members = [
                field
                for field in visible
                if field.validation is not None and field.validation.sum_group == group
            ]
            error = self.validate_sum_group(group, members, answers)
            if error is not None:
                errors.append(error)
        return errors


def errors_to_map(errors: Iterable[FieldError]) -> dict[str, str]:
    # First error per field wins so the UI highlights one message per input.
    mapped: dict[str, str] = {}
    for error in errors:
        mapped.setdefault(error.field, error.message)
    return mapped


__all__ = [
    "AnswerValue",
    "AnyOfCondition",
    "EqualsCondition",
    "FieldDefinition",
    "FieldError",
    "FieldType",
    "FieldValidation",
    "HasValueCondition",
    "SchemaEngine",
    "StepDefinition",
    "errors_to_map",
    "is_blank",
    "parse_answers",
    "parse_numberish",
]
