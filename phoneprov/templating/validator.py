"""
Type-aware validation of a single raw variable value.

`validate()` binds the definition's WTForms field (see `fields.py`) to the
raw value alone and reports the first error of its validator chain. An empty
value is decided by the required flag before any kind-specific check runs.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from werkzeug.datastructures import MultiDict
from wtforms import Form

from .fields import VariableKind, split_multi, variable_field

VALUE_FIELD = "value"


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: Optional[str] = None
    normalized: Optional[str] = None

    @classmethod
    def ok(cls, normalized: Optional[str]) -> "ValidationResult":
        return cls(True, None, normalized)

    @classmethod
    def fail(cls, error: str) -> "ValidationResult":
        return cls(False, error, None)


def _submitted(raw_value: Any, kind: VariableKind) -> List[str]:
    """Raw value as the list of strings a browser would post for the field."""
    if kind.is_multi:
        return split_multi(raw_value)
    if raw_value is None:
        return []
    text = str(raw_value)
    if not kind.keeps_whitespace:
        text = text.strip()
    return [text] if text != "" else []


def validate(raw_value: Any, definition) -> ValidationResult:
    try:
        kind = VariableKind.of(definition)
    except ValueError as exc:
        return ValidationResult.fail(str(exc))

    submitted = _submitted(raw_value, kind)
    form_class = type("VariableValueForm", (Form,), {VALUE_FIELD: variable_field(definition)})
    form = form_class(formdata=MultiDict([(VALUE_FIELD, v) for v in submitted]))
    field = form[VALUE_FIELD]
    if not form.validate():
        return ValidationResult.fail(field.errors[0])

    if not submitted:
        return ValidationResult.ok("")
    if kind.is_multi:
        return ValidationResult.ok(",".join(submitted))
    if kind == VariableKind.DATE:
        return ValidationResult.ok(field.data.isoformat())
    return ValidationResult.ok(submitted[0])


def validate_all(values: Dict[str, Any], definitions: Iterable) -> Dict[str, str]:
    """Validate every definition against `values`; returns name -> error for failures only."""
    errors = {}
    for definition in definitions:
        result = validate(values.get(definition.name), definition)
        if not result.valid:
            errors[definition.name] = result.error
    return errors
