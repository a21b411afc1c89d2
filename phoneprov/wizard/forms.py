from typing import Any, Dict, List, Mapping

from flask_wtf import FlaskForm

from ..templating.fields import VariableKind, variable_field

FIELD_PREFIX = "var_"


def _render_kw(definition) -> Dict[str, Any]:
    attrs = {}
    if definition.is_required:
        attrs["required"] = True
    if VariableKind.of(definition) == VariableKind.PASSWORD:
        if definition.min_value is not None:
            attrs["minlength"] = int(definition.min_value)
    else:
        if definition.min_value is not None:
            attrs["min"] = definition.min_value
        if definition.max_value is not None:
            attrs["max"] = definition.max_value
    if definition.regex_pattern:
        attrs["pattern"] = definition.regex_pattern
    return attrs


def wizard_field(definition):
    return variable_field(
        definition,
        label=definition.label or definition.name,
        description=definition.help_text or "",
        render_kw=_render_kw(definition),
    )


def build_variable_form(definitions) -> type:
    """FlaskForm with one validated `var_NAME` field per definition."""
    attrs = {FIELD_PREFIX + d.name: wizard_field(d) for d in definitions}
    return type("VariableForm", (FlaskForm,), attrs)


def _unusable(definition, error: str) -> Dict[str, Any]:
    return {
        "name": FIELD_PREFIX + definition.name,
        "variable": definition.name,
        "kind": definition.var_type,
        "input": None,
        "label": definition.label or definition.name,
        "help": definition.help_text or "",
        "required": bool(definition.is_required),
        "attrs": {},
        "value": "",
        "error": error,
    }


def describe_fields(definitions, values: Mapping[str, str]) -> List[Dict[str, Any]]:
    """One input description per definition, pre-filled from `values` or the default."""
    usable, broken = [], {}
    for definition in definitions:
        try:
            VariableKind.of(definition)
        except ValueError as exc:
            broken[definition.name] = _unusable(definition, str(exc))
            continue
        usable.append(definition)

    form = build_variable_form(usable)(formdata=None, meta={"csrf": False})
    described = []
    for definition in definitions:
        if definition.name in broken:
            described.append(broken[definition.name])
            continue
        bound = form[FIELD_PREFIX + definition.name]
        item = {
            "name": bound.name,
            "variable": definition.name,
            "kind": VariableKind.of(definition).value,
            "input": bound.type,
            "label": bound.label.text,
            "help": bound.description,
            "required": bool(definition.is_required),
            "attrs": dict(bound.render_kw or {}),
            "value": values.get(definition.name, definition.default_value or ""),
        }
        if hasattr(bound, "choices"):
            item["choices"] = [{"value": v, "label": lbl} for v, lbl in bound.choices]
        described.append(item)
    return described


def collect_variable_inputs(formdata) -> Dict[str, str]:
    """`var_NAME` fields from a submitted form; repeated fields are comma-joined."""
    collected = {}
    for key in formdata.keys():
        if not key.startswith(FIELD_PREFIX):
            continue
        name = key[len(FIELD_PREFIX):]
        if name.endswith("[]"):
            name = name[:-2]
        collected[name] = ",".join(formdata.getlist(key))
    return collected
