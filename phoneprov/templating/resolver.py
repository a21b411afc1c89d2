"""
Variable resolution: one ordered precedence chain shared by every caller.

    supplied (non-empty) -> definition default -> global variable -> ""
"""
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ..models import GlobalVariable, VariableDefinition
from .fields import VariableKind, split_multi

Lookup = Callable[[str], Optional[str]]


def _as_scalar(value: Any, multi: bool = False) -> Optional[str]:
    """Scalar string for the renderer; lists are comma-joined, empty values yield None."""
    if value is None:
        return None
    if multi or isinstance(value, (list, tuple)):
        joined = ",".join(split_multi(value))
        return joined or None
    text = str(value)
    return text if text != "" else None


def _is_multi(definition) -> bool:
    try:
        return VariableKind.of(definition).is_multi
    except ValueError:
        return False


def lookup_chain(
    supplied: Mapping[str, Any],
    definitions: Mapping[str, VariableDefinition],
    global_values: Mapping[str, str],
) -> List[Lookup]:
    def from_supplied(name):
        definition = definitions.get(name)
        return _as_scalar(supplied.get(name), multi=definition is not None and _is_multi(definition))

    def from_default(name):
        definition = definitions.get(name)
        return _as_scalar(definition.default_value) if definition is not None else None

    def from_global(name):
        return _as_scalar(global_values.get(name))

    return [from_supplied, from_default, from_global]


def resolve_values(
    definitions: Iterable[VariableDefinition],
    supplied: Optional[Mapping[str, Any]] = None,
    global_values: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    supplied = supplied or {}
    global_values = global_values or {}
    by_name = {d.name: d for d in definitions}
    chain = lookup_chain(supplied, by_name, global_values)

    names = list(by_name)
    names += [n for n in global_values if n not in by_name]
    names += [n for n in supplied if n not in by_name and n not in global_values]

    resolved = {}
    for name in names:
        value = ""
        for lookup in chain:
            hit = lookup(name)
            if hit is not None:
                value = hit
                break
        resolved[name] = value
    return resolved


def resolve(template_id: int, supplied: Optional[Mapping[str, Any]] = None) -> Dict[str, str]:
    """Effective variable map for `template_id`, read fresh from the store."""
    return resolve_values(
        VariableDefinition.for_template(template_id),
        supplied,
        GlobalVariable.as_mapping(),
    )
