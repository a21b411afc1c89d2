from .fields import VariableKind
from .validator import ValidationResult, validate, validate_all
from .resolver import resolve, resolve_values
from .renderer import RenderResult, render, generate_config  # noqa: F401
