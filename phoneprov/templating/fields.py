"""
Variable kinds and the WTForms field that carries each of them.

Every kind maps to one field factory with its validator chain attached. The
wizard's input form and `validator.validate()` both bind these fields, so the
browser form and the stored-value check apply the same rules.
"""
import decimal
import enum
import re
from typing import Any, Callable, Dict, List

from wtforms import (
    BooleanField, DateField, DecimalField, EmailField, Field, PasswordField,
    RadioField, SelectField, SelectMultipleField, StringField, TextAreaField, URLField
)
from wtforms.validators import (
    URL, AnyOf, InputRequired, IPAddress, Length, NumberRange, Optional, Regexp, ValidationError
)
from wtforms.widgets import RangeInput


class VariableKind(str, enum.Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    PASSWORD = "password"
    EMAIL = "email"
    URL = "url"
    IP_ADDRESS = "ip_address"
    NUMBER = "number"
    RANGE = "range"
    DATE = "date"
    BOOLEAN = "boolean"
    SELECT = "select"
    RADIO = "radio"
    MULTISELECT = "multiselect"
    CHECKBOX_GROUP = "checkbox_group"

    @classmethod
    def of(cls, definition) -> "VariableKind":
        raw = (getattr(definition, "var_type", None) or cls.TEXT.value).strip().lower()
        try:
            return cls(raw)
        except ValueError:
            raise ValueError(f"Unknown variable type: {raw!r}") from None

    @property
    def is_multi(self) -> bool:
        return self in (VariableKind.MULTISELECT, VariableKind.CHECKBOX_GROUP)

    @property
    def keeps_whitespace(self) -> bool:
        return self in (VariableKind.TEXT, VariableKind.TEXTAREA, VariableKind.PASSWORD)


EMAIL_RE = re.compile(
    r"[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@"
    r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+"
)
# plain decimal notation; no digit separators, nan or inf
NUMBER_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
URL_SCHEMES = ("http", "https", "ftp", "ftps")
DATE_FORMATS = ["%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y"]
_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


def split_multi(value: Any) -> List[str]:
    """Comma-split (or take the list as-is), trimming and dropping empty tokens."""
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple)) else str(value).split(",")
    return [str(item).strip() for item in items if str(item).strip()]


def option_values(options: Any) -> List[str]:
    """Allowed values of an option list; entries may be plain values or {"value", "label"} dicts."""
    values = []
    for opt in options or []:
        if isinstance(opt, dict):
            values.append(str(opt.get("value", "")))
        else:
            values.append(str(opt))
    return values


def option_choices(options: Any) -> List[tuple]:
    pairs = []
    for opt in options or []:
        if isinstance(opt, dict):
            value = str(opt.get("value", ""))
            pairs.append((value, str(opt.get("label") or value)))
        else:
            pairs.append((str(opt), str(opt)))
    return pairs


def compile_constraint(pattern: str) -> "re.Pattern":
    """
    Compile a regex constraint, accepting bare patterns as well as
    "/body/flags" and "#body#flags" delimited forms.
    """
    flags = 0
    body = pattern
    if len(pattern) >= 2 and pattern[0] in "/#":
        end = pattern.rfind(pattern[0])
        if end > 0:
            body = pattern[1:end]
            for ch in pattern[end + 1:]:
                flags |= _REGEX_FLAGS.get(ch, 0)
    return re.compile(body, flags)


class NumberField(DecimalField):
    """DecimalField that only takes plain decimal notation."""

    def process_formdata(self, valuelist):
        if not valuelist or valuelist[0] == "":
            self.data = None
            return
        if not NUMBER_RE.fullmatch(valuelist[0]):
            self.data = None
            raise ValueError("Value must be a number")
        self.data = decimal.Decimal(valuelist[0])


class NumberRangeField(NumberField):
    widget = RangeInput(step="any")


class FullMatch(Regexp):
    """Regexp that has to cover the whole value, not just its start."""

    def __call__(self, form, field, message=None):
        text = field.data if isinstance(field.data, str) else (field.raw_data or [""])[0]
        if self.regex.fullmatch(text or ""):
            return
        raise ValidationError(self.message or field.gettext("Invalid input."))


class AllowedTokens:
    """Every selected value of a multi-value field must be one of `values`."""

    def __init__(self, values: List[str]):
        self.values = values

    def __call__(self, form, field):
        invalid = [v for v in field.data or [] if v not in self.values]
        if invalid:
            raise ValidationError("Invalid selection: " + ", ".join(invalid))


def _url_scheme(form, field):
    scheme = (field.data or "").split("://", 1)[0].lower()
    if scheme not in URL_SCHEMES:
        raise ValidationError("URL must start with http://, https://, ftp:// or ftps://")


def _broken_pattern(form, field):
    raise ValidationError("Invalid regular expression in validation pattern")


def _pattern(definition) -> List[Callable]:
    pattern = getattr(definition, "regex_pattern", None)
    if not pattern:
        return []
    try:
        compiled = compile_constraint(pattern)
    except re.error:
        return [_broken_pattern]
    return [FullMatch(compiled, message="Value does not match the expected format")]


def _password(definition) -> List[Callable]:
    chain = []
    min_len = getattr(definition, "min_value", None)
    if min_len is not None:
        chain.append(Length(min=int(min_len), message=f"Password must be at least {int(min_len)} characters"))
    return chain + _pattern(definition)


def _number(definition) -> List[Callable]:
    chain = []
    min_value = getattr(definition, "min_value", None)
    max_value = getattr(definition, "max_value", None)
    if min_value is not None:
        chain.append(NumberRange(min=min_value, message=f"Value must be at least {min_value:g}"))
    if max_value is not None:
        chain.append(NumberRange(max=max_value, message=f"Value must be at most {max_value:g}"))
    return chain


def _choice(definition) -> List[Callable]:
    allowed = option_values(getattr(definition, "options", None))
    chain = []
    if allowed:
        chain.append(AnyOf(allowed, message="Invalid selection, expected one of: %(values)s"))
    return chain + _pattern(definition)


def _multi(definition) -> List[Callable]:
    allowed = option_values(getattr(definition, "options", None))
    return [AllowedTokens(allowed)] if allowed else []


KIND_VALIDATORS: Dict[VariableKind, Callable[[Any], List[Callable]]] = {
    VariableKind.TEXT: _pattern,
    VariableKind.TEXTAREA: _pattern,
    VariableKind.PASSWORD: _password,
    VariableKind.EMAIL: lambda d: [FullMatch(EMAIL_RE, message="Invalid email address")],
    VariableKind.URL: lambda d: [URL(require_tld=False, message="Invalid URL (e.g. https://example.com)"), _url_scheme],
    VariableKind.IP_ADDRESS: lambda d: [IPAddress(ipv4=True, ipv6=False, message="Invalid IPv4 address")],
    VariableKind.NUMBER: _number,
    VariableKind.RANGE: _number,
    VariableKind.DATE: lambda d: [],
    VariableKind.BOOLEAN: _choice,
    VariableKind.SELECT: _choice,
    VariableKind.RADIO: _choice,
    VariableKind.MULTISELECT: _multi,
    VariableKind.CHECKBOX_GROUP: _multi,
}


def field_validators(definition, kind: VariableKind) -> List[Callable]:
    if getattr(definition, "is_required", False):
        chain = [InputRequired(message="This field is required")]
    else:
        chain = [Optional(strip_whitespace=False)]
    return chain + KIND_VALIDATORS[kind](definition)


def _boolean_field(definition, **kw) -> Field:
    if option_values(definition.options):
        return RadioField(choices=option_choices(definition.options), validate_choice=False, **kw)
    return BooleanField(**kw)


def _select(field_class):
    def build(definition, **kw) -> Field:
        return field_class(choices=option_choices(definition.options), validate_choice=False, **kw)
    return build


FIELD_FACTORIES: Dict[VariableKind, Callable[..., Field]] = {
    VariableKind.TEXT: lambda d, **kw: StringField(**kw),
    VariableKind.TEXTAREA: lambda d, **kw: TextAreaField(**kw),
    VariableKind.PASSWORD: lambda d, **kw: PasswordField(**kw),
    VariableKind.EMAIL: lambda d, **kw: EmailField(**kw),
    VariableKind.URL: lambda d, **kw: URLField(**kw),
    VariableKind.IP_ADDRESS: lambda d, **kw: StringField(**kw),
    VariableKind.NUMBER: lambda d, **kw: NumberField(**kw),
    VariableKind.RANGE: lambda d, **kw: NumberRangeField(**kw),
    VariableKind.DATE: lambda d, **kw: DateField(format=DATE_FORMATS, **kw),
    VariableKind.BOOLEAN: _boolean_field,
    VariableKind.SELECT: _select(SelectField),
    VariableKind.RADIO: _select(RadioField),
    VariableKind.MULTISELECT: _select(SelectMultipleField),
    VariableKind.CHECKBOX_GROUP: _select(SelectMultipleField),
}

for _table in (KIND_VALIDATORS, FIELD_FACTORIES):
    _unhandled = set(VariableKind) - set(_table)
    if _unhandled:
        raise RuntimeError(f"Variable kinds without a field: {sorted(k.value for k in _unhandled)}")


def variable_field(definition, **kwargs) -> Field:
    """Unbound field for `definition`; raises ValueError for an unknown kind."""
    kind = VariableKind.of(definition)
    return FIELD_FACTORIES[kind](definition, validators=field_validators(definition, kind), **kwargs)
