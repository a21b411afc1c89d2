import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

from ..errors import NotFoundError
from ..models import Template
from .resolver import resolve

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{([A-Za-z0-9_]+)\}\}")
_KEY_VALUE_RE = re.compile(r"^([A-Za-z0-9._\[\]]+)[ \t]*=[ \t]*(.*)$", re.MULTILINE)
_TRAILING_WS_RE = re.compile(r"[ \t]+$", re.MULTILINE)


@dataclass
class RenderResult:
    success: bool
    content: Optional[str] = None
    error: Optional[str] = None
    missing: List[str] = field(default_factory=list)


def placeholders(body: str) -> List[str]:
    """Distinct placeholder names in order of first appearance."""
    seen = []
    for name in PLACEHOLDER_RE.findall(body or ""):
        if name not in seen:
            seen.append(name)
    return seen


def format_config(content: str) -> str:
    """Device file format: LF endings, `key=value` without padding, no trailing blanks, one final newline."""
    content = content.replace("\r\n", "\n").replace("\r", "\n")
    content = _KEY_VALUE_RE.sub(r"\1=\2", content)
    content = _TRAILING_WS_RE.sub("", content)
    return content.rstrip() + "\n"


def render(body: str, variables: Mapping[str, Any]) -> RenderResult:
    """
    Substitute every `{{NAME}}` in one pass. Any placeholder without an
    entry in `variables` fails the render; unused variables are ignored.
    """
    missing = [name for name in placeholders(body) if name not in variables]
    if missing:
        logger.warning("Unresolved template placeholders: %s", ", ".join(missing))
        return RenderResult(
            success=False,
            error="Unresolved placeholders: " + ", ".join(missing),
            missing=missing,
        )

    content = PLACEHOLDER_RE.sub(lambda m: str(variables[m.group(1)]), body or "")
    return RenderResult(success=True, content=format_config(content))


def generate_config(template_id: int, supplied: Optional[Mapping[str, Any]] = None) -> RenderResult:
    """Resolve and render an active stored template."""
    template = Template.query.filter_by(id=template_id, is_active=True).first()
    if template is None:
        raise NotFoundError(f"Template {template_id} not found")
    return render(template.body, resolve(template.id, supplied))
