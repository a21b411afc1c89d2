from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional, Protocol

from flask import session

WIZARD_SESSION_KEY = "wizard_data"


@dataclass
class WizardSession:
    device_id: Optional[int] = None
    device_type_id: Optional[int] = None
    template_id: Optional[int] = None
    variables: Dict[str, str] = field(default_factory=dict)
    config_content: str = ""
    customer_id: Optional[int] = None
    config_version_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WizardSession":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


class SessionStore(Protocol):
    def get(self) -> Optional[WizardSession]: ...

    def set(self, ws: WizardSession) -> None: ...

    def clear(self) -> None: ...


class FlaskSessionStore:
    """Keeps the wizard blob in Flask's per-browser session."""

    def __init__(self, key: str = WIZARD_SESSION_KEY):
        self.key = key

    def get(self) -> Optional[WizardSession]:
        data = session.get(self.key)
        if data is None:
            return None
        return WizardSession.from_dict(data)

    def set(self, ws: WizardSession) -> None:
        session[self.key] = ws.to_dict()

    def clear(self) -> None:
        session.pop(self.key, None)
