from typing import Dict, Optional


class ProvisioningError(Exception):
    """Base class for errors raised by the provisioning core."""


class ValidationError(ProvisioningError):
    """User-correctable input problem; `errors` maps field name to message."""

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.errors = dict(errors or {})


class NotFoundError(ProvisioningError):
    pass


class PersistenceError(ProvisioningError):
    pass
