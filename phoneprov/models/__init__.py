from .user import User, Role, Permission
from .device import DeviceType, Customer, Device
from .template import Template, VariableDefinition, GlobalVariable
from .config_version import (
    ConfigTarget, ConfigScope, ConfigVersion, DeviceConfigAssignment,
    ConfigDownload, ConfigCleanupLog, TargetKind
)
from .provisioning import ProvisionLog, ProvisionStage
from .audit import AuditLog  # noqa: F401
