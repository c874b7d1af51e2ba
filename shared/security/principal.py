"""
The acting principal is passed explicitly into every orchestrator call.
Nothing in the fulfillment core reads the caller from ambient/global state.
"""
import enum
from dataclasses import dataclass


class Role(str, enum.Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    DRIVER = "driver"
    FLEET_MANAGER = "fleet_manager"
    PLATFORM_ADMIN = "platform_admin"


@dataclass(frozen=True)
class Principal:
    id: int
    role: str
