"""Application models package."""

from canteen.models.app_setting import AppSetting
from canteen.models.audit_log import AuditLog
from canteen.models.blacklist import BlacklistEntry
from canteen.models.holiday import Holiday
from canteen.models.order import Order
from canteen.models.ordering_setting import OrderingSetting
from canteen.models.shift import Shift
from canteen.models.user import ELEVATED_ROLES, USER_ROLES, User

__all__ = [
    "AppSetting",
    "AuditLog",
    "BlacklistEntry",
    "Holiday",
    "Order",
    "OrderingSetting",
    "Shift",
    "User",
    "ELEVATED_ROLES",
    "USER_ROLES",
]
