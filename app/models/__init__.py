from .user import User
from .link import Link
from .activity import Activity
from .withdrawal import WithdrawalRequest

__all__ = ["User", "Link", "Activity", "WithdrawalRequest"]
