from deployhub.models.deployment import Deployment
from deployhub.models.user import User, UserPlan

__all__ = [
    "Deployment",
    "User",
    "UserPlan",
]
