from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from operator_core.permissions import HasOperatorRole, IsOperator

ALLOWED_OPERATOR_ROLES = (
    "operator_support",
    "operator_moderator",
    "operator_finance",
    "operator_admin",
)


class OperatorThrottleMixin:
    throttle_scope = "operator"
    throttle_classes = [ScopedRateThrottle]


class OperatorAPIView(OperatorThrottleMixin, APIView):
    """Base view for operator endpoints: staff in an operator group, scoped throttling."""

    permission_classes = [IsOperator, HasOperatorRole.with_roles(ALLOWED_OPERATOR_ROLES)]
