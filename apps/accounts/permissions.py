from rest_framework.permissions import BasePermission


class IsAdminRole(BasePermission):
    """
    Admin dashboards and order/payment transitions.
    """
    message = "Admin access required."

    def has_permission(self, request, view):
        return bool(
            request.user and
            request.user.is_authenticated and
            request.user.is_admin
        )
