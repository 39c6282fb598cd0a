from rest_framework.permissions import BasePermission


class IsInstructor(BasePermission):
    message = 'Instructor role required'

    def has_permission(self, request, view):
        return bool(request.user and getattr(request.user, 'is_instructor', False))
