from rest_framework import serializers

from .models import UserSession


class UserSessionSerializer(serializers.ModelSerializer):
    sessionId = serializers.UUIDField(source='id', read_only=True)
    userId = serializers.CharField(source='user_id', read_only=True)
    contextId = serializers.CharField(source='context_id', read_only=True)
    resourceLinkId = serializers.CharField(source='resource_link_id', read_only=True)
    isActive = serializers.BooleanField(source='is_active', read_only=True)
    expiresAt = serializers.DateTimeField(source='expires_at', read_only=True)

    class Meta:
        model = UserSession
        fields = ['sessionId', 'userId', 'contextId', 'resourceLinkId', 'roles', 'isActive', 'expiresAt']
