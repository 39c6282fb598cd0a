from django.contrib import admin

from .models import LtiPlatform, LtiKey, LtiLaunch, UserSession


@admin.register(LtiPlatform)
class LtiPlatformAdmin(admin.ModelAdmin):
    list_display = ['name', 'issuer', 'client_id', 'is_active', 'created_at']
    list_filter = ['is_active']
    search_fields = ['name', 'issuer', 'client_id']


@admin.register(LtiKey)
class LtiKeyAdmin(admin.ModelAdmin):
    list_display = ['key_id', 'algorithm', 'is_active', 'created_at']
    list_filter = ['is_active']
    # Never render the encrypted private key in the change form
    exclude = ['private_key']
    readonly_fields = ['key_id', 'algorithm', 'public_key', 'created_at']

    def has_add_permission(self, request):
        # Keys are created with `manage.py generate_lti_key`
        return False


@admin.register(LtiLaunch)
class LtiLaunchAdmin(admin.ModelAdmin):
    list_display = ['user_id', 'context_id', 'resource_link_id', 'launch_time']
    list_filter = ['platform_id']
    search_fields = ['user_id', 'user_name', 'context_id', 'resource_link_id']
    readonly_fields = ['id', 'launch_time']


@admin.register(UserSession)
class UserSessionAdmin(admin.ModelAdmin):
    list_display = ['user_id', 'context_id', 'is_active', 'created_at', 'expires_at']
    list_filter = ['is_active']
    search_fields = ['user_id', 'context_id']
    readonly_fields = ['id', 'created_at']
