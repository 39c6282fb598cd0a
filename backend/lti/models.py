import uuid

from django.db import models
from django.utils import timezone


class LtiPlatform(models.Model):
    """An LMS instance (Agilix Buzz) registered to launch this tool."""
    name = models.CharField(max_length=255)
    issuer = models.CharField(max_length=512)
    client_id = models.CharField(max_length=255)
    auth_login_url = models.URLField(max_length=1024)
    auth_token_url = models.URLField(max_length=1024)
    key_set_url = models.URLField(max_length=1024)
    deployment_ids = models.JSONField(default=list)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ('issuer', 'client_id')

    def __str__(self):
        return f"{self.name} ({self.issuer})"


class LtiKey(models.Model):
    """Tool signing key. The private key is stored encrypted, see lti.crypto."""
    key_id = models.CharField(max_length=255, unique=True)
    public_key = models.TextField()
    private_key = models.TextField()
    algorithm = models.CharField(max_length=16, default='RS256')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return self.key_id


class LtiLaunch(models.Model):
    """Audit record of a resource-link launch. `user_id` is the user's email."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_id = models.CharField(max_length=255, db_index=True)
    lms_user_id = models.CharField(max_length=255, blank=True)
    platform_id = models.CharField(max_length=512)
    deployment_id = models.CharField(max_length=255, blank=True)
    context_id = models.CharField(max_length=255, db_index=True)
    context_title = models.CharField(max_length=512, blank=True)
    resource_link_id = models.CharField(max_length=255, db_index=True)
    resource_link_title = models.CharField(max_length=512, blank=True)
    roles = models.JSONField(default=list)
    custom_params = models.JSONField(default=dict, blank=True)
    launch_time = models.DateTimeField(default=timezone.now)
    user_name = models.CharField(max_length=255, blank=True)
    user_email = models.EmailField(blank=True)
    given_name = models.CharField(max_length=255, blank=True)
    family_name = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ['-launch_time']

    def __str__(self):
        return f"Launch {self.id} by {self.user_id}"


class UserSession(models.Model):
    """Short-lived session handed to the front-end after a launch."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_id = models.CharField(max_length=255, db_index=True)
    user_email = models.EmailField(blank=True)
    launch = models.ForeignKey(LtiLaunch, on_delete=models.CASCADE, related_name='sessions')
    platform_id = models.CharField(max_length=512)
    context_id = models.CharField(max_length=255)
    resource_link_id = models.CharField(max_length=255)
    roles = models.JSONField(default=list)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField()

    # Lets a session stand in for request.user in DRF
    is_authenticated = True

    def __str__(self):
        return f"Session {self.id} for {self.user_id}"

    @property
    def is_expired(self):
        return self.expires_at < timezone.now()

    @property
    def is_instructor(self):
        from .services import has_staff_role
        return has_staff_role(self.roles)
