from django.contrib import admin
from django.urls import path, include

from lti.views import HealthView

urlpatterns = [
    path('admin/', admin.site.urls),
    path('health', HealthView.as_view(), name='health'),
    path('lti/', include('lti.urls')),
    path('', include('surveys.urls')),
    path('grades/', include('grade_passback.urls')),
]
