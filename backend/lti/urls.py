from django.urls import path

from . import views

urlpatterns = [
    path('login', views.login, name='lti-login'),
    path('launch', views.launch, name='lti-launch'),
    path('keys', views.keys, name='lti-keys'),
    path('help', views.HelpView.as_view(), name='lti-help'),
    path('app', views.AppView.as_view(), name='lti-app'),
    path('session/<str:session_id>', views.SessionDetailView.as_view(), name='lti-session'),
]
