from django.urls import path

from . import views

urlpatterns = [
    path('survey/<str:survey_id>', views.SurveyGradesView.as_view(), name='grades-survey'),
    path('user/<str:user_id>', views.UserGradesView.as_view(), name='grades-user'),
    path('process-completion', views.ProcessCompletionView.as_view(), name='grades-process-completion'),
    path('passback/<str:grade_id>', views.PassbackView.as_view(), name='grades-passback'),
    path('bulk-passback/<str:survey_id>', views.BulkPassbackView.as_view(), name='grades-bulk-passback'),
    path('submission-status/<str:survey_id>', views.SubmissionStatusView.as_view(),
         name='grades-submission-status'),
]
