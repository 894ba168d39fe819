"""URL declarations for the core application.

This module maps the questionnaire API to its view functions: template
management and synchronisation for designers, and the per-project
questionnaire instances shared by designers and their clients.
"""

from django.urls import path

from . import views

urlpatterns = [
    # Questionnaire templates (designer only)
    path('api/templates/', views.template_collection, name='template_collection'),
    path('api/templates/<int:template_id>/', views.template_detail, name='template_detail'),
    path('api/templates/<int:template_id>/sync/', views.template_sync, name='template_sync'),
    # Project questionnaire instances
    path('api/projects/<int:project_id>/questionnaires/', views.project_questionnaires, name='project_questionnaires'),
    path(
        'api/projects/<int:project_id>/questionnaires/assign/',
        views.project_questionnaire_assign,
        name='project_questionnaire_assign',
    ),
    path(
        'api/projects/<int:project_id>/questionnaires/answers/',
        views.project_questionnaire_answers,
        name='project_questionnaire_answers',
    ),
    path(
        'api/projects/<int:project_id>/questionnaires/<int:instance_id>/',
        views.project_questionnaire_detail,
        name='project_questionnaire_detail',
    ),
]
