"""Django admin configuration for core models."""

from django.contrib import admin
from django.contrib.auth.models import User
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import ActivityLog, Profile, Project, ProjectQuestionnaire, QuestionnaireTemplate


class ProfileInline(admin.StackedInline):
    """Allows editing of the Profile model on the same page as the User model."""
    model = Profile
    can_delete = False
    verbose_name_plural = 'profile'


class UserAdmin(BaseUserAdmin):
    """Extend the default User admin to include Profile fields."""
    inlines = (ProfileInline,)


class ProjectQuestionnaireInline(admin.TabularInline):
    model = ProjectQuestionnaire
    fields = ('title', 'template', 'is_customized', 'synced_at', 'position')
    readonly_fields = ('synced_at',)
    extra = 0


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ('name', 'designer', 'created_at')
    inlines = (ProjectQuestionnaireInline,)


@admin.register(QuestionnaireTemplate)
class QuestionnaireTemplateAdmin(admin.ModelAdmin):
    list_display = ('title', 'owner', 'room_type', 'updated_at')


admin.site.unregister(User)
admin.site.register(User, UserAdmin)
admin.site.register(ProjectQuestionnaire)
admin.site.register(ActivityLog)
