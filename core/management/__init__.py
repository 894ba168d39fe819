"""Management package for custom Django admin commands.

Commands here cover questionnaire maintenance: pushing a template into its
projects (``sync_questionnaire_template``) and clearing answers that no
longer match a question (``purge_orphaned_answers``).
"""
