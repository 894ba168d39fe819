"""Service layer for the questionnaire template/instance workflow."""
