"""Django project package for StudioDesk."""
