"""WSGI config for the StudioDesk project."""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'studiodesk.settings')

application = get_wsgi_application()
