"""
WSGI config for booking_platform project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'booking_platform.settings')

application = get_wsgi_application()
