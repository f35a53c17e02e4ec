"""
ASGI config for dreamx_project.

HTTP requests go to Django; websocket connections go to the channel consumers
in api.routing.
"""

import os
from django.core.asgi import get_asgi_application
from channels.routing import ProtocolTypeRouter, URLRouter
from channels.security.websocket import AllowedHostsOriginValidator

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'dreamx_project.settings')

# Initialize Django ASGI application early to ensure the AppRegistry
# is populated before importing code that may import ORM models.
django_asgi_app = get_asgi_application()

import api.routing  # noqa: E402
from django.conf import settings  # noqa: E402

# Consumers authenticate with a JWT passed in the query string
websocket_router = URLRouter(api.routing.websocket_urlpatterns)

if settings.DEBUG:
    application = ProtocolTypeRouter({
        "http": django_asgi_app,
        "websocket": websocket_router,
    })
else:
    application = ProtocolTypeRouter({
        "http": django_asgi_app,
        "websocket": AllowedHostsOriginValidator(websocket_router),
    })
