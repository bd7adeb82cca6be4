import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'hackernews.settings')

# set up Django before anything imports models
django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from django.urls import path  # noqa: E402

from hackernews.consumers import GraphQLSubscriptionConsumer  # noqa: E402


application = ProtocolTypeRouter({
    'http': django_asgi_app,
    'websocket': URLRouter([
        path('graphql/', GraphQLSubscriptionConsumer.as_asgi()),
    ]),
})
