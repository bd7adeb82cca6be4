from django.urls import path
from django.views.decorators.csrf import csrf_exempt

from hackernews.context import GraphQLView


urlpatterns = [
    path('graphql/', csrf_exempt(GraphQLView.as_view(graphiql=True))),
]
