# hackernews-graphql -- hackernews/context.py
#
# Copyright © 2017 Sean Bolton.
#
# Permission is hereby granted, free of charge, to any person obtaining
# a copy of this software and associated documentation files (the
# "Software"), to deal in the Software without restriction, including
# without limitation the rights to use, copy, modify, merge, publish,
# distribute, sublicense, and/or sell copies of the Software, and to
# permit persons to whom the Software is furnished to do so, subject to
# the following conditions:
#
# The above copyright notice and this permission notice shall be
# included in all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND,
# EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF
# MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND
# NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS BE
# LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION
# OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION
# WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.

from django.utils.datastructures import CaseInsensitiveMapping
from graphene_django.views import GraphQLView as BaseGraphQLView

from hackernews import events
from hackernews.store import DjangoStore
from users.auth import TokenService, get_user_id


# By default graphene-django hands resolvers the Django HttpRequest as info.context, and resolvers
# help themselves to whatever they find on it. Here the context is a RequestContext instead, built
# once per operation, with just the things a resolver is allowed to use.

class RequestContext(object):
    """What a resolver gets to work with while serving one operation.

    store   -- the data access facade
    bus     -- the event bus that mutations publish to and subscriptions listen on
    tokens  -- the bearer token service
    """

    def __init__(self, store, bus, tokens, headers=None):
        self.store = store
        self.bus = bus
        self.tokens = tokens
        self._headers = CaseInsensitiveMapping(headers or {})

    @classmethod
    def create(cls, headers=None, store=None, bus=None, tokens=None):
        return cls(
            store=store if store is not None else DjangoStore(),
            bus=bus if bus is not None else events.bus,
            tokens=tokens if tokens is not None else TokenService.from_settings(),
            headers=headers,
        )

    @classmethod
    def from_request(cls, request):
        return cls.create(headers=request.headers)

    def header(self, name):
        """Return a raw request header value (case-insensitive name), or None."""
        return self._headers.get(name)

    def caller_id(self):
        """Return an Outcome holding the authenticated caller's user id."""
        return get_user_id(self)


class GraphQLView(BaseGraphQLView):
    def get_context(self, request):
        return RequestContext.from_request(request)
