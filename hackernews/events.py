# hackernews-graphql -- hackernews/events.py
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

import asyncio
import copy
import logging
import threading
from collections import defaultdict


logger = logging.getLogger(__name__)

LINK_CREATED = 'link.created'
VOTE_CREATED = 'vote.created'


# ========== event bus ==========

# Mutations run in Django's request threads, while subscriptions live in an asyncio event loop
# (the ASGI server's, or a test's). So the registry is guarded by a plain lock, and a publisher
# never touches a listener's queue directly: it asks the listener's own loop to do the put, with
# call_soon_threadsafe(). That works the same whether the publisher is on the loop's thread or not.

_CLOSED = object()

# How many undelivered payloads a listener may hold before it is dropped as stalled.
MAX_PENDING = 100


class Listener(object):
    """One subscription's registration on the bus, and the stream of payloads delivered to it.

    A Listener is an async iterator that never ends by itself; it stops when it is closed, with
    close(), aclose() or by leaving an `async with` block. Closing always removes the
    registration.

    A listener whose reader falls more than max_pending payloads behind is closed: it yields what
    it already holds and then stops, and later events are not delivered to it.
    """

    def __init__(self, bus, kind, loop, max_pending=MAX_PENDING):
        self.bus = bus
        self.kind = kind
        self.closed = False
        self.max_pending = max_pending
        self._loop = loop
        # unbounded, so the closing sentinel always fits; the backlog limit is enforced in _put()
        self._queue = asyncio.Queue()

    def deliver(self, payload):
        try:
            self._loop.call_soon_threadsafe(self._put, payload)
        except RuntimeError:
            # the listener's loop is gone, so nobody can be waiting on it
            logger.debug('dropping %s listener with a closed event loop', self.kind)
            self.close()

    def _put(self, payload):
        # runs in the listener's loop
        if self.closed:
            return
        if self._queue.qsize() >= self.max_pending:
            logger.warning('dropping stalled %s listener with %d undelivered events',
                           self.kind, self._queue.qsize())
            self.close()
            return
        self._queue.put_nowait(payload)

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.bus.remove(self)
        try:
            # wake up a pending __anext__()
            self._loop.call_soon_threadsafe(self._queue.put_nowait, _CLOSED)
        except RuntimeError:
            pass

    async def aclose(self):
        self.close()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        payload = await self._queue.get()
        if payload is _CLOSED:
            raise StopAsyncIteration
        return payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()


class EventBus(object):
    """In-process publish/subscribe, keyed by event kind (e.g. 'link.created')."""

    def __init__(self, max_pending=MAX_PENDING):
        self._listeners = defaultdict(set)
        self._lock = threading.Lock()
        self.max_pending = max_pending

    def listen(self, kind):
        """Register a new Listener for `kind`. Must be called from within a running event loop,
        which is where the listener's payloads will be delivered.
        """
        listener = Listener(self, kind, asyncio.get_running_loop(), self.max_pending)
        with self._lock:
            self._listeners[kind].add(listener)
        logger.debug('registered %s listener', kind)
        return listener

    def remove(self, listener):
        with self._lock:
            listeners = self._listeners.get(listener.kind)
            if listeners is None or listener not in listeners:
                return
            listeners.discard(listener)
            if not listeners:
                del self._listeners[listener.kind]
        logger.debug('removed %s listener', listener.kind)

    def publish(self, kind, payload):
        """Deliver a copy of `payload` to every listener registered for `kind` right now.
        Returns the number of listeners it was delivered to.
        """
        with self._lock:
            listeners = list(self._listeners.get(kind, ()))
        for listener in listeners:
            listener.deliver(copy.copy(payload))
        logger.debug('published %s to %d listener(s)', kind, len(listeners))
        return len(listeners)

    def listener_count(self, kind):
        with self._lock:
            return len(self._listeners.get(kind, ()))


# The process-wide bus. It is shared by all requests, and is passed to resolvers through their
# request context rather than imported by them.
bus = EventBus()
