# hackernews-graphql -- hackernews/tests.py
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

from asgiref.sync import sync_to_async
from channels.testing import WebsocketCommunicator
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from graphql import GraphQLError

from hackernews.consumers import SUBPROTOCOL, GraphQLSubscriptionConsumer
from hackernews.context import RequestContext
from hackernews.errors import ErrorKind, Outcome, attempt
from hackernews.events import LINK_CREATED, VOTE_CREATED, EventBus
from hackernews.store import (AsyncStore, ConstraintViolation, DjangoStore, DuplicateRecord,
                              RecordNotFound, StorageError)
from links.models import LinkModel, VoteModel
from users.auth import TokenService
from users.tests import TEST_PASSWORD_HASHERS, create_test_user


# ========== event bus tests ==========

class EventBusTests(SimpleTestCase):
    def setUp(self):
        self.bus = EventBus()

    async def next_payload(self, listener, timeout=1):
        return await asyncio.wait_for(listener.__anext__(), timeout=timeout)

    async def test_delivery(self):
        """a listener receives what is published after it registers, in order"""
        listener = self.bus.listen(LINK_CREATED)
        self.assertEqual(self.bus.publish(LINK_CREATED, 'one'), 1)
        self.assertEqual(self.bus.publish(LINK_CREATED, 'two'), 1)
        self.assertEqual(await self.next_payload(listener), 'one')
        self.assertEqual(await self.next_payload(listener), 'two')
        await listener.aclose()

    async def test_no_replay(self):
        """events published before a listener registers are not delivered to it"""
        self.assertEqual(self.bus.publish(LINK_CREATED, 'early'), 0)
        listener = self.bus.listen(LINK_CREATED)
        with self.assertRaises(asyncio.TimeoutError):
            await self.next_payload(listener, timeout=0.05)
        listener.close()

    async def test_kinds_are_separate(self):
        links = self.bus.listen(LINK_CREATED)
        votes = self.bus.listen(VOTE_CREATED)
        self.bus.publish(VOTE_CREATED, 'vote')
        self.assertEqual(await self.next_payload(votes), 'vote')
        with self.assertRaises(asyncio.TimeoutError):
            await self.next_payload(links, timeout=0.05)
        links.close()
        votes.close()

    async def test_every_listener_gets_a_copy(self):
        first = self.bus.listen(LINK_CREATED)
        second = self.bus.listen(LINK_CREATED)
        payload = {'id': 'abc'}
        self.assertEqual(self.bus.publish(LINK_CREATED, payload), 2)
        got_first = await self.next_payload(first)
        got_second = await self.next_payload(second)
        self.assertEqual(got_first, payload)
        self.assertEqual(got_second, payload)
        self.assertIsNot(got_first, payload)
        self.assertIsNot(got_first, got_second)
        first.close()
        second.close()

    async def test_close_deregisters(self):
        listener = self.bus.listen(LINK_CREATED)
        self.assertEqual(self.bus.listener_count(LINK_CREATED), 1)
        listener.close()
        listener.close()  # closing twice is harmless
        self.assertEqual(self.bus.listener_count(LINK_CREATED), 0)
        self.assertEqual(self.bus.publish(LINK_CREATED, 'late'), 0)
        with self.assertRaises(StopAsyncIteration):
            await self.next_payload(listener)

    async def test_close_wakes_pending_reader(self):
        listener = self.bus.listen(LINK_CREATED)
        reader = asyncio.ensure_future(self.next_payload(listener))
        await asyncio.sleep(0)
        listener.close()
        with self.assertRaises(StopAsyncIteration):
            await reader

    async def test_async_with(self):
        async with self.bus.listen(LINK_CREATED) as listener:
            self.assertEqual(self.bus.listener_count(LINK_CREATED), 1)
            self.bus.publish(LINK_CREATED, 'inside')
            self.assertEqual(await self.next_payload(listener), 'inside')
        self.assertEqual(self.bus.listener_count(LINK_CREATED), 0)

    async def test_async_for(self):
        listener = self.bus.listen(LINK_CREATED)
        for payload in ('a', 'b', 'c'):
            self.bus.publish(LINK_CREATED, payload)
        received = []
        async for payload in listener:
            received.append(payload)
            if len(received) == 3:
                listener.close()
        self.assertEqual(received, ['a', 'b', 'c'])

    async def test_publish_from_another_thread(self):
        """mutations publish from worker threads; delivery still lands in the listener's loop"""
        listener = self.bus.listen(LINK_CREATED)
        count = await asyncio.get_running_loop().run_in_executor(
            None, self.bus.publish, LINK_CREATED, 'threaded')
        self.assertEqual(count, 1)
        self.assertEqual(await self.next_payload(listener), 'threaded')
        listener.close()

    async def test_publish_snapshot(self):
        """a listener closed by an earlier delivery doesn't disturb the rest of a publish"""
        class ClosingListener(object):
            kind = LINK_CREATED

            def __init__(self, bus):
                self.bus = bus

            def deliver(self, payload):
                self.bus.remove(self)

        closer = ClosingListener(self.bus)
        self.bus._listeners[LINK_CREATED].add(closer)
        listener = self.bus.listen(LINK_CREATED)
        self.assertEqual(self.bus.publish(LINK_CREATED, 'x'), 2)
        self.assertEqual(await self.next_payload(listener), 'x')
        self.assertEqual(self.bus.listener_count(LINK_CREATED), 1)
        listener.close()

    async def test_stalled_listener_is_dropped(self):
        """a reader that falls too far behind keeps what it has, then its stream ends"""
        bus = EventBus(max_pending=2)
        stalled = bus.listen(LINK_CREATED)
        for payload in ('a', 'b', 'c', 'd'):
            bus.publish(LINK_CREATED, payload)
        self.assertEqual(await self.next_payload(stalled), 'a')
        self.assertEqual(await self.next_payload(stalled), 'b')
        with self.assertRaises(StopAsyncIteration):
            await self.next_payload(stalled)
        self.assertTrue(stalled.closed)
        self.assertEqual(bus.listener_count(LINK_CREATED), 0)
        self.assertEqual(bus.publish(LINK_CREATED, 'e'), 0)


# ========== outcome tests ==========

class OutcomeTests(SimpleTestCase):
    def test_success(self):
        outcome = Outcome.success(42)
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.result(), 42)
        self.assertEqual(outcome.then(lambda v: Outcome.success(v + 1)).result(), 43)

    def test_failure_short_circuits(self):
        steps = []

        def step(value):
            steps.append(value)
            return Outcome.success(value)

        outcome = Outcome.failure(ErrorKind.NOT_AUTHENTICATED).then(step).then(step)
        self.assertFalse(outcome.ok)
        self.assertEqual(steps, [])
        error = outcome.result()
        self.assertIsInstance(error, GraphQLError)
        self.assertEqual(error.message, 'Not authenticated')
        self.assertEqual(error.extensions, {'code': 'NOT_AUTHENTICATED'})

    def test_custom_message(self):
        error = Outcome.failure(ErrorKind.NOT_FOUND, 'No link found for id: x').result()
        self.assertEqual(error.message, 'No link found for id: x')
        self.assertEqual(error.extensions, {'code': 'NOT_FOUND'})

    def test_login_failures_share_a_code(self):
        self.assertEqual(ErrorKind.NO_SUCH_USER.code, 'INVALID_CREDENTIALS')
        self.assertEqual(ErrorKind.INVALID_CREDENTIALS.code, 'INVALID_CREDENTIALS')
        self.assertNotEqual(Outcome.failure(ErrorKind.NO_SUCH_USER).message,
                            Outcome.failure(ErrorKind.INVALID_CREDENTIALS).message)

    def test_attempt(self):
        def raising(exc):
            def call():
                raise exc
            return call

        self.assertEqual(attempt(lambda: 'value').value, 'value')
        self.assertEqual(attempt(raising(RecordNotFound('x'))).error, ErrorKind.NOT_FOUND)
        self.assertEqual(attempt(raising(StorageError('x'))).error, ErrorKind.STORAGE_ERROR)
        self.assertEqual(attempt(raising(ConstraintViolation('x'))).error,
                         ErrorKind.STORAGE_ERROR)
        outcome = attempt(raising(DuplicateRecord('x')), conflict=ErrorKind.DUPLICATE_EMAIL)
        self.assertEqual((outcome.error, outcome.message),
                         (ErrorKind.DUPLICATE_EMAIL,
                          'A user with that email address already exists!'))
        # only a clash on a unique key is the caller's conflict; anything else is a storage failure
        outcome = attempt(raising(ConstraintViolation('x')), conflict=ErrorKind.DUPLICATE_VOTE)
        self.assertEqual(outcome.error, ErrorKind.STORAGE_ERROR)

    def test_attempt_lets_bugs_through(self):
        with self.assertRaises(ZeroDivisionError):
            attempt(lambda: 1 / 0)


# ========== request context tests ==========

class RequestContextTests(SimpleTestCase):
    def test_headers_are_case_insensitive(self):
        context = RequestContext.create(headers={'Authorization': 'Bearer x'}, bus=EventBus())
        self.assertEqual(context.header('authorization'), 'Bearer x')
        self.assertEqual(context.header('AUTHORIZATION'), 'Bearer x')
        self.assertIsNone(context.header('X-Other'))

    def test_defaults(self):
        context = RequestContext.create()
        self.assertIsInstance(context.store, DjangoStore)
        self.assertIsInstance(context.tokens, TokenService)
        self.assertIsNone(context.header('Authorization'))

    def test_caller_id(self):
        tokens = TokenService('sekrit')
        context = RequestContext.create(
            headers={'Authorization': 'Bearer ' + tokens.issue('user-1')}, tokens=tokens)
        self.assertEqual(context.caller_id().value, 'user-1')
        self.assertEqual(RequestContext.create(tokens=tokens).caller_id().error,
                         ErrorKind.NOT_AUTHENTICATED)


# ========== store tests ==========

@override_settings(PASSWORD_HASHERS=TEST_PASSWORD_HASHERS)
class DjangoStoreTests(TestCase):
    def setUp(self):
        self.store = DjangoStore()
        self.user = create_test_user()
        for i in range(4):
            LinkModel.objects.create(description='Link {}'.format(i), url='http://a.com',
                                     posted_by=self.user)

    def descriptions(self, links):
        return [link.description for link in links]

    def test_list_window(self):
        links = self.store.links
        self.assertEqual(len(links.list()), 4)
        self.assertEqual(self.descriptions(links.list(skip=1, first=2, order_by='-description')),
                         ['Link 2', 'Link 1'])
        self.assertEqual(self.descriptions(links.list(skip=-3, first=1, order_by='description')),
                         ['Link 0'])
        self.assertEqual(list(links.list(first=-1)), [])
        self.assertEqual(list(links.list(skip=10)), [])

    def test_filters(self):
        self.assertEqual(self.store.links.count({'text': 'Link 3'}), 1)
        self.assertEqual(self.store.links.count({'text': 'link'}), 0)
        self.assertEqual(self.store.links.count({'posted_by': self.user.pk}), 4)
        self.assertTrue(self.store.users.exists({'email': 'test@user.com'}))
        self.assertFalse(self.store.users.exists({'email': 'nobody@user.com'}))

    def test_get(self):
        self.assertEqual(self.store.users.get(email='test@user.com'), self.user)
        self.assertIsNone(self.store.users.get(email='nobody@user.com'))
        self.assertIsNone(self.store.links.get(pk='no-such-link'))

    def test_create_conflict(self):
        with self.assertRaises(DuplicateRecord):
            self.store.users.create(name='Again', email='test@user.com', password='x')
        # the failed write didn't spoil the transaction
        self.assertEqual(self.store.users.count(), 1)

    def test_update_and_delete_missing(self):
        with self.assertRaises(RecordNotFound):
            self.store.links.update('no-such-link', url='http://b.com')
        with self.assertRaises(RecordNotFound):
            self.store.links.delete('no-such-link')

    def test_update(self):
        link = self.store.links.list(first=1)[0]
        updated = self.store.links.update(link.pk, url='http://b.com')
        self.assertEqual(updated.url, 'http://b.com')
        self.assertEqual(LinkModel.objects.get(pk=link.pk).url, 'http://b.com')

    def test_delete_keeps_id(self):
        link = self.store.links.list(first=1)[0]
        deleted = self.store.links.delete(link.pk)
        self.assertEqual(deleted.pk, link.pk)
        self.assertEqual(self.store.links.count(), 3)

    def test_related(self):
        link = self.store.links.list(first=1)[0]
        VoteModel.objects.create(user=self.user, link=link)
        self.assertEqual(self.store.links.related(link.pk, 'posted_by'), self.user)
        self.assertEqual(len(self.store.links.related(link.pk, 'votes')), 1)
        self.assertEqual(len(self.store.users.related(self.user.pk, 'links')), 4)

    def test_related_missing_parent(self):
        self.assertIsNone(self.store.links.related('no-such-link', 'posted_by'))
        self.assertEqual(list(self.store.links.related('no-such-link', 'votes')), [])


@override_settings(PASSWORD_HASHERS=TEST_PASSWORD_HASHERS)
class DjangoStoreCommitTests(TransactionTestCase):
    """Writes that only fail when their transaction commits, as SQLite's deferred foreign keys do.
    TestCase never commits, so these need a TransactionTestCase.
    """
    def setUp(self):
        self.store = DjangoStore()
        self.user = create_test_user()
        self.link = LinkModel.objects.create(description='Test', url='http://a.com')

    def test_missing_reference_is_not_a_duplicate(self):
        with self.assertRaises(ConstraintViolation) as cm:
            self.store.votes.create(user_id='no-such-user', link_id=self.link.pk)
        self.assertNotIsInstance(cm.exception, DuplicateRecord)
        self.assertEqual(VoteModel.objects.count(), 0)

    def test_duplicate_vote(self):
        self.store.votes.create(user_id=self.user.pk, link_id=self.link.pk)
        with self.assertRaises(DuplicateRecord):
            self.store.votes.create(user_id=self.user.pk, link_id=self.link.pk)
        self.assertEqual(VoteModel.objects.count(), 1)


@override_settings(PASSWORD_HASHERS=TEST_PASSWORD_HASHERS)
class AsyncStoreTests(TestCase):
    async def test_async_store(self):
        """calls return awaitables, and lazy query results arrive as lists"""
        user = await sync_to_async(create_test_user)()
        store = AsyncStore(DjangoStore())
        link = await store.links.create(description='Async', url='http://a.com',
                                        posted_by_id=user.pk)
        links = await store.links.list()
        self.assertEqual(links, [link])
        self.assertEqual(await store.links.related(link.pk, 'posted_by'), user)
        self.assertEqual(await store.users.related(user.pk, 'links'), [link])
        with self.assertRaises(RecordNotFound):
            await store.links.delete('no-such-link')

    def test_only_store_methods(self):
        store = AsyncStore(DjangoStore())
        with self.assertRaises(AttributeError):
            store.links.model


# ========== websocket consumer tests ==========

class ConsumerTests(SimpleTestCase):
    def setUp(self):
        self.bus = EventBus()
        self.application = GraphQLSubscriptionConsumer.as_asgi(bus=self.bus)

    async def connect(self, init=True):
        communicator = WebsocketCommunicator(self.application, '/graphql/',
                                             subprotocols=[SUBPROTOCOL])
        connected, subprotocol = await communicator.connect()
        self.assertTrue(connected)
        self.assertEqual(subprotocol, SUBPROTOCOL)
        if init:
            await communicator.send_json_to({'type': 'connection_init', 'payload': {}})
            self.assertEqual(await communicator.receive_json_from(),
                             {'type': 'connection_ack'})
        return communicator

    async def wait_for_listeners(self, kind, count):
        async def poll():
            while self.bus.listener_count(kind) != count:
                await asyncio.sleep(0.01)
        await asyncio.wait_for(poll(), timeout=2)

    async def subscribe_new_link(self, communicator):
        await communicator.send_json_to({
            'type': 'subscribe',
            'id': '1',
            'payload': {'query': 'subscription { newLink { id url description } }'},
        })
        await self.wait_for_listeners(LINK_CREATED, 1)

    async def test_ping(self):
        communicator = await self.connect()
        await communicator.send_json_to({'type': 'ping'})
        self.assertEqual(await communicator.receive_json_from(), {'type': 'pong'})
        await communicator.disconnect()

    async def test_query(self):
        communicator = await self.connect()
        await communicator.send_json_to({'type': 'subscribe', 'id': 'q',
                                         'payload': {'query': '{ info }'}})
        self.assertEqual(await communicator.receive_json_from(), {
            'type': 'next',
            'id': 'q',
            'payload': {'data': {'info': 'This is the API of a Hackernews Clone'}},
        })
        self.assertEqual(await communicator.receive_json_from(), {'type': 'complete', 'id': 'q'})
        await communicator.disconnect()

    async def test_subscription(self):
        communicator = await self.connect()
        await self.subscribe_new_link(communicator)
        link = LinkModel(id='abc', url='http://a.com', description='Pushed')
        self.assertEqual(self.bus.publish(LINK_CREATED, link), 1)
        self.assertEqual(await communicator.receive_json_from(), {
            'type': 'next',
            'id': '1',
            'payload': {'data': {'newLink': {'id': 'abc', 'url': 'http://a.com',
                                             'description': 'Pushed'}}},
        })
        # the client is done: the listener goes away
        await communicator.send_json_to({'type': 'complete', 'id': '1'})
        await self.wait_for_listeners(LINK_CREATED, 0)
        self.assertTrue(await communicator.receive_nothing())
        await communicator.disconnect()

    async def test_disconnect_releases_listeners(self):
        communicator = await self.connect()
        await self.subscribe_new_link(communicator)
        await communicator.disconnect()
        self.assertEqual(self.bus.listener_count(LINK_CREATED), 0)

    async def test_bad_subscription(self):
        communicator = await self.connect()
        await communicator.send_json_to({
            'type': 'subscribe',
            'id': '2',
            'payload': {'query': 'subscription { noSuchField }'},
        })
        message = await communicator.receive_json_from()
        self.assertEqual((message['type'], message['id']), ('error', '2'))
        self.assertTrue(message['payload'])
        self.assertEqual(self.bus.listener_count(LINK_CREATED), 0)
        await communicator.disconnect()

    async def test_subscribe_before_init(self):
        communicator = await self.connect(init=False)
        await communicator.send_json_to({
            'type': 'subscribe',
            'id': '1',
            'payload': {'query': 'subscription { newLink { id } }'},
        })
        output = await communicator.receive_output()
        self.assertEqual((output['type'], output['code']), ('websocket.close', 4401))
        self.assertEqual(self.bus.listener_count(LINK_CREATED), 0)
