# hackernews-graphql -- links/tests.py
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
import datetime

from asgiref.sync import sync_to_async
from django.test import TestCase, TransactionTestCase, override_settings

import graphene

from hackernews.events import LINK_CREATED, VOTE_CREATED, EventBus
from hackernews.schema import Mutation, Query, Subscription
from hackernews.store import AsyncStore, DjangoStore, StorageError, Store
from hackernews.utils import format_graphql_errors
from links.models import LinkModel, VoteModel
from users.auth import TokenService
from users.tests import TEST_PASSWORD_HASHERS, create_test_user, error_codes, make_context


# ========== test doubles ==========

class RecordingBus(EventBus):
    """An EventBus that remembers everything published to it."""
    def __init__(self):
        super().__init__()
        self.published = []

    def publish(self, kind, payload):
        self.published.append((kind, payload))
        return super().publish(kind, payload)


class BrokenEntityStore(object):
    """Every call fails the way a dead database would."""
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise StorageError('database is on fire')
        return fail


class BrokenStore(Store):
    def __init__(self):
        super().__init__(users=BrokenEntityStore(), links=BrokenEntityStore(),
                         votes=BrokenEntityStore())


# ========== GraphQL schema general tests ==========

class RootTests(TestCase):
    def test_root_query(self):
        """Make sure the root query is 'Query'.

        This test is pretty redundant, given that every other query in this file will fail if this
        is not the case, but it's a nice simple example of testing query execution.
        """
        query = '''
          query RootQueryQuery {
            __schema {
              queryType {
                name  # returns the type of the root query
              }
            }
          }
        '''
        expected = {
            '__schema': {
                'queryType': {
                    'name': 'Query'
                }
            }
        }
        schema = graphene.Schema(query=Query)
        result = schema.execute(query)
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        assert result.data == expected, '\n'+repr(expected)+'\n'+repr(result.data)

    def test_info(self):
        schema = graphene.Schema(query=Query)
        result = schema.execute('{ info }')
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertEqual(result.data, {'info': 'This is the API of a Hackernews Clone'})


class SchemaShapeTests(TestCase):
    def fields_of(self, type_name):
        query = '''
          query TypeFields($name: String!) {
            __type(name: $name) {
              fields {
                name
                type { kind name ofType { name } }
              }
            }
          }
        '''
        schema = graphene.Schema(query=Query, mutation=Mutation, subscription=Subscription)
        result = schema.execute(query, variable_values={'name': type_name})
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        return {f['name']: f['type'] for f in result.data['__type']['fields']}

    def test_mutation_fields(self):
        """Check the Mutation type has the operations the front end uses, with the right
        nullability.
        """
        fields = self.fields_of('Mutation')
        for name in ('post', 'updateLink', 'deleteLink'):
            self.assertEqual(fields[name], {'kind': 'NON_NULL', 'name': None,
                                            'ofType': {'name': 'Link'}})
        for name in ('signup', 'login'):
            self.assertEqual(fields[name], {'kind': 'OBJECT', 'name': 'AuthPayload',
                                            'ofType': None})
        self.assertEqual(fields['vote'], {'kind': 'OBJECT', 'name': 'Vote', 'ofType': None})

    def test_query_and_subscription_fields(self):
        fields = self.fields_of('Query')
        self.assertEqual(fields['feed'], {'kind': 'NON_NULL', 'name': None,
                                          'ofType': {'name': 'Feed'}})
        self.assertEqual(fields['link'], {'kind': 'OBJECT', 'name': 'Link', 'ofType': None})
        fields = self.fields_of('Subscription')
        self.assertEqual(fields['newLink'], {'kind': 'OBJECT', 'name': 'Link', 'ofType': None})
        self.assertEqual(fields['newVote'], {'kind': 'OBJECT', 'name': 'Vote', 'ofType': None})


# ========== feed query tests ==========

def create_Link_orderBy_test_data():
    """Create test data for feed orderBy tests. Create three links,
    with description, url, and created_at each having a different sort order."""
    def dt(epoch):
        return datetime.datetime.fromtimestamp(epoch, tz=datetime.timezone.utc)
    link = LinkModel(description='Description C', url='http://a.com')
    link.save()  # give 'auto_now_add' a chance to do its thing
    link.created_at = dt(1000000000) # new time stamp, least recent
    link.save()
    link = LinkModel(description='Description B', url='http://b.com')
    link.save()
    link.created_at = dt(1000000400) # most recent
    link.save()
    link = LinkModel(description='Description A', url='http://c.com')
    link.save()
    link.created_at = dt(1000000200)
    link.save()


class FeedTests(TestCase):
    def setUp(self):
        self.query = '''
          query FeedQuery($filter: String, $skip: Int, $first: Int, $orderBy: LinkOrderByInput) {
            feed(filter: $filter, skip: $skip, first: $first, orderBy: $orderBy) {
              links { description }
              count
            }
          }
        '''
        self.schema = graphene.Schema(query=Query)

    def feed(self, **variables):
        result = self.schema.execute(self.query, variable_values=variables,
                                     context_value=make_context())
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        return ([link['description'] for link in result.data['feed']['links']],
                result.data['feed']['count'])

    def test_feed(self):
        """all links, oldest first by default"""
        create_Link_orderBy_test_data()
        self.assertEqual(self.feed(), (['Description C', 'Description A', 'Description B'], 3))

    def test_feed_ordered_by(self):
        create_Link_orderBy_test_data()
        expectations = {
            'createdAt_ASC': ['Description C', 'Description A', 'Description B'],
            'createdAt_DESC': ['Description B', 'Description A', 'Description C'],
            'description_ASC': ['Description A', 'Description B', 'Description C'],
            'description_DESC': ['Description C', 'Description B', 'Description A'],
            'url_ASC': ['Description C', 'Description B', 'Description A'],
            'url_DESC': ['Description A', 'Description B', 'Description C'],
        }
        for order_by, expected in expectations.items():
            links, count = self.feed(orderBy=order_by)
            self.assertEqual(links, expected, msg=order_by)
            self.assertEqual(count, 3)

    def test_feed_pagination(self):
        """links start at skip and number at most first; count ignores both"""
        create_Link_orderBy_test_data()
        ordered = ['Description A', 'Description B', 'Description C']
        for skip in (None, 0, 1, 2, 3, 5):
            for first in (None, 0, 1, 2, 10):
                links, count = self.feed(skip=skip, first=first, orderBy='description_ASC')
                start = skip or 0
                stop = None if first is None else start + first
                self.assertEqual(links, ordered[start:stop], msg='skip={} first={}'.format(skip, first))
                self.assertEqual(count, 3)

    def test_feed_negative_bounds(self):
        create_Link_orderBy_test_data()
        links, count = self.feed(skip=-1, first=-1)
        self.assertEqual((links, count), ([], 3))
        links, count = self.feed(skip=-5)
        self.assertEqual(len(links), 3)

    def test_feed_filter(self):
        """a filter matches description OR url, and is case-sensitive"""
        LinkModel.objects.create(description='Learn graphql today', url='http://a.com')
        LinkModel.objects.create(description='Prisma', url='http://www.graphql.org/learn')
        LinkModel.objects.create(description='GraphQL, capitalised', url='http://GRAPHQL.com')
        LinkModel.objects.create(description='Nothing to see', url='http://b.com')
        links, count = self.feed(filter='graphql', orderBy='description_ASC')
        self.assertEqual(links, ['Learn graphql today', 'Prisma'])
        self.assertEqual(count, 2)
        links, count = self.feed(filter='GraphQL')
        self.assertEqual((links, count), (['GraphQL, capitalised'], 1))

    def test_feed_filter_with_pagination(self):
        for i in range(5):
            LinkModel.objects.create(description='match {}'.format(i), url='http://a.com')
        LinkModel.objects.create(description='other', url='http://b.com')
        links, count = self.feed(filter='match', skip=1, first=2, orderBy='description_ASC')
        self.assertEqual(links, ['match 1', 'match 2'])
        self.assertEqual(count, 5)

    def test_empty_filter_matches_everything(self):
        create_Link_orderBy_test_data()
        self.assertEqual(self.feed(filter='')[1], 3)

    def test_feed_filter_keeps_whitespace(self):
        """spaces around the filter text are matched literally, not trimmed away"""
        LinkModel.objects.create(description='graphql rocks', url='http://a.com')
        LinkModel.objects.create(description='mygraphql', url='http://b.com')
        LinkModel.objects.create(description='learn graphql', url='http://c.com')
        LinkModel.objects.create(description='nospace', url='http://d.com')
        self.assertEqual(self.feed(filter=' graphql'), (['learn graphql'], 1))
        self.assertEqual(self.feed(filter='graphql '), (['graphql rocks'], 1))
        links, count = self.feed(filter=' ', orderBy='description_ASC')
        self.assertEqual((links, count), (['graphql rocks', 'learn graphql'], 2))
        self.assertEqual(self.feed(filter='   '), ([], 0))

    def test_feed_storage_failure(self):
        """count and feed are both non-null, so a failing count nulls the whole result"""
        result = self.schema.execute('{ info feed { count } }',
                                     context_value=make_context(store=BrokenStore()))
        self.assertEqual(error_codes(result), ['STORAGE_ERROR'])
        self.assertIn('Storage failure', repr(result.errors))
        self.assertIsNone(result.data)

    def test_storage_failure_on_nullable_field(self):
        """a failing store is reported on the failing field, and doesn't take sibling fields
        with it
        """
        result = self.schema.execute('{ info link(id: "abc") { id } }',
                                     context_value=make_context(store=BrokenStore()))
        self.assertEqual(error_codes(result), ['STORAGE_ERROR'])
        self.assertEqual(result.data, {'info': 'This is the API of a Hackernews Clone',
                                       'link': None})


# ========== link query tests ==========

class LinkQueryTests(TestCase):
    def setUp(self):
        self.query = '''
          query LinkQuery($id: ID!) {
            link(id: $id) { id url description }
          }
        '''
        self.schema = graphene.Schema(query=Query)

    def test_link(self):
        link = LinkModel.objects.create(description='Test', url='http://a.com')
        result = self.schema.execute(self.query, variable_values={'id': link.pk},
                                     context_value=make_context())
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        expected = {'link': {'id': link.pk, 'url': 'http://a.com', 'description': 'Test'}}
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))

    def test_link_not_found(self):
        """an unknown id is null, not an error"""
        result = self.schema.execute(self.query, variable_values={'id': 'no-such-link'},
                                     context_value=make_context())
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertEqual(result.data, {'link': None})

    def test_link_without_owner(self):
        link = LinkModel.objects.create(description='Test', url='http://a.com')
        result = self.schema.execute('''
              query LinkQuery($id: ID!) {
                link(id: $id) { postedBy { id } votes { id } }
              }
            ''', variable_values={'id': link.pk}, context_value=make_context())
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertEqual(result.data, {'link': {'postedBy': None, 'votes': []}})


# ========== post mutation tests ==========

@override_settings(PASSWORD_HASHERS=TEST_PASSWORD_HASHERS)
class PostTests(TestCase):
    def setUp(self):
        self.user = create_test_user()
        self.bus = RecordingBus()
        self.query = '''
          mutation PostMutation($url: String!, $description: String!) {
            post(url: $url, description: $description) {
              url
              description
              postedBy { id name }
            }
          }
        '''
        self.variables = {'url': 'http://example.com', 'description': 'New Link'}
        self.schema = graphene.Schema(query=Query, mutation=Mutation)

    def test_post(self):
        result = self.schema.execute(self.query, variable_values=self.variables,
                                     context_value=make_context(self.user, bus=self.bus))
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        expected = {
            'post': {
                'url': 'http://example.com',
                'description': 'New Link',
                'postedBy': {'id': self.user.pk, 'name': 'Test User'},
            }
        }
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))
        link = LinkModel.objects.get()
        self.assertEqual(link.posted_by, self.user)
        self.assertEqual([(kind, payload.pk) for kind, payload in self.bus.published],
                         [(LINK_CREATED, link.pk)])

    def test_post_not_logged_in(self):
        """no token, a bad token, or a non-Bearer header: nothing is created or published"""
        for context in (make_context(bus=self.bus),
                        make_context(auth='Bearer AbDbAbDbAbDbA', bus=self.bus),
                        make_context(auth='Token xyz', bus=self.bus)):
            result = self.schema.execute(self.query, variable_values=self.variables,
                                         context_value=context)
            self.assertEqual(error_codes(result), ['NOT_AUTHENTICATED'])
            self.assertIn('Not authenticated', repr(result.errors))
            # post is non-null, so its failure nulls the whole result
            self.assertIsNone(result.data)
        self.assertEqual(LinkModel.objects.count(), 0)
        self.assertEqual(self.bus.published, [])

    def test_post_with_broken_store(self):
        result = self.schema.execute(self.query, variable_values=self.variables,
                                     context_value=make_context(self.user, bus=self.bus,
                                                                store=BrokenStore()))
        self.assertEqual(error_codes(result), ['STORAGE_ERROR'])
        self.assertEqual(self.bus.published, [])


# ========== updateLink and deleteLink mutation tests ==========

@override_settings(PASSWORD_HASHERS=TEST_PASSWORD_HASHERS)
class UpdateDeleteLinkTests(TestCase):
    def setUp(self):
        self.user = create_test_user()
        self.other = create_test_user(name='Another User', email='ano@user.com')
        self.link = LinkModel.objects.create(description='Old', url='http://old.com',
                                             posted_by=self.user)
        self.update = '''
          mutation UpdateLinkMutation($id: ID!, $url: String!, $description: String!) {
            updateLink(id: $id, url: $url, description: $description) {
              id url description
            }
          }
        '''
        self.delete = '''
          mutation DeleteLinkMutation($id: ID!) {
            deleteLink(id: $id) { id url }
          }
        '''
        self.schema = graphene.Schema(query=Query, mutation=Mutation)

    def test_update_link(self):
        variables = {'id': self.link.pk, 'url': 'http://new.com', 'description': 'New'}
        result = self.schema.execute(self.update, variable_values=variables,
                                     context_value=make_context(self.user))
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertEqual(result.data, {'updateLink': {'id': self.link.pk, 'url': 'http://new.com',
                                                      'description': 'New'}})
        self.link.refresh_from_db()
        self.assertEqual((self.link.url, self.link.description), ('http://new.com', 'New'))

    def test_update_link_by_anyone_logged_in(self):
        """ownership is not checked, only that the caller is logged in"""
        variables = {'id': self.link.pk, 'url': 'http://new.com', 'description': 'New'}
        result = self.schema.execute(self.update, variable_values=variables,
                                     context_value=make_context(self.other))
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))

    def test_update_link_not_logged_in(self):
        variables = {'id': self.link.pk, 'url': 'http://new.com', 'description': 'New'}
        result = self.schema.execute(self.update, variable_values=variables,
                                     context_value=make_context())
        self.assertEqual(error_codes(result), ['NOT_AUTHENTICATED'])
        self.link.refresh_from_db()
        self.assertEqual(self.link.url, 'http://old.com')

    def test_update_link_not_found(self):
        variables = {'id': 'no-such-link', 'url': 'http://new.com', 'description': 'New'}
        result = self.schema.execute(self.update, variable_values=variables,
                                     context_value=make_context(self.user))
        self.assertEqual(error_codes(result), ['NOT_FOUND'])
        self.assertIn('No link found for id: no-such-link', repr(result.errors))

    def test_delete_link(self):
        VoteModel.objects.create(link=self.link, user=self.other)
        result = self.schema.execute(self.delete, variable_values={'id': self.link.pk},
                                     context_value=make_context(self.other))
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertEqual(result.data, {'deleteLink': {'id': self.link.pk, 'url': 'http://old.com'}})
        self.assertFalse(LinkModel.objects.filter(pk=self.link.pk).exists())
        self.assertEqual(VoteModel.objects.count(), 0)

    def test_delete_link_not_logged_in(self):
        result = self.schema.execute(self.delete, variable_values={'id': self.link.pk},
                                     context_value=make_context())
        self.assertEqual(error_codes(result), ['NOT_AUTHENTICATED'])
        self.assertTrue(LinkModel.objects.filter(pk=self.link.pk).exists())

    def test_delete_link_not_found(self):
        result = self.schema.execute(self.delete, variable_values={'id': 'no-such-link'},
                                     context_value=make_context(self.user))
        self.assertEqual(error_codes(result), ['NOT_FOUND'])
        self.assertEqual(LinkModel.objects.count(), 1)


# ========== vote mutation tests ==========

@override_settings(PASSWORD_HASHERS=TEST_PASSWORD_HASHERS)
class VoteTests(TestCase):
    def setUp(self):
        self.user = create_test_user()
        self.link = LinkModel.objects.create(description='Test', url='http://a.com')
        self.bus = RecordingBus()
        self.query = '''
          mutation VoteMutation($linkId: ID!) {
            vote(linkId: $linkId) {
              link { id votes { user { id } } }
              user { id }
            }
          }
        '''
        self.schema = graphene.Schema(query=Query, mutation=Mutation)

    def expected(self):
        return {
            'vote': {
                'link': {
                    'id': self.link.pk,
                    'votes': [{'user': {'id': self.user.pk}}],
                },
                'user': {'id': self.user.pk},
            }
        }

    def test_vote(self):
        result = self.schema.execute(self.query, variable_values={'linkId': self.link.pk},
                                     context_value=make_context(self.user, bus=self.bus))
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertEqual(result.data, self.expected(),
                         msg='\n'+repr(self.expected())+'\n'+repr(result.data))
        vote = VoteModel.objects.get()
        self.assertEqual((vote.user_id, vote.link_id), (self.user.pk, self.link.pk))
        self.assertEqual([(kind, payload.pk) for kind, payload in self.bus.published],
                         [(VOTE_CREATED, vote.pk)])

    def test_vote_twice(self):
        """one vote per user and link; every later attempt is a DUPLICATE_VOTE"""
        context = make_context(self.user, bus=self.bus)
        result = self.schema.execute(self.query, variable_values={'linkId': self.link.pk},
                                     context_value=context)
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        for _ in range(2):
            result = self.schema.execute(self.query, variable_values={'linkId': self.link.pk},
                                         context_value=context)
            self.assertEqual(error_codes(result), ['DUPLICATE_VOTE'])
            self.assertIn('Already voted for link: {}'.format(self.link.pk), repr(result.errors))
            self.assertEqual(result.data, {'vote': None})
        self.assertEqual(VoteModel.objects.count(), 1)
        self.assertEqual(len(self.bus.published), 1)

    def test_vote_other_users(self):
        """the limit is per user: someone else may still vote for the same link"""
        other = create_test_user(name='Another User', email='ano@user.com')
        for user in (self.user, other):
            result = self.schema.execute(self.query, variable_values={'linkId': self.link.pk},
                                         context_value=make_context(user))
            self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertEqual(VoteModel.objects.filter(link=self.link).count(), 2)

    def test_vote_not_logged_in(self):
        result = self.schema.execute(self.query, variable_values={'linkId': self.link.pk},
                                     context_value=make_context(bus=self.bus))
        self.assertEqual(error_codes(result), ['NOT_AUTHENTICATED'])
        self.assertEqual(result.data, {'vote': None})
        self.assertEqual(VoteModel.objects.count(), 0)
        self.assertEqual(self.bus.published, [])

    def test_vote_bad_link(self):
        result = self.schema.execute(self.query, variable_values={'linkId': 'no-such-link'},
                                     context_value=make_context(self.user, bus=self.bus))
        self.assertEqual(error_codes(result), ['NOT_FOUND'])
        self.assertIn('No link found for id: no-such-link', repr(result.errors))
        self.assertEqual(VoteModel.objects.count(), 0)
        self.assertEqual(self.bus.published, [])

    def test_duplicate_caught_by_constraint(self):
        """if a concurrent duplicate gets past the existence check, the store's unique
        constraint still turns it into a DUPLICATE_VOTE
        """
        class RacingVotes(object):
            # pretends the existence check ran before the other request's write landed
            def __init__(self, votes):
                self.votes = votes

            def exists(self, where=None):
                return False

            def __getattr__(self, name):
                return getattr(self.votes, name)

        VoteModel.objects.create(user=self.user, link=self.link)
        store = DjangoStore()
        store.votes = RacingVotes(store.votes)
        result = self.schema.execute(self.query, variable_values={'linkId': self.link.pk},
                                     context_value=make_context(self.user, store=store))
        self.assertEqual(error_codes(result), ['DUPLICATE_VOTE'])
        self.assertEqual(VoteModel.objects.count(), 1)


class VoteCommitTests(TransactionTestCase):
    """Votes whose foreign keys only fail when the write commits (SQLite defers them), which
    TestCase's never-committed transaction can't show.
    """
    def setUp(self):
        self.link = LinkModel.objects.create(description='Test', url='http://a.com')
        self.query = '''
          mutation VoteMutation($linkId: ID!) {
            vote(linkId: $linkId) { id }
          }
        '''
        self.schema = graphene.Schema(query=Query, mutation=Mutation)

    def test_vote_by_vanished_user(self):
        """a valid token for a user who no longer exists is not mistaken for a duplicate vote"""
        token = TokenService.from_settings().issue('no-such-user')
        result = self.schema.execute(self.query, variable_values={'linkId': self.link.pk},
                                     context_value=make_context(auth='Bearer ' + token))
        self.assertEqual(error_codes(result), ['STORAGE_ERROR'])
        self.assertNotIn('Already voted', repr(result.errors))
        self.assertEqual(result.data, {'vote': None})
        self.assertEqual(VoteModel.objects.count(), 0)


# ========== subscription tests ==========

# These run as async tests: the subscription lives in the test's event loop, and the mutations run
# through sync_to_async, which puts them back on the test's own thread (and database connection).

@override_settings(PASSWORD_HASHERS=TEST_PASSWORD_HASHERS)
class SubscriptionTests(TestCase):
    def setUp(self):
        self.alice = create_test_user(name='Alice', email='alice@example.com')
        self.bus = EventBus()
        self.schema = graphene.Schema(query=Query, mutation=Mutation, subscription=Subscription)
        self.post = '''
          mutation {
            post(url: "http://www.howtographql.com", description: "Fullstack tutorial") { id }
          }
        '''
        self.new_link = '''
          subscription {
            newLink { id url description postedBy { name } }
          }
        '''
        self.new_vote = '''
          subscription {
            newVote { id link { url } user { name } }
          }
        '''

    def subscriber_context(self):
        # payloads are completed in the event loop, so subscribers use the async store
        return make_context(store=AsyncStore(DjangoStore()), bus=self.bus)

    async def execute(self, query, user=None, **variables):
        result = await sync_to_async(self.schema.execute)(
            query, variable_values=variables, context_value=make_context(user, bus=self.bus))
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        return result.data

    async def test_new_link(self):
        """a listener registered before the post receives exactly that link"""
        stream = await self.schema.subscribe(self.new_link, context_value=self.subscriber_context())
        self.assertEqual(self.bus.listener_count(LINK_CREATED), 1)
        data = await self.execute(self.post, self.alice)
        item = await asyncio.wait_for(stream.__anext__(), timeout=5)
        self.assertIsNone(item.errors, msg=format_graphql_errors(item.errors))
        expected = {
            'newLink': {
                'id': data['post']['id'],
                'url': 'http://www.howtographql.com',
                'description': 'Fullstack tutorial',
                'postedBy': {'name': 'Alice'},
            }
        }
        self.assertEqual(item.data, expected, msg='\n'+repr(expected)+'\n'+repr(item.data))
        # and nothing more
        with self.assertRaises(asyncio.TimeoutError):
            await asyncio.wait_for(stream.__anext__(), timeout=0.1)
        await stream.aclose()
        self.assertEqual(self.bus.listener_count(LINK_CREATED), 0)

    async def test_new_link_after_the_fact(self):
        """a listener registered after the post sees nothing of it"""
        await self.execute(self.post, self.alice)
        stream = await self.schema.subscribe(self.new_link, context_value=self.subscriber_context())
        with self.assertRaises(asyncio.TimeoutError):
            await asyncio.wait_for(stream.__anext__(), timeout=0.1)
        await stream.aclose()
        self.assertEqual(self.bus.listener_count(LINK_CREATED), 0)

    async def test_every_listener_gets_the_event(self):
        streams = [await self.schema.subscribe(self.new_link,
                                               context_value=self.subscriber_context())
                   for _ in range(3)]
        self.assertEqual(self.bus.listener_count(LINK_CREATED), 3)
        await self.execute(self.post, self.alice)
        for stream in streams:
            item = await asyncio.wait_for(stream.__anext__(), timeout=5)
            self.assertEqual(item.data['newLink']['url'], 'http://www.howtographql.com')
            await stream.aclose()
        self.assertEqual(self.bus.listener_count(LINK_CREATED), 0)

    async def test_failed_post_publishes_nothing(self):
        stream = await self.schema.subscribe(self.new_link, context_value=self.subscriber_context())
        result = await sync_to_async(self.schema.execute)(
            self.post, context_value=make_context(bus=self.bus))
        self.assertEqual(error_codes(result), ['NOT_AUTHENTICATED'])
        with self.assertRaises(asyncio.TimeoutError):
            await asyncio.wait_for(stream.__anext__(), timeout=0.1)
        await stream.aclose()

    async def test_scenario(self):
        """signup, login, post, vote once (and not twice), with a newVote subscriber watching"""
        data = await self.execute('''
          mutation {
            signup(email: "alice@wonderland.org", password: "rabbit-hole", name: "Alice L.") {
              user { id }
            }
          }
        ''')
        alice_id = data['signup']['user']['id']
        data = await self.execute('''
          mutation {
            login(email: "alice@wonderland.org", password: "rabbit-hole") { token }
          }
        ''')
        context = make_context(auth='Bearer ' + data['login']['token'], bus=self.bus)
        self.assertEqual(context.caller_id().value, alice_id)

        result = await sync_to_async(self.schema.execute)(
            'mutation { post(url: "http://alice.org", description: "Down the hole") '
            '{ id postedBy { id name } } }', context_value=context)
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        link = result.data['post']
        self.assertEqual(link['postedBy'], {'id': alice_id, 'name': 'Alice L.'})

        stream = await self.schema.subscribe(self.new_vote, context_value=self.subscriber_context())
        vote = 'mutation VoteMutation($linkId: ID!) { vote(linkId: $linkId) { id } }'
        result = await sync_to_async(self.schema.execute)(
            vote, variable_values={'linkId': link['id']}, context_value=context)
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        vote_id = result.data['vote']['id']
        result = await sync_to_async(self.schema.execute)(
            vote, variable_values={'linkId': link['id']}, context_value=context)
        self.assertEqual(error_codes(result), ['DUPLICATE_VOTE'])

        item = await asyncio.wait_for(stream.__anext__(), timeout=5)
        self.assertIsNone(item.errors, msg=format_graphql_errors(item.errors))
        expected = {
            'newVote': {
                'id': vote_id,
                'link': {'url': 'http://alice.org'},
                'user': {'name': 'Alice L.'},
            }
        }
        self.assertEqual(item.data, expected, msg='\n'+repr(expected)+'\n'+repr(item.data))
        with self.assertRaises(asyncio.TimeoutError):
            await asyncio.wait_for(stream.__anext__(), timeout=0.1)
        await stream.aclose()
