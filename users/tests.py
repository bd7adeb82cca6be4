# hackernews-graphql -- users/tests.py
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

import datetime

import jwt
from django.test import SimpleTestCase, TestCase, override_settings

import graphene

from hackernews.context import RequestContext
from hackernews.errors import ErrorKind
from hackernews.schema import Mutation, Query
from hackernews.utils import format_graphql_errors
from .auth import InvalidToken, TokenService, get_user_id, hash_password, password_matches
from .models import UserModel


# PBKDF2 is slow on purpose; tests only need hashing to be one-way and salted.
TEST_PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']


# ========== utility functions ==========

def create_test_user(name=None, password=None, email=None):
    user = UserModel.objects.create(
        name=name or 'Test User',
        password=hash_password(password or 'abc123'),
        email=email or 'test@user.com'
    )
    return user


def make_context(user=None, auth=None, store=None, bus=None):
    """Return a RequestContext for a request by `user` (anonymous if None), or one with the given
    raw Authorization header value.
    """
    headers = {}
    if user is not None:
        auth = 'Bearer {}'.format(TokenService.from_settings().issue(user.pk))
    if auth is not None:
        headers['Authorization'] = auth
    return RequestContext.create(headers=headers, store=store, bus=bus)


def error_codes(result):
    return [e.extensions.get('code') for e in result.errors or ()]


# ========== token service tests ==========

class TokenServiceTests(SimpleTestCase):
    def setUp(self):
        self.tokens = TokenService('sekrit')

    def test_issue_and_verify(self):
        """a token verifies to the id it was issued for"""
        token = self.tokens.issue('abc123def456')
        self.assertIsInstance(token, str)
        self.assertEqual(self.tokens.verify(token), 'abc123def456')

    def test_token_payload(self):
        """the payload carries the user id and the time of issue"""
        token = self.tokens.issue('abc123def456')
        payload = jwt.decode(token, 'sekrit', algorithms=['HS256'])
        self.assertEqual(payload['userId'], 'abc123def456')
        self.assertIn('iat', payload)
        self.assertNotIn('exp', payload)

    def test_tampered_token(self):
        """changing the token breaks the signature"""
        token = self.tokens.issue('abc123def456')
        header, payload, signature = token.split('.')
        forged = jwt.encode({'userId': 'someone-else'}, 'not the secret', algorithm='HS256')
        tampered = '.'.join([header, forged.split('.')[1], signature])
        with self.assertRaises(InvalidToken):
            self.tokens.verify(tampered)

    def test_wrong_secret(self):
        """rotating the secret invalidates outstanding tokens"""
        token = self.tokens.issue('abc123def456')
        with self.assertRaises(InvalidToken):
            TokenService('another secret').verify(token)

    def test_malformed_token(self):
        with self.assertRaises(InvalidToken):
            self.tokens.verify('ArgleBargle')

    def test_malformed_payload(self):
        """a correctly signed token without a usable userId is still invalid"""
        for payload in ({}, {'userId': 42}, {'userId': ''}):
            token = jwt.encode(payload, 'sekrit', algorithm='HS256')
            with self.assertRaises(InvalidToken, msg=repr(payload)):
                self.tokens.verify(token)

    def test_expired_token(self):
        past = datetime.datetime.now(tz=datetime.timezone.utc) - datetime.timedelta(hours=1)
        token = jwt.encode({'userId': 'abc123def456', 'iat': past,
                            'exp': past + datetime.timedelta(minutes=5)},
                           'sekrit', algorithm='HS256')
        with self.assertRaises(InvalidToken):
            self.tokens.verify(token)

    def test_ttl_adds_expiry(self):
        token = TokenService('sekrit', ttl=300).issue('abc123def456')
        payload = jwt.decode(token, 'sekrit', algorithms=['HS256'])
        self.assertEqual(payload['exp'] - payload['iat'], 300)

    @override_settings(HACKERNEWS_APP_SECRET='from settings', HACKERNEWS_TOKEN_TTL=60)
    def test_from_settings(self):
        tokens = TokenService.from_settings()
        self.assertEqual(tokens.secret, 'from settings')
        self.assertEqual(tokens.ttl, 60)


# ========== identity extractor tests ==========

class GetUserIdTests(SimpleTestCase):
    def test_get_user_id_missing_or_invalid(self):
        """get_user_id() with no, or a non-Bearer, Authorization header is not authenticated"""
        for context in (make_context(), make_context(auth='ArgleBargle'),
                        make_context(auth='Basic dXNlcjpwYXNz')):
            outcome = get_user_id(context)
            self.assertFalse(outcome.ok)
            self.assertIs(outcome.error, ErrorKind.NOT_AUTHENTICATED)

    def test_get_user_id_valid(self):
        """get_user_id() with a valid bearer token returns the token's user id"""
        token = TokenService.from_settings().issue('abc123def456')
        outcome = get_user_id(make_context(auth='Bearer {}'.format(token)))
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.value, 'abc123def456')

    def test_get_user_id_wrong(self):
        """get_user_id() with a Bearer header but a bad token is not authenticated"""
        outcome = get_user_id(make_context(auth='Bearer AbDbAbDbAbDbA'))
        self.assertIs(outcome.error, ErrorKind.NOT_AUTHENTICATED)
        self.assertEqual(outcome.message, 'Not authenticated')

    def test_header_name_is_case_insensitive(self):
        token = TokenService.from_settings().issue('abc123def456')
        context = RequestContext.create(headers={'authorization': 'Bearer {}'.format(token)})
        self.assertEqual(context.caller_id().value, 'abc123def456')


# ========== password tests ==========

@override_settings(PASSWORD_HASHERS=TEST_PASSWORD_HASHERS)
class PasswordTests(SimpleTestCase):
    def test_password_is_hashed(self):
        encoded = hash_password('abc123')
        self.assertNotIn('abc123', encoded)
        self.assertTrue(password_matches('abc123', encoded))
        self.assertFalse(password_matches('abc124', encoded))

    def test_password_is_salted(self):
        self.assertNotEqual(hash_password('abc123'), hash_password('abc123'))


# ========== signup mutation tests ==========

@override_settings(PASSWORD_HASHERS=TEST_PASSWORD_HASHERS)
class SignupTests(TestCase):
    def setUp(self):
        self.query = '''
          mutation SignupMutation($email: String!, $password: String!, $name: String!) {
            signup(email: $email, password: $password, name: $name) {
              token
              user { name email }
            }
          }
        '''
        self.variables = {
            'name': 'Jim Kirk',
            'email': 'kirk@example.com',
            'password': 'abc123',
        }
        self.expected = {
            'signup': {
                'token': 'REDACTED',
                'user': {
                    'name': 'Jim Kirk',
                    'email': 'kirk@example.com',
                }
            }
        }
        self.schema = graphene.Schema(query=Query, mutation=Mutation)

    def test_signup(self):
        """sucessfully sign up a user"""
        result = self.schema.execute(self.query, variable_values=self.variables,
                                     context_value=make_context())
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        token = result.data['signup']['token']
        result.data['signup']['token'] = 'REDACTED'
        self.assertEqual(result.data, self.expected,
                         msg='\n'+repr(self.expected)+'\n'+repr(result.data))
        # check that the user was created properly
        user = UserModel.objects.get(email='kirk@example.com')
        self.assertEqual(user.name, 'Jim Kirk')
        self.assertNotEqual(user.password, 'abc123')
        self.assertTrue(password_matches('abc123', user.password))
        # and that the token identifies them
        self.assertEqual(TokenService.from_settings().verify(token), user.pk)

    def test_signup_duplicate(self):
        """should not be able to create two users with the same email"""
        result = self.schema.execute(self.query, variable_values=self.variables,
                                     context_value=make_context())
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        # now try to create a second one
        self.variables['name'] = 'Just Spock to Humans'
        self.variables['password'] = '26327790.8685354193060378'
        # -- email address stays the same
        result = self.schema.execute(self.query, variable_values=self.variables,
                                     context_value=make_context())
        self.assertIsNotNone(result.errors,
                             msg='Creating user with duplicate email should have failed')
        self.assertIn('user with that email address already exists', repr(result.errors))
        self.assertEqual(error_codes(result), ['DUPLICATE_EMAIL'])
        expected = { 'signup': None } # empty result
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))
        self.assertEqual(UserModel.objects.filter(email='kirk@example.com').count(), 1)


# ========== login mutation tests ==========

@override_settings(PASSWORD_HASHERS=TEST_PASSWORD_HASHERS)
class LoginTests(TestCase):
    def setUp(self):
        self.user = create_test_user()
        self.query = '''
          mutation LoginMutation($email: String!, $password: String!) {
            login(email: $email, password: $password) {
              token
              user { name }
            }
          }
        '''
        self.schema = graphene.Schema(query=Query, mutation=Mutation)

    def test_login(self):
        """normal user login"""
        variables = {
            'email': self.user.email,
            'password': 'abc123',
        }
        expected = {
            'login': {
                'token': 'REDACTED',
                'user': {
                    'name': self.user.name,
                }
            }
        }
        result = self.schema.execute(self.query, variable_values=variables,
                                     context_value=make_context())
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        try:
            token = result.data['login']['token']
            result.data['login']['token'] = 'REDACTED'
        except KeyError:
            raise Exception('malformed mutation result')
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))
        # the identity extractor accepts the token as this user
        context = make_context(auth='Bearer {}'.format(token))
        self.assertEqual(context.caller_id().value, self.user.pk)

    def test_login_user_not_found(self):
        """unsuccessful login: user not found"""
        variables = {
            'email': 'xxx' + self.user.email, # unknown email address
            'password': 'irrelevant',
        }
        expected = {'login': None} # empty result
        result = self.schema.execute(self.query, variable_values=variables,
                                     context_value=make_context())
        self.assertIsNotNone(result.errors,
                             msg='Login of user with unknown email should have failed')
        self.assertIn('No such user found', repr(result.errors))
        self.assertEqual(error_codes(result), ['INVALID_CREDENTIALS'])
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))

    def test_login_bad_password(self):
        """unsuccessful login: incorrect password"""
        variables = {
            'email': self.user.email,
            'password': 'xxxabc123', # incorrect password
        }
        expected = {'login': None} # empty result
        result = self.schema.execute(self.query, variable_values=variables,
                                     context_value=make_context())
        self.assertIsNotNone(result.errors,
                             msg='Login of user with incorrect password should have failed')
        self.assertIn('Invalid password', repr(result.errors))
        # the same machine-readable code as an unknown user
        self.assertEqual(error_codes(result), ['INVALID_CREDENTIALS'])
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))

    def test_signup_then_login(self):
        """credentials given at signup work for login"""
        signup = '''
          mutation {
            signup(email: "alice@example.com", password: "wonderland", name: "Alice") {
              user { id }
            }
          }
        '''
        result = self.schema.execute(signup, context_value=make_context())
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        user_id = result.data['signup']['user']['id']
        variables = {'email': 'alice@example.com', 'password': 'wonderland'}
        result = self.schema.execute(self.query, variable_values=variables,
                                     context_value=make_context())
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        token = result.data['login']['token']
        self.assertEqual(make_context(auth='Bearer ' + token).caller_id().value, user_id)


# ========== User relation tests ==========

@override_settings(PASSWORD_HASHERS=TEST_PASSWORD_HASHERS)
class UserRelationTests(TestCase):
    def test_user_links_and_votes(self):
        """User.links and User.votes follow the relations of the stored user"""
        from links.models import LinkModel, VoteModel
        user = create_test_user()
        other = create_test_user(name='Another User', email='ano@user.com')
        link = LinkModel.objects.create(description='Mine', url='http://a.com', posted_by=user)
        LinkModel.objects.create(description='Theirs', url='http://b.com', posted_by=other)
        VoteModel.objects.create(link=link, user=other)
        query = '''
          query UserRelations($id: ID!) {
            link(id: $id) {
              postedBy {
                name
                links { url }
                votes { id }
              }
              votes {
                user {
                  name
                  links { url }
                  votes { link { description } }
                }
              }
            }
          }
        '''
        expected = {
            'link': {
                'postedBy': {
                    'name': 'Test User',
                    'links': [{'url': 'http://a.com'}],
                    'votes': [],
                },
                'votes': [
                    {
                        'user': {
                            'name': 'Another User',
                            'links': [{'url': 'http://b.com'}],
                            'votes': [{'link': {'description': 'Mine'}}],
                        }
                    }
                ],
            }
        }
        schema = graphene.Schema(query=Query)
        result = schema.execute(query, variable_values={'id': link.pk},
                                context_value=make_context())
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))

    def test_user_has_no_password_field(self):
        query = '''
          query {
            __type(name: "User") {
              fields { name }
            }
          }
        '''
        schema = graphene.Schema(query=Query)
        result = schema.execute(query)
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        names = sorted(f['name'] for f in result.data['__type']['fields'])
        self.assertEqual(names, ['email', 'id', 'links', 'name', 'votes'])
