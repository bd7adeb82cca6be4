# hackernews-graphql -- users/schema.py
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

import logging

import graphene
from graphene_django import DjangoObjectType

from hackernews.errors import ErrorKind, Outcome, attempt
from users.auth import hash_password, password_matches
from users.models import UserModel


logger = logging.getLogger(__name__)


class User(DjangoObjectType):
    # the password hash is deliberately not a field
    class Meta:
        model = UserModel
        fields = ('id', 'name', 'email')

    id = graphene.ID(required=True)
    links = graphene.List(graphene.NonNull('links.schema.Link'), required=True)
    votes = graphene.List(graphene.NonNull('links.schema.Vote'), required=True)

    # see the note on relation fields in links/schema.py
    @staticmethod
    def resolve_links(parent, info):
        return info.context.store.users.related(parent.pk, 'links')

    @staticmethod
    def resolve_votes(parent, info):
        return info.context.store.users.related(parent.pk, 'votes')


class AuthPayload(graphene.ObjectType):
    token = graphene.String()
    user = graphene.Field(User)


class Query(object):
    pass


class Signup(graphene.Mutation):
    # mutation SignupMutation($email: String!, $password: String!, $name: String!) {
    #   signup(email: $email, password: $password, name: $name) {
    #     token
    #     user { id name }
    #   }
    # }

    class Arguments:
        email = graphene.String(required=True)
        password = graphene.String(required=True)
        name = graphene.String(required=True)

    Output = AuthPayload

    @staticmethod
    def mutate(root, info, email, password, name):
        context = info.context
        outcome = attempt(
            lambda: context.store.users.create(name=name, email=email,
                                               password=hash_password(password)),
            conflict=ErrorKind.DUPLICATE_EMAIL)
        if outcome.ok:
            logger.info('signed up user %s', outcome.value.pk)
        return outcome.then(lambda user: Outcome.success(AuthPayload(
            token=context.tokens.issue(user.pk),
            user=user,
        ))).result()


class Login(graphene.Mutation):
    # mutation LoginMutation($email: String!, $password: String!) {
    #   login(email: $email, password: $password) {
    #     token
    #   }
    # }

    class Arguments:
        email = graphene.String(required=True)
        password = graphene.String(required=True)

    Output = AuthPayload

    @staticmethod
    def mutate(root, info, email, password):
        context = info.context

        def check_user(user):
            if user is None:
                return Outcome.failure(ErrorKind.NO_SUCH_USER)
            if not password_matches(password, user.password):
                return Outcome.failure(ErrorKind.INVALID_CREDENTIALS)
            return Outcome.success(user)

        outcome = attempt(lambda: context.store.users.get(email=email)).then(check_user)
        if outcome.ok:
            logger.info('logged in user %s', outcome.value.pk)
        return outcome.then(lambda user: Outcome.success(AuthPayload(
            token=context.tokens.issue(user.pk),
            user=user,
        ))).result()


class Mutation(object):
    signup = Signup.Field()
    login = Login.Field()
