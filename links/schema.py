# hackernews-graphql -- links/schema.py
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
from hackernews.events import LINK_CREATED, VOTE_CREATED
from links.models import LinkModel, VoteModel


logger = logging.getLogger(__name__)


# ========== relation fields ==========

# The relation fields below (Link.postedBy, Link.votes, Vote.link, Vote.user, and User.links and
# User.votes in users/schema.py) don't trust what they find on the parent object. The parent may
# be a partial projection, or a copy published to a subscription some time ago, so each one
# re-fetches the parent by id through the store and follows the relation from there.
#
# The store may be an AsyncStore (for subscriptions), in which case these resolvers return
# awaitables. graphql-core awaits them, so they are passed through untouched.


# ========== Vote ==========

class Vote(DjangoObjectType):
    class Meta:
        model = VoteModel
        fields = ('id', )

    id = graphene.ID(required=True)
    link = graphene.Field(lambda: Link, required=True)
    user = graphene.Field('users.schema.User', required=True)

    @staticmethod
    def resolve_link(parent, info):
        return info.context.store.votes.related(parent.pk, 'link')

    @staticmethod
    def resolve_user(parent, info):
        return info.context.store.votes.related(parent.pk, 'user')


class CreateVote(graphene.Mutation):
    # mutation VoteMutation($linkId: ID!) {
    #   vote(linkId: $linkId) {
    #     id
    #     link { votes { id user { id } } }
    #     user { id }
    #   }
    # }

    class Arguments:
        link_id = graphene.ID(required=True)

    Output = Vote

    @staticmethod
    def mutate(root, info, link_id):
        context = info.context
        votes = context.store.votes
        already_voted = 'Already voted for link: {}'.format(link_id)

        def check_link(user_id):
            link = attempt(lambda: context.store.links.get(pk=link_id))
            if link.ok and link.value is None:
                return Outcome.failure(ErrorKind.NOT_FOUND,
                                       'No link found for id: {}'.format(link_id))
            return link.then(lambda _: Outcome.success(user_id))

        def check_not_voted(user_id):
            # Not atomic with the create below; the unique constraint on (user, link) catches a
            # concurrent duplicate that slips between the two.
            voted = attempt(lambda: votes.exists({'user': user_id, 'link': link_id}))
            if voted.ok and voted.value:
                logger.info('rejected duplicate vote by user %s on link %s', user_id, link_id)
                return Outcome.failure(ErrorKind.DUPLICATE_VOTE, already_voted)
            return voted.then(lambda _: Outcome.success(user_id))

        def create(user_id):
            return attempt(lambda: votes.create(user_id=user_id, link_id=link_id),
                           conflict=ErrorKind.DUPLICATE_VOTE, message=already_voted)

        outcome = context.caller_id().then(check_link).then(check_not_voted).then(create)
        if outcome.ok:
            logger.info('user %s voted for link %s', outcome.value.user_id, link_id)
            context.bus.publish(VOTE_CREATED, outcome.value)
        return outcome.result()


# ========== Link ==========

class Link(DjangoObjectType):
    class Meta:
        model = LinkModel
        fields = ('id', 'created_at', 'description', 'url')

    id = graphene.ID(required=True)
    posted_by = graphene.Field('users.schema.User')
    votes = graphene.List(graphene.NonNull(Vote), required=True)

    @staticmethod
    def resolve_posted_by(parent, info):
        return info.context.store.links.related(parent.pk, 'posted_by')

    @staticmethod
    def resolve_votes(parent, info):
        return info.context.store.links.related(parent.pk, 'votes')


class LinkOrderByInput(graphene.Enum):
    """Orderings for feed. The left-hand side is what goes over the wire, the right-hand side is
    the ordering the store receives.
    """
    createdAt_ASC = 'created_at'
    createdAt_DESC = '-created_at'
    description_ASC = 'description'
    description_DESC = '-description'
    id_ASC = 'id'
    id_DESC = '-id'
    url_ASC = 'url'
    url_DESC = '-url'


class Feed(graphene.ObjectType):
    """A page of links, plus the count of every link matching the filter.

    links and count are resolved separately, and only when asked for. count ignores skip and
    first, so the total it reports is not distorted by pagination.
    """
    links = graphene.List(graphene.NonNull(Link), required=True)
    count = graphene.Int(required=True)

    def __init__(self, where, skip=None, first=None, order_by=None):
        super().__init__()
        self.where = where
        self.skip = skip
        self.first = first
        self.order_by = order_by

    def resolve_links(self, info):
        store = info.context.store
        return attempt(lambda: store.links.list(
            self.where, skip=self.skip, first=self.first, order_by=self.order_by)).result()

    def resolve_count(self, info):
        store = info.context.store
        return attempt(lambda: store.links.count(self.where)).result()


class CreateLink(graphene.Mutation):
    # mutation PostMutation($description: String!, $url: String!) {
    #   post(description: $description, url: $url) {
    #     id
    #     createdAt
    #     url
    #     description
    #     postedBy { id name }
    #   }
    # }

    class Arguments:
        url = graphene.String(required=True)
        description = graphene.String(required=True)

    Output = Link

    @staticmethod
    def mutate(root, info, url, description):
        context = info.context
        outcome = context.caller_id().then(lambda user_id: attempt(
            lambda: context.store.links.create(url=url, description=description,
                                               posted_by_id=user_id)))
        if outcome.ok:
            logger.info('user %s posted link %s', outcome.value.posted_by_id, outcome.value.pk)
            context.bus.publish(LINK_CREATED, outcome.value)
        return outcome.result()


class UpdateLink(graphene.Mutation):
    # Any logged-in user may update (or delete) any link, not just their own.

    class Arguments:
        id = graphene.ID(required=True)
        url = graphene.String(required=True)
        description = graphene.String(required=True)

    Output = Link

    @staticmethod
    def mutate(root, info, id, url, description):
        context = info.context
        outcome = context.caller_id().then(lambda user_id: attempt(
            lambda: context.store.links.update(id, url=url, description=description),
            message='No link found for id: {}'.format(id)))
        if outcome.ok:
            logger.info('link %s updated', id)
        return outcome.result()


class DeleteLink(graphene.Mutation):
    class Arguments:
        id = graphene.ID(required=True)

    Output = Link

    @staticmethod
    def mutate(root, info, id):
        context = info.context
        outcome = context.caller_id().then(lambda user_id: attempt(
            lambda: context.store.links.delete(id),
            message='No link found for id: {}'.format(id)))
        if outcome.ok:
            logger.info('link %s deleted', id)
        return outcome.result()


# ========== schema structure ==========

class Query(object):
    info = graphene.String(required=True)
    feed = graphene.Field(
        Feed,
        required=True,
        filter=graphene.String(),
        skip=graphene.Int(),
        first=graphene.Int(),
        order_by=graphene.Argument(LinkOrderByInput),
    )
    link = graphene.Field(Link, id=graphene.ID(required=True))

    def resolve_info(self, info):
        return 'This is the API of a Hackernews Clone'

    def resolve_feed(self, info, filter=None, skip=None, first=None, order_by=None):
        # a filter matches on description OR url
        where = {'text': filter} if filter else {}
        if order_by is not None:
            # graphene 3 hands us the enum member; the store wants its value
            order_by = order_by.value
        return Feed(where, skip=skip, first=first, order_by=order_by)

    def resolve_link(self, info, id):
        # an unknown id is just null, not an error
        return attempt(lambda: info.context.store.links.get(pk=id)).result()


class Mutation(object):
    post = CreateLink.Field(required=True)
    update_link = UpdateLink.Field(required=True)
    delete_link = DeleteLink.Field(required=True)
    vote = CreateVote.Field()


class Subscription(object):
    new_link = graphene.Field(Link)
    new_vote = graphene.Field(Vote)

    # The subscribe_ functions register a listener on the bus as soon as graphql-core calls them,
    # i.e. before the subscription's first event is asked for. The Listener is the event stream;
    # closing the stream (which the transport always does when the operation ends, however it
    # ends) removes the registration.

    @staticmethod
    async def subscribe_new_link(root, info):
        return info.context.bus.listen(LINK_CREATED)

    @staticmethod
    async def subscribe_new_vote(root, info):
        return info.context.bus.listen(VOTE_CREATED)

    # Each published payload is the created model instance, which is already the shape the field
    # declares.

    @staticmethod
    def resolve_new_link(root, info):
        return root

    @staticmethod
    def resolve_new_vote(root, info):
        return root
