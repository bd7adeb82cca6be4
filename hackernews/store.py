# hackernews-graphql -- hackernews/store.py
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

import abc
from contextlib import contextmanager

from asgiref.sync import sync_to_async
from django.core.exceptions import ObjectDoesNotExist, ValidationError
from django.db import DatabaseError, IntegrityError, models, transaction


# ========== the data access facade ==========

# Resolvers never touch the ORM. Everything they read or write goes through a Store, which is
# handed to them in the request context, so a test can substitute its own.
#
# Filters come in two flavours:
#
# - get() takes keyword lookups on a unique key, e.g. get(email='foo@bar.com'), and
# - list(), count() and exists() take a "where" dict of search criteria, e.g.
#   {'text': 'graphql'} or {'user': <id>, 'link': <id>}, whose keys are defined per entity by its
#   FilterSet.

class StoreError(Exception):
    """Base class for everything the facade raises."""


class StorageError(StoreError):
    """The backend failed. Nothing is retried."""


class RecordNotFound(StoreError):
    """No record matches the id given to update(), delete() or another id-addressed call."""


class ConstraintViolation(StoreError):
    """A write was rejected by a storage-level constraint, such as a reference to a record that
    doesn't exist.
    """


class DuplicateRecord(ConstraintViolation):
    """A write collided with an existing record on a unique field or unique constraint, such as a
    second user with the same email.
    """


class EntityStore(abc.ABC):
    """Create/read/update/delete, filtering, counting and relation traversal for one entity."""

    @abc.abstractmethod
    def create(self, **fields):
        pass

    @abc.abstractmethod
    def get(self, **lookup):
        """Return the single matching record, or None."""

    @abc.abstractmethod
    def list(self, where=None, skip=None, first=None, order_by=None):
        """Return a lazy sequence of matching records. Iterating it again re-runs the query."""

    @abc.abstractmethod
    def update(self, id, **fields):
        pass

    @abc.abstractmethod
    def delete(self, id):
        """Delete a record and return it as it was."""

    @abc.abstractmethod
    def exists(self, where=None):
        pass

    @abc.abstractmethod
    def count(self, where=None):
        pass

    @abc.abstractmethod
    def related(self, id, relation):
        """Re-fetch the record with this id and follow one of its relations. A to-one relation
        gives a record or None, a to-many relation gives a (possibly empty) sequence.
        """


class Store(object):
    """The facade as a whole: one EntityStore per entity."""

    def __init__(self, users, links, votes):
        self.users = users
        self.links = links
        self.votes = votes


# ========== Django implementation ==========

@contextmanager
def storage_errors():
    """Translate Django database exceptions into facade exceptions."""
    try:
        yield
    except IntegrityError as e:
        raise ConstraintViolation(str(e)) from e
    except DatabaseError as e:
        raise StorageError(str(e)) from e


def window(queryset, skip=None, first=None):
    """Apply skip/first pagination bounds to a QuerySet. Negative bounds count as zero."""
    start = max(skip or 0, 0)
    if first is None:
        return queryset[start:]
    return queryset[start:start + max(first, 0)]


class DjangoEntityStore(EntityStore):
    def __init__(self, model, filterset_class):
        self.model = model
        self.filterset_class = filterset_class

    def _filter(self, where):
        queryset = self.model.objects.all()
        if not where:
            return queryset
        filterset = self.filterset_class(data=where, queryset=queryset)
        if not filterset.is_valid():
            raise StorageError('invalid {} filter: {}'.format(
                self.model.__name__, filterset.errors.as_json()))
        return filterset.qs

    def _fetch(self, id):
        try:
            return self.model.objects.get(pk=id)
        except self.model.DoesNotExist:
            raise RecordNotFound('{} {!r} not found'.format(self.model.__name__, id))

    def _collides(self, fields):
        """Whether a record with these fields would clash with an existing one on a unique key."""
        record = self.model(**fields)
        try:
            with storage_errors():
                record.validate_unique()
                record.validate_constraints()
        except ValidationError:
            return True
        return False

    def create(self, **fields):
        try:
            with storage_errors(), transaction.atomic():
                return self.model.objects.create(**fields)
        except ConstraintViolation as e:
            # IntegrityError doesn't say which constraint failed, so look for the clash. A
            # foreign key checked at commit time (SQLite) is not one.
            if self._collides(fields):
                raise DuplicateRecord(str(e)) from e.__cause__
            raise

    def get(self, **lookup):
        with storage_errors():
            return self.model.objects.filter(**lookup).first()

    def list(self, where=None, skip=None, first=None, order_by=None):
        with storage_errors():
            queryset = self._filter(where)
            if order_by:
                # the primary key keeps the order total, so pages don't overlap
                queryset = queryset.order_by(order_by, 'pk')
            return window(queryset, skip, first)

    def update(self, id, **fields):
        with storage_errors(), transaction.atomic():
            record = self._fetch(id)
            for name, value in fields.items():
                setattr(record, name, value)
            record.save(update_fields=list(fields))
            return record

    def delete(self, id):
        with storage_errors(), transaction.atomic():
            record = self._fetch(id)
            pk = record.pk
            record.delete()
            # Django clears the pk of a deleted instance; callers still need to know what went
            record.pk = pk
            return record

    def exists(self, where=None):
        with storage_errors():
            return self._filter(where).exists()

    def count(self, where=None):
        with storage_errors():
            return self._filter(where).count()

    def related(self, id, relation):
        field = self.model._meta.get_field(relation)
        to_many = field.one_to_many or field.many_to_many
        with storage_errors():
            try:
                record = self.model.objects.get(pk=id)
                value = getattr(record, relation)
            except ObjectDoesNotExist:
                if to_many:
                    return field.related_model.objects.none()
                return None
            if to_many:
                return value.all()
            return value


class DjangoStore(Store):
    def __init__(self):
        # imported here so that this module can be imported before the app registry is ready
        from links.filters import LinkFilterSet, VoteFilterSet
        from links.models import LinkModel, VoteModel
        from users.filters import UserFilterSet
        from users.models import UserModel
        super().__init__(
            users=DjangoEntityStore(UserModel, UserFilterSet),
            links=DjangoEntityStore(LinkModel, LinkFilterSet),
            votes=DjangoEntityStore(VoteModel, VoteFilterSet),
        )


# ========== async adapter ==========

# Subscription payloads are completed inside the event loop, where the Django ORM refuses to run.
# AsyncStore wraps a Store so that every call runs in a worker thread and hands back an awaitable,
# which graphql-core awaits like any other resolver result. A QuerySet that came back lazily is
# evaluated in the worker thread too.

def _evaluate(value):
    if isinstance(value, models.QuerySet):
        return list(value)
    return value


class AsyncEntityStore(object):
    METHODS = ('create', 'get', 'list', 'update', 'delete', 'exists', 'count', 'related')

    def __init__(self, entity_store):
        self.entity_store = entity_store

    def __getattr__(self, name):
        if name not in self.METHODS:
            raise AttributeError(name)
        method = getattr(self.entity_store, name)

        def call(*args, **kwargs):
            return sync_to_async(lambda: _evaluate(method(*args, **kwargs)))()
        return call


class AsyncStore(Store):
    def __init__(self, store):
        super().__init__(
            users=AsyncEntityStore(store.users),
            links=AsyncEntityStore(store.links),
            votes=AsyncEntityStore(store.votes),
        )
