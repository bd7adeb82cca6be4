# hackernews-graphql -- hackernews/errors.py
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

import enum
import logging

from graphql import GraphQLError

from hackernews.store import ConstraintViolation, DuplicateRecord, RecordNotFound, StorageError


logger = logging.getLogger(__name__)


# ========== error kinds ==========

# Every way an operation can fail, short of a bug. Resolvers never raise these; they hand an
# Outcome back to graphene, and Outcome.result() turns a failed one into a GraphQLError *instance*
# that graphql-core reports as a field-level error on that one field. Sibling fields in the same
# request are unaffected.

class ErrorKind(enum.Enum):
    NOT_AUTHENTICATED = 'NOT_AUTHENTICATED'
    INVALID_CREDENTIALS = 'INVALID_CREDENTIALS'
    NO_SUCH_USER = 'NO_SUCH_USER'
    DUPLICATE_EMAIL = 'DUPLICATE_EMAIL'
    DUPLICATE_VOTE = 'DUPLICATE_VOTE'
    NOT_FOUND = 'NOT_FOUND'
    STORAGE_ERROR = 'STORAGE_ERROR'

    @property
    def code(self):
        """The machine-readable code reported in the error's extensions."""
        # login failures only differ in their message text
        if self is ErrorKind.NO_SUCH_USER:
            return ErrorKind.INVALID_CREDENTIALS.value
        return self.value


DEFAULT_MESSAGES = {
    ErrorKind.NOT_AUTHENTICATED: 'Not authenticated',
    ErrorKind.INVALID_CREDENTIALS: 'Invalid password',
    ErrorKind.NO_SUCH_USER: 'No such user found',
    ErrorKind.DUPLICATE_EMAIL: 'A user with that email address already exists!',
    ErrorKind.DUPLICATE_VOTE: 'A vote already exists for this user and link!',
    ErrorKind.NOT_FOUND: 'Requested record not found!',
    ErrorKind.STORAGE_ERROR: 'Storage failure',
}


# ========== outcomes ==========

class Outcome(object):
    """The result of one step of an operation: either a value, or an ErrorKind with a message."""

    __slots__ = ('value', 'error', 'message')

    def __init__(self, value=None, error=None, message=None):
        self.value = value
        self.error = error
        self.message = message

    @classmethod
    def success(cls, value):
        return cls(value=value)

    @classmethod
    def failure(cls, error, message=None):
        return cls(error=error, message=message or DEFAULT_MESSAGES[error])

    @property
    def ok(self):
        return self.error is None

    def then(self, step):
        """Feed a successful value to step(), which must return an Outcome. Failures pass
        through untouched, so a chain stops at its first failed step.
        """
        if not self.ok:
            return self
        return step(self.value)

    def result(self):
        """Return the value, or a GraphQLError describing the failure, for graphene to complete."""
        if self.ok:
            return self.value
        return GraphQLError(self.message, extensions={'code': self.error.code})

    def __repr__(self):
        if self.ok:
            return 'Outcome.success({!r})'.format(self.value)
        return 'Outcome.failure({}, {!r})'.format(self.error.name, self.message)


def attempt(call, not_found=ErrorKind.NOT_FOUND, conflict=ErrorKind.STORAGE_ERROR,
            message=None):
    """Run a facade call and capture its result, or its failure, as an Outcome.

    `not_found` and `conflict` choose the ErrorKind reported for a missing record and for a
    duplicate record, which depend on the operation. `message` overrides the default message
    for those two kinds. Any other constraint violation is a storage failure.
    """
    try:
        return Outcome.success(call())
    except RecordNotFound:
        return Outcome.failure(not_found, message)
    except DuplicateRecord as e:
        if conflict is ErrorKind.STORAGE_ERROR:
            logger.warning('unexpected duplicate record: %s', e)
            return Outcome.failure(conflict)
        return Outcome.failure(conflict, message)
    except ConstraintViolation as e:
        logger.warning('constraint violation: %s', e)
        return Outcome.failure(ErrorKind.STORAGE_ERROR)
    except StorageError as e:
        logger.warning('storage failure: %s', e)
        return Outcome.failure(ErrorKind.STORAGE_ERROR)
