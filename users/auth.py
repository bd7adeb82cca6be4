# hackernews-graphql -- users/auth.py
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
from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password

from hackernews.errors import ErrorKind, Outcome


# ========== bearer tokens ==========

class InvalidToken(Exception):
    pass


class TokenService(object):
    """Issues and verifies the signed bearer tokens handed out by signup and login.

    A token is an HS256 JWT with the payload {'userId': <id>, 'iat': <issued at>}, plus 'exp' when
    a lifetime is configured. There is one signing secret for the whole process; changing it
    invalidates every token issued so far.
    """

    ALGORITHM = 'HS256'

    def __init__(self, secret, ttl=None):
        self.secret = secret
        self.ttl = ttl

    @classmethod
    def from_settings(cls):
        return cls(settings.HACKERNEWS_APP_SECRET, settings.HACKERNEWS_TOKEN_TTL or None)

    def issue(self, user_id):
        now = datetime.datetime.now(tz=datetime.timezone.utc)
        payload = {'userId': user_id, 'iat': now}
        if self.ttl:
            payload['exp'] = now + datetime.timedelta(seconds=self.ttl)
        return jwt.encode(payload, self.secret, algorithm=self.ALGORITHM)

    def verify(self, token):
        """Return the user id a token was issued for. Raises InvalidToken for a bad signature, a
        malformed token or payload, or an expired token.
        """
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.ALGORITHM])
        except jwt.InvalidTokenError as e:
            raise InvalidToken(str(e)) from e
        user_id = payload.get('userId')
        if not isinstance(user_id, str) or not user_id:
            raise InvalidToken('token payload has no userId')
        return user_id


# ========== caller identity ==========

def get_user_id(context):
    """Return an Outcome holding the id of the user making this request, taken from the
    'Authorization: Bearer <token>' header. This is the only authorization check there is: any
    caller with a valid token may do anything that requires logging in.
    """
    auth = context.header('Authorization')
    if not auth or not auth.startswith('Bearer '):
        return Outcome.failure(ErrorKind.NOT_AUTHENTICATED)
    try:
        return Outcome.success(context.tokens.verify(auth[7:]))
    except InvalidToken:
        return Outcome.failure(ErrorKind.NOT_AUTHENTICATED)


# ========== passwords ==========

# Django's hashers: salted PBKDF2 by default, compared in constant time.

def hash_password(password):
    return make_password(password)


def password_matches(password, encoded):
    return check_password(password, encoded)
