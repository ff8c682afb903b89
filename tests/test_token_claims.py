"""
Tests for unverified token claim helpers.
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from taxi_client.auth.token_claims import (
    get_token_expiration, get_token_user_id, get_unverified_claims, is_token_expired
)


def make_token(**claims):
    return jwt.encode(claims, 'not-the-server-secret', algorithm='HS256')


class TestTokenClaims:

    def test_claims_are_read_without_the_signing_key(self):
        token = make_token(user_id=12, token_type='access')

        claims = get_unverified_claims(token)

        assert claims['user_id'] == 12
        assert claims['token_type'] == 'access'

    @pytest.mark.parametrize('token', [None, '', 'opaque-token', 'a.b.c'])
    def test_unreadable_tokens(self, token):
        assert get_unverified_claims(token) is None
        assert get_token_expiration(token) is None
        assert is_token_expired(token) is None
        assert get_token_user_id(token) is None

    def test_expiration(self):
        expires_at = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
        token = make_token(exp=int(expires_at.timestamp()))

        assert get_token_expiration(token) == expires_at
        assert is_token_expired(token, now=expires_at - timedelta(seconds=1)) is False
        assert is_token_expired(token, now=expires_at) is True

    def test_expired_token(self):
        token = make_token(exp=int((datetime.now(timezone.utc) - timedelta(minutes=5)).timestamp()))

        assert is_token_expired(token) is True

    def test_missing_exp(self):
        token = make_token(user_id=3)

        assert get_token_expiration(token) is None
        assert is_token_expired(token) is None

    def test_user_id_is_a_string(self):
        assert get_token_user_id(make_token(user_id=3)) == '3'
        assert get_token_user_id(make_token(sub='x')) is None
