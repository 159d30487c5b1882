"""
Tests for token identification.
"""

from unittest.mock import MagicMock

import pytest

from MentorConnect.core.server.auth import DefaultTokenExtractor
from MentorConnect.test.helpers import TEST_SECRET


class TestJWTAuthenticator:

    @pytest.mark.asyncio
    async def test_valid_token(self, authenticator, test_data_generator):
        token = test_data_generator.generate_jwt_token("alice")

        result = await authenticator.authenticate(token)

        assert result.success
        assert result.user_id == "alice"

    @pytest.mark.asyncio
    async def test_user_id_claim(self, authenticator, test_data_generator):
        token = test_data_generator.generate_jwt_token("mentor_7", claim="userId")

        result = await authenticator.authenticate(token)

        assert result.user_id == "mentor_7"

    @pytest.mark.asyncio
    async def test_expired_token(self, authenticator, test_data_generator):
        token = test_data_generator.generate_jwt_token("alice", expires_in=-60)

        result = await authenticator.authenticate(token)

        assert not result.success
        assert result.error_code == "TOKEN_EXPIRED"

    @pytest.mark.asyncio
    async def test_wrong_secret(self, authenticator, test_data_generator):
        token = test_data_generator.generate_jwt_token("alice", secret=TEST_SECRET + "-other")

        result = await authenticator.authenticate(token)

        assert result.error_code == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_garbage_token(self, authenticator):
        result = await authenticator.authenticate("not-a-jwt")

        assert result.error_code == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_unusable_user_id(self, authenticator, test_data_generator):
        token = test_data_generator.generate_jwt_token("has space")

        result = await authenticator.authenticate(token)

        assert result.error_code == "INVALID_PAYLOAD"


class TestDefaultTokenExtractor:

    def setup_method(self):
        self.extractor = DefaultTokenExtractor()

    def _websocket(self, path="/", headers=None):
        websocket = MagicMock()
        websocket.request.path = path
        websocket.request.headers = headers or {}
        return websocket

    def test_query_parameter(self):
        websocket = self._websocket("/?token=abc.def.ghi")

        assert self.extractor.extract(websocket) == "abc.def.ghi"

    def test_cookie(self):
        websocket = self._websocket(headers={"Cookie": "theme=dark; authToken=xyz"})

        assert self.extractor.extract(websocket) == "xyz"

    def test_query_wins_over_cookie(self):
        websocket = self._websocket("/?token=from-query", {"Cookie": "authToken=from-cookie"})

        assert self.extractor.extract(websocket) == "from-query"

    def test_no_token(self):
        assert self.extractor.extract(self._websocket()) is None
