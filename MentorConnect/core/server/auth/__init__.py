"""
Token-based identification for connections and HTTP requests.

Tokens are issued by the platform's login service; this module only
verifies them. The user id is read from the ``sub`` claim, or from the
``userId`` claim the platform's REST backend puts in its tokens.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

import jwt

from MentorConnect.config import config
from MentorConnect.core.message.protocol import is_valid_user_id
from MentorConnect.core.server.interfaces import AuthResult

logger = logging.getLogger(__name__)

USER_ID_CLAIMS = ("sub", "userId")


class JWTAuthenticator:
    """
    Verifies HS256 JWTs and extracts them from websocket handshakes.
    """

    def __init__(
        self,
        secret: str = None,
        algorithm: str = None,
        token_extractor=None
    ):
        """
        Args:
            secret: Signing key (defaults to config.JWT_SECRET)
            algorithm: JWT algorithm (defaults to config.JWT_ALGORITHM)
            token_extractor: Custom extractor for handshake tokens
        """
        self._secret = secret or config.JWT_SECRET
        self._algorithm = algorithm or config.JWT_ALGORITHM
        self._token_extractor = token_extractor or DefaultTokenExtractor()

    async def authenticate(self, token: str) -> AuthResult:
        """
        Validate a token and resolve its user id.

        Args:
            token: Encoded JWT

        Returns:
            AuthResult with the user id on success, an error code otherwise
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            logger.warning("Authentication failed: token expired")
            return AuthResult(
                success=False,
                error_message="Token has expired",
                error_code="TOKEN_EXPIRED"
            )
        except jwt.InvalidTokenError as e:
            logger.warning("Authentication failed: invalid token - %s", e)
            return AuthResult(
                success=False,
                error_message=f"Invalid token: {e}",
                error_code="INVALID_TOKEN"
            )

        user_id = next((payload[claim] for claim in USER_ID_CLAIMS if payload.get(claim)), None)
        if user_id is not None:
            user_id = str(user_id)
        if not is_valid_user_id(user_id):
            return AuthResult(
                success=False,
                error_message="No usable user id in token payload",
                error_code="INVALID_PAYLOAD"
            )
        return AuthResult(success=True, user_id=user_id)

    def extract_token(self, transport_context: Any) -> Optional[str]:
        return self._token_extractor.extract(transport_context)


class DefaultTokenExtractor:
    """
    Finds a token in a websocket handshake.

    Looks at the ``token`` query parameter first, then the ``authToken``
    cookie.
    """

    def extract(self, websocket: Any) -> Optional[str]:
        return self._extract_from_query(websocket) or self._extract_from_cookie(websocket)

    def _extract_from_query(self, websocket: Any) -> Optional[str]:
        path = self._get_path(websocket)
        if not path or "?" not in path:
            return None
        _, query = path.split("?", 1)
        tokens = parse_qs(query).get("token", [])
        return tokens[0] if tokens else None

    def _extract_from_cookie(self, websocket: Any) -> Optional[str]:
        cookie_header = self._get_headers(websocket).get("Cookie", "")
        for cookie in cookie_header.split(";"):
            name, _, value = cookie.strip().partition("=")
            if name == "authToken" and value:
                return value.strip()
        return None

    # noinspection PyMethodMayBeStatic
    def _get_path(self, websocket: Any) -> Optional[str]:
        request = getattr(websocket, "request", None)
        if request is None:
            return None
        return getattr(request, "path", None)

    # noinspection PyMethodMayBeStatic
    def _get_headers(self, websocket: Any) -> Dict[str, str]:
        request = getattr(websocket, "request", None)
        headers = getattr(request, "headers", None)
        if headers is None:
            return {}
        return dict(headers)


__all__ = [
    'JWTAuthenticator',
    'DefaultTokenExtractor',
]
