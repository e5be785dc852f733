"""Authentication module for squad-memory.

Provides Bearer token validation for the MCP server using FastMCP's auth system.
"""

import hmac
import logging

from fastmcp.server.auth import AccessToken, TokenVerifier

from squad_memory.config import Config

logger = logging.getLogger(__name__)


class BearerTokenVerifier(TokenVerifier):
    """
    FastMCP TokenVerifier that validates bearer tokens against
    SQUAD_MEMORY_AUTH_TOKEN.
    """

    def __init__(self, config: Config):
        """Initialize verifier with config.

        Args:
            config: Config instance with auth_token
        """
        super().__init__()
        self._config = config

    async def verify_token(self, token: str) -> AccessToken | None:
        """
        Verify a bearer token and return access info if valid.

        Args:
            token: The bearer token (without "Bearer " prefix)

        Returns:
            AccessToken if valid, None if invalid
        """
        if self._config.auth_token is None:
            return AccessToken(
                token=token or "anonymous",
                client_id="anonymous",
                scopes=[],
            )

        if not token:
            logger.warning("Empty authentication token")
            return None

        # Constant-time comparison
        if not hmac.compare_digest(token.encode(), self._config.auth_token.encode()):
            logger.warning("Invalid authentication token")
            return None

        return AccessToken(
            token=token,
            client_id="authenticated",
            scopes=[],
        )


def get_auth_provider(config: Config) -> BearerTokenVerifier | None:
    """
    Get the auth provider for FastMCP based on configuration.

    Returns:
        BearerTokenVerifier if SQUAD_MEMORY_AUTH_TOKEN is set, None otherwise
    """
    if config.auth_token is not None:
        return BearerTokenVerifier(config)
    return None
