"""Owner identity from Supabase auth."""
import logging
from typing import Optional
from supabase import create_client, Client

from config import SUPABASE_URL, SUPABASE_KEY
from errors import AuthenticationError

logger = logging.getLogger(__name__)


class AuthContext:
    """Resolves the bearer token of a request to the owner's user id."""

    def __init__(self, client: Optional[Client] = None):
        if client is None:
            if not SUPABASE_URL or not SUPABASE_KEY:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment variables")
            client = create_client(SUPABASE_URL, SUPABASE_KEY)
        self.client = client

    def resolve_owner(self, authorization: Optional[str]) -> str:
        """
        Return the user id for an Authorization header.

        Args:
            authorization: Header value, "Bearer <jwt>"

        Raises:
            AuthenticationError: Missing, malformed, or rejected token
        """
        if not authorization:
            raise AuthenticationError("Missing Authorization header")

        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthenticationError("Authorization header must be a bearer token")

        try:
            response = self.client.auth.get_user(token.strip())
        except Exception as e:
            logger.warning(f"Token verification failed: {e}")
            raise AuthenticationError("Unauthorized")

        user = getattr(response, "user", None)
        if user is None or not getattr(user, "id", None):
            raise AuthenticationError("Unauthorized")
        return str(user.id)
