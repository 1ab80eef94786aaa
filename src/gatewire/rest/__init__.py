"""Request layer — stateless HTTP actions and the OAuth2 code exchange."""

from .client import RestClient
from .oauth import OAuthClient, OAuthToken

__all__ = ["OAuthClient", "OAuthToken", "RestClient"]
