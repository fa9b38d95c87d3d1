"""Services for Creamie chat sync."""
from .api_client import APIClient, APIError, APIClientError
from .auth_service import AuthService, AuthenticationError, TokenStore
from .chat_gateway import ChatGateway, ChatGatewayError, GatewayError
from .change_feed import ChangeFeedListener, ListenerState, RetryPolicy
from .chat_store import ChatStore
from .dog_profile_service import DogProfileService

__all__ = ['APIClient', 'APIError', 'APIClientError', 'AuthService', 'AuthenticationError', 'TokenStore', 'ChatGateway', 'ChatGatewayError', 'GatewayError', 'ChangeFeedListener', 'ListenerState', 'RetryPolicy', 'ChatStore', 'DogProfileService']
