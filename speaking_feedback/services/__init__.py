"""Service layer helpers for external integrations."""

from .aws import create_boto3_client
from .llm_client import ProviderClient, ProviderError
from .providers import ProviderEndpoint, normalise_provider, resolve_endpoint

__all__ = [
    "ProviderClient",
    "ProviderEndpoint",
    "ProviderError",
    "create_boto3_client",
    "normalise_provider",
    "resolve_endpoint",
]
