"""Public expertise provider utilities."""

from services.providers.base import BaseExpertiseProvider, ProviderAttachment
from services.providers.catalog import get_provider, register_provider, reset_providers
from services.providers.openai_provider import OpenAIExpertiseProvider

__all__ = [
    "BaseExpertiseProvider",
    "OpenAIExpertiseProvider",
    "ProviderAttachment",
    "get_provider",
    "register_provider",
    "reset_providers",
]
