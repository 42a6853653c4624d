"""
Provider API keys.

Keys live in the system keychain (via ``keyring``) keyed by provider id.
The orchestrator only reads them, once per agent spawn, to inject them as
environment variables; the UI manages them through save/delete/list.
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol

import keyring

from keyring.errors import KeyringError, PasswordDeleteError

from agent_bridge.core.constants import KEYRING_SERVICE_NAME
from agent_bridge.core.exceptions import CredentialError
from agent_bridge.utils.logger import logger


class Provider(str, Enum):
    """Supported LLM providers."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"

    @property
    def env_var_name(self) -> str:
        """Environment variable the agent reads this provider's key from."""
        return _ENV_VAR_NAMES[self]

    @classmethod
    def parse(cls, provider_id: str) -> Provider:
        """Parse a provider id case-insensitively.

        Raises:
            ValueError: If the provider is not supported.
        """
        try:
            return cls(provider_id.lower())
        except ValueError:
            raise ValueError(f"Unknown provider: {provider_id}") from None


_ENV_VAR_NAMES = {
    Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.GOOGLE: "GOOGLE_API_KEY",
}


class SecretStore(Protocol):
    """Key-value store of provider secrets."""

    def get(self, provider_id: str) -> str | None: ...

    def save(self, provider_id: str, secret: str) -> None: ...

    def delete(self, provider_id: str) -> None: ...

    def list(self) -> list[tuple[str, bool]]: ...


class KeyringSecretStore:
    """Secret store backed by the operating system keychain."""

    def __init__(self, service_name: str = KEYRING_SERVICE_NAME):
        self.service_name = service_name

    def get(self, provider_id: str) -> str | None:
        provider = Provider.parse(provider_id)
        try:
            secret = keyring.get_password(self.service_name, provider.value)
        except KeyringError as e:
            raise CredentialError(f"Failed to retrieve credential: {e}", cause=e) from e

        if secret is None:
            logger.debug(f"No credential stored for {provider.value}")
        return secret

    def save(self, provider_id: str, secret: str) -> None:
        """Store a key, verifying it by reading it back."""
        provider = Provider.parse(provider_id)
        try:
            keyring.set_password(self.service_name, provider.value, secret)
            stored = keyring.get_password(self.service_name, provider.value)
        except KeyringError as e:
            raise CredentialError(f"Failed to save credential: {e}", cause=e) from e

        if stored != secret:
            raise CredentialError("Credential verification failed: stored value doesn't match")
        logger.info(f"Saved credential for {provider.value}")

    def delete(self, provider_id: str) -> None:
        """Remove a key; deleting a missing key is not an error."""
        provider = Provider.parse(provider_id)
        try:
            keyring.delete_password(self.service_name, provider.value)
        except PasswordDeleteError:
            logger.debug(f"No credential to delete for {provider.value}")
        except KeyringError as e:
            raise CredentialError(f"Failed to delete credential: {e}", cause=e) from e
        else:
            logger.info(f"Deleted credential for {provider.value}")

    def list(self) -> list[tuple[str, bool]]:
        return [(p.value, self.get(p.value) is not None) for p in Provider]


class InMemorySecretStore:
    """Process-local secret store for tests and keychain-less environments."""

    def __init__(self, secrets: dict[str, str] | None = None):
        self._secrets: dict[Provider, str] = {}
        for provider_id, secret in (secrets or {}).items():
            self.save(provider_id, secret)

    def get(self, provider_id: str) -> str | None:
        return self._secrets.get(Provider.parse(provider_id))

    def save(self, provider_id: str, secret: str) -> None:
        self._secrets[Provider.parse(provider_id)] = secret

    def delete(self, provider_id: str) -> None:
        self._secrets.pop(Provider.parse(provider_id), None)

    def list(self) -> list[tuple[str, bool]]:
        return [(p.value, p in self._secrets) for p in Provider]


def credentials_as_env(store: SecretStore | None) -> dict[str, str]:
    """Map every stored key to its provider's environment variable."""
    if store is None:
        return {}

    env: dict[str, str] = {}
    for provider_id, has_key in store.list():
        if not has_key:
            continue
        secret = store.get(provider_id)
        if secret:
            env[Provider.parse(provider_id).env_var_name] = secret
    return env
