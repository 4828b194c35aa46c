"""At-rest encryption and resolution of tenant Dr. Green credentials.

Stored values use AES-256-GCM in the form `iv:authTag:ciphertext`, each
part hex-encoded, with a 32-byte key derived as SHA-256 of ENCRYPTION_KEY.

Both the API key and the secret key must be present and decryptable before
any outbound call; the resolver raises MissingCredentialsError otherwise.
"""

import hashlib
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from budstack.config import settings
from budstack.drgreen.client import DrGreenCredentials
from budstack.errors import ConfigurationError, DecryptionError, MissingCredentialsError

logger = structlog.get_logger(__name__)

IV_BYTES = 16
TAG_BYTES = 16


def is_encrypted_value(value: str) -> bool:
    """Check whether a stored value is in `iv:authTag:ciphertext` form."""
    return len(value.split(":")) == 3


def _migration_allowed(deadline: str | None) -> bool:
    if not deadline:
        return False
    try:
        deadline_at = datetime.fromisoformat(deadline)
    except ValueError:
        return False
    if deadline_at.tzinfo is None:
        deadline_at = deadline_at.replace(tzinfo=UTC)
    return datetime.now(UTC) < deadline_at


class CredentialCipher:
    """AES-256-GCM cipher for credential fields."""

    def __init__(self, key: str | None = None) -> None:
        """Initialize the cipher.

        Args:
            key: Key material. Defaults to ENCRYPTION_KEY from settings.

        Raises:
            ConfigurationError: If no key is configured.
        """
        key = key if key is not None else settings.ENCRYPTION_KEY
        if not key:
            raise ConfigurationError("ENCRYPTION_KEY is not defined in environment variables")
        self._aesgcm = AESGCM(hashlib.sha256(key.encode("utf-8")).digest())

    def encrypt(self, text: str) -> str:
        """Encrypt a string.

        Returns:
            `iv:authTag:ciphertext` in hex, or "" for empty input.
        """
        if not text:
            return ""

        iv = os.urandom(IV_BYTES)
        sealed = self._aesgcm.encrypt(iv, text.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(
        self,
        value: str,
        *,
        allow_unencrypted_migration: bool = False,
        migration_deadline: str | None = None,
    ) -> str:
        """Decrypt an `iv:authTag:ciphertext` string.

        Args:
            value: Stored value.
            allow_unencrypted_migration: Accept plaintext values while the
                migration deadline has not passed.
            migration_deadline: ISO date. Defaults to
                ENCRYPTION_MIGRATION_DEADLINE from settings.

        Returns:
            Plaintext, or "" for empty input.

        Raises:
            DecryptionError: If the value is malformed or fails authentication.
        """
        if not value:
            return ""

        if not is_encrypted_value(value):
            deadline = migration_deadline or settings.ENCRYPTION_MIGRATION_DEADLINE
            if allow_unencrypted_migration and _migration_allowed(deadline):
                logger.warning("credential_unencrypted_value_accepted", deadline=deadline)
                return value
            raise DecryptionError("Encrypted value is not in the expected format.")

        iv_hex, tag_hex, ciphertext_hex = value.split(":")
        try:
            iv = bytes.fromhex(iv_hex)
            sealed = bytes.fromhex(ciphertext_hex) + bytes.fromhex(tag_hex)
            plaintext = self._aesgcm.decrypt(iv, sealed, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, ValueError) as e:
            logger.error("credential_decryption_failed", error=e.__class__.__name__)
            raise DecryptionError("Decryption failed") from e


@dataclass
class StoredCredentials:
    """Credential columns of a tenant record, as stored."""

    api_key: str | None
    secret_key: str | None
    api_url: str | None = None


TenantLookup = Callable[[str], Awaitable[StoredCredentials | None]]
PlatformUrlLookup = Callable[[], Awaitable[str | None]]


class TenantCredentialResolver:
    """Resolves decrypted Dr. Green credentials for a tenant.

    Tenant records and platform configuration come from injected async
    lookups so this class stays independent of the persistence layer.
    """

    def __init__(
        self,
        fetch_tenant: TenantLookup,
        cipher: CredentialCipher,
        *,
        fetch_platform_api_url: PlatformUrlLookup | None = None,
        migration_deadline: str | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            fetch_tenant: Async lookup of a tenant's stored credential columns.
            cipher: Cipher for the stored values.
            fetch_platform_api_url: Async lookup of the platform API URL.
            migration_deadline: ISO date until which plaintext values are
                accepted. Defaults to ENCRYPTION_MIGRATION_DEADLINE.
        """
        self._fetch_tenant = fetch_tenant
        self._cipher = cipher
        self._fetch_platform_api_url = fetch_platform_api_url
        self._migration_deadline = migration_deadline
        self._logger = logger.bind(component="credential_resolver")

    def _reveal(self, value: str) -> str:
        # Plaintext values predating encryption pass only before the deadline
        return self._cipher.decrypt(
            value,
            allow_unencrypted_migration=True,
            migration_deadline=self._migration_deadline,
        )

    async def resolve(self, tenant_id: str) -> DrGreenCredentials:
        """Get the decrypted credential pair for a tenant.

        The API URL is the tenant override, then the platform setting,
        then None (the client's default).

        Raises:
            MissingCredentialsError: If the tenant is unknown, either field
                is missing, or decryption fails.
        """
        stored = await self._fetch_tenant(tenant_id)
        if stored is None:
            raise MissingCredentialsError(
                f"Tenant not found: {tenant_id}",
                details={"tenant_id": tenant_id},
            )

        if not stored.api_key or not stored.secret_key:
            raise MissingCredentialsError(
                "Dr Green API credentials are not configured for this store.",
                details={"tenant_id": tenant_id},
            )

        try:
            api_key = self._reveal(stored.api_key)
            secret_key = self._reveal(stored.secret_key)
        except DecryptionError as e:
            self._logger.error("tenant_credentials_undecryptable", tenant_id=tenant_id)
            raise MissingCredentialsError(
                "Failed to decrypt Dr Green credentials. Please update your settings.",
                details={"tenant_id": tenant_id},
            ) from e

        if not api_key or not secret_key:
            raise MissingCredentialsError(
                "Failed to decrypt Dr Green credentials. Please update your settings.",
                details={"tenant_id": tenant_id},
            )

        api_url = stored.api_url
        if not api_url and self._fetch_platform_api_url is not None:
            api_url = await self._fetch_platform_api_url()

        return DrGreenCredentials(
            api_key=api_key,
            secret_key=secret_key,
            api_url=api_url or None,
        )
