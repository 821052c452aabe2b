import base64
import binascii
import hashlib
import threading
from typing import Any, cast
import structlog
from cryptography.fernet import Fernet, MultiFernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from wpfleet.shared.core.config import get_settings
from wpfleet.shared.core.exceptions import CredentialError

logger = structlog.get_logger()


class EncryptionKeyManager:
    """
    Derives Fernet keys for site credential storage.

    Supports key rotation through fallback keys: the primary key encrypts,
    every configured key may decrypt.
    """

    KDF_ITERATIONS = 100000
    KDF_SALT_LENGTH = 32

    _key_cache: dict[str, Any] = {}
    _cache_lock = threading.Lock()

    @classmethod
    def clear_key_caches(cls) -> None:
        with cls._cache_lock:
            cls._key_cache.clear()

    @classmethod
    def derive_key(
        cls,
        master_key: str,
        salt: str,
        iterations: int = KDF_ITERATIONS,
    ) -> bytes:
        """Derive an encryption key from master key using PBKDF2 (cached per key/salt)."""
        key_fingerprint = hashlib.sha256(master_key.encode()).hexdigest()
        cache_key = f"dk:{key_fingerprint}:{salt}:{iterations}"
        with cls._cache_lock:
            cached = cls._key_cache.get(cache_key)
        if cached is not None:
            return cast(bytes, cached)

        try:
            salt_bytes = base64.b64decode(salt, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid KDF salt format: {str(e)}") from e

        if len(salt_bytes) != cls.KDF_SALT_LENGTH:
            raise ValueError(
                f"Invalid KDF salt length: expected {cls.KDF_SALT_LENGTH} bytes, got {len(salt_bytes)}"
            )

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt_bytes,
            iterations=iterations,
        )
        result = base64.urlsafe_b64encode(kdf.derive(master_key.encode()))
        with cls._cache_lock:
            cls._key_cache[cache_key] = result
        return result

    @classmethod
    def create_multi_fernet(
        cls,
        primary_key: str,
        fallback_keys: tuple[str, ...] | None = None,
        salt: str | None = None,
    ) -> MultiFernet:
        """Create MultiFernet for key rotation support."""
        if salt is None:
            salt = get_settings().KDF_SALT
        if not salt:
            raise ValueError("KDF_SALT is required for credential encryption.")

        all_keys = [primary_key, *(fallback_keys or ())]
        fernet_instances: list[Fernet] = []
        for idx, key in enumerate(all_keys):
            try:
                fernet_instances.append(Fernet(cls.derive_key(key, salt)))
            except ValueError as e:
                logger.error(
                    "fernet_creation_failed",
                    key_index=idx,
                    is_primary=(idx == 0),
                    error=str(e),
                )
                # Primary key must always work; fallback keys are best-effort.
                if idx == 0:
                    raise

        return MultiFernet(fernet_instances)


def _get_multi_fernet() -> MultiFernet:
    settings = get_settings()
    if not settings.ENCRYPTION_KEY:
        raise ValueError("ENCRYPTION_KEY must be set for credential encryption.")
    fallback_keys = (
        tuple(settings.ENCRYPTION_FALLBACK_KEYS)
        if settings.ENCRYPTION_FALLBACK_KEYS
        else None
    )
    return EncryptionKeyManager.create_multi_fernet(settings.ENCRYPTION_KEY, fallback_keys)


def encrypt_string(value: str) -> str:
    """Encrypt a site credential for storage."""
    if not value:
        raise ValueError("Cannot encrypt an empty credential.")
    return _get_multi_fernet().encrypt(value.encode()).decode()


def decrypt_credential(ciphertext: str) -> str:
    """
    Decrypt a stored site credential.

    Raises CredentialError for any failure: the caller treats the site as
    unreachable rather than attempting remote calls with a bad secret.
    """
    if not ciphertext:
        raise CredentialError("Site has no stored credential")

    try:
        return _get_multi_fernet().decrypt(ciphertext.encode()).decode()
    except (InvalidToken, ValueError) as e:
        logger.warning("credential_decryption_failed", error=type(e).__name__)
        raise CredentialError(details={"reason": type(e).__name__}) from e
