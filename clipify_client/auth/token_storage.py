"""
Secure Token Storage for the Clipify desktop client.

This module persists the access token, refresh token, token metadata and user
profile. The system keyring is used when it is usable; otherwise everything is
kept in a single Fernet-encrypted file that is replaced atomically on write.
"""

import os
import json
import time
import logging
import base64
import dataclasses
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, List, Callable, Iterable, Union

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from clipify_shared.exceptions import (
    TokenStorageError, StorageNotInitializedError, ValidationError, ErrorCode
)
from clipify_shared.models import (
    TokenRecord, UserProfile, TokenValidationResult, normalize_plan
)

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = 'access_token'
REFRESH_TOKEN_KEY = 'refresh_token'
TOKEN_METADATA_KEY = 'token_metadata'
USER_INFO_KEY = 'user_info'

ALL_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, TOKEN_METADATA_KEY, USER_INFO_KEY)
_JSON_KEYS = frozenset({TOKEN_METADATA_KEY, USER_INFO_KEY})

DEFAULT_EXPIRY_BUFFER = 300


class SecureTokenStorage:
    """
    Secure storage for authentication tokens and the user profile.

    Call initialize() once before use; every accessor raises
    StorageNotInitializedError until then. Reads that fail are reported as
    absence, writes that fail raise TokenStorageError.
    """

    def __init__(
        self,
        service_name: str = "clipify-desktop",
        storage_dir: Optional[Path] = None,
        expiry_buffer: int = DEFAULT_EXPIRY_BUFFER,
        use_keyring: Optional[bool] = None,
        clock: Callable[[], float] = time.time
    ):
        self.service_name = service_name
        self.expiry_buffer = expiry_buffer
        self._storage_dir = Path(storage_dir) if storage_dir else None
        self._use_keyring = use_keyring
        self._clock = clock

        self.keyring_available = False
        self.storage_path: Optional[Path] = None
        self._encryption_key: Optional[bytes] = None
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Select the storage backend. Safe to call more than once."""
        if self._initialized:
            return

        if self._use_keyring is None:
            self.keyring_available = self._check_keyring_availability()
        else:
            self.keyring_available = self._use_keyring

        if not self.keyring_available:
            self.storage_path = self._get_storage_path()

        self._initialized = True
        logger.info(f"Token storage initialized (keyring: {self.keyring_available})")

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise StorageNotInitializedError()

    def _now(self) -> int:
        return int(self._clock())

    def _check_keyring_availability(self) -> bool:
        """Check if system keyring is available."""
        try:
            import keyring
            test_key = f"{self.service_name}_availability_check"
            keyring.set_password(self.service_name, test_key, "test_value")
            result = keyring.get_password(self.service_name, test_key)
            keyring.delete_password(self.service_name, test_key)
            return result == "test_value"
        except Exception as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    def _get_storage_path(self) -> Path:
        """Get path for encrypted file storage."""
        if self._storage_dir:
            config_dir = self._storage_dir
        else:
            xdg_config = os.environ.get('XDG_CONFIG_HOME')
            if xdg_config:
                config_dir = Path(xdg_config) / 'clipify'
            else:
                config_dir = Path.home() / '.config' / 'clipify'

        try:
            config_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TokenStorageError(
                f"Cannot create token storage directory {config_dir}: {e}",
                error_code=ErrorCode.STORAGE_BACKEND_UNAVAILABLE,
                cause=e
            )
        return config_dir / 'auth_store.enc'

    # Encryption for the file backend

    def _get_encryption_key(self) -> bytes:
        """Get or create the Fernet key kept beside the encrypted store."""
        if self._encryption_key:
            return self._encryption_key

        key_path = self.storage_path.with_name('auth_store.key')
        if key_path.exists():
            self._encryption_key = key_path.read_bytes().strip()
            return self._encryption_key

        password = os.urandom(32)
        salt = os.urandom(16)
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(password))

        key_path.write_bytes(key)
        os.chmod(key_path, 0o600)

        self._encryption_key = key
        return key

    def _encrypt_data(self, data: str) -> bytes:
        return Fernet(self._get_encryption_key()).encrypt(data.encode())

    def _decrypt_data(self, encrypted_data: bytes) -> str:
        return Fernet(self._get_encryption_key()).decrypt(encrypted_data).decode()

    # Backend primitives

    def _load_file(self) -> Dict[str, Any]:
        if not self.storage_path.exists():
            return {}
        encrypted_data = self.storage_path.read_bytes()
        return json.loads(self._decrypt_data(encrypted_data))

    def _save_file(self, entries: Dict[str, Any]) -> None:
        if not entries:
            if self.storage_path.exists():
                self.storage_path.unlink()
            return

        encrypted_data = self._encrypt_data(json.dumps(entries))
        tmp_path = self.storage_path.with_name(self.storage_path.name + '.tmp')
        tmp_path.write_bytes(encrypted_data)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.storage_path)

    def _read_entries(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Read entries; a failing backend is reported as missing data."""
        try:
            if self.keyring_available:
                return self._read_entries_keyring(keys)
            all_entries = self._load_file()
            return {key: all_entries[key] for key in keys if key in all_entries}
        except (InvalidToken, ValueError) as e:
            logger.warning(f"Stored authentication data is unreadable: {e}")
        except Exception as e:
            logger.error(f"Failed to read from token storage: {e}")
        return {}

    def _read_entries_keyring(self, keys: Iterable[str]) -> Dict[str, Any]:
        import keyring

        entries = {}
        for key in keys:
            value = keyring.get_password(self.service_name, key)
            if value is None:
                continue
            entries[key] = json.loads(value) if key in _JSON_KEYS else value
        return entries

    def _write_entries(self, updates: Dict[str, Any], deletions: Iterable[str] = ()) -> None:
        """
        Apply updates and deletions as one composite write.

        The file backend rewrites the whole store in a single replace. The
        keyring has no transactions, so entries are written one after another
        and a failure part way through can leave a mix of old and new entries.
        """
        deletions = [key for key in deletions if key not in updates]
        try:
            if self.keyring_available:
                self._write_entries_keyring(updates, deletions)
            else:
                try:
                    all_entries = self._load_file()
                except (InvalidToken, ValueError) as e:
                    logger.warning(f"Discarding unreadable token store: {e}")
                    all_entries = {}
                all_entries.update(updates)
                for key in deletions:
                    all_entries.pop(key, None)
                self._save_file(all_entries)
        except Exception as e:
            logger.error(f"Failed to write token storage: {e}")
            raise TokenStorageError(f"Failed to write token storage: {e}", cause=e)

    def _write_entries_keyring(self, updates: Dict[str, Any], deletions: List[str]) -> None:
        import keyring
        from keyring.errors import PasswordDeleteError

        for key, value in updates.items():
            stored = json.dumps(value) if key in _JSON_KEYS else value
            keyring.set_password(self.service_name, key, stored)

        for key in deletions:
            try:
                keyring.delete_password(self.service_name, key)
            except PasswordDeleteError:
                pass  # already absent

    # Validation

    def validate_token(self, token: Any) -> TokenValidationResult:
        """Check token shape. JWT-looking tokens must have three segments."""
        errors = []

        if not token or not isinstance(token, str):
            errors.append("Token must be a non-empty string")
        elif token.strip() == "":
            errors.append("Token cannot be empty or whitespace only")
        elif '.' in token and len(token.split('.')) != 3:
            errors.append("Invalid JWT format: must have 3 parts separated by dots")

        return TokenValidationResult(is_valid=not errors, is_expired=False, errors=errors)

    def _require_valid(self, token: Any, field_name: str) -> None:
        validation = self.validate_token(token)
        if not validation.is_valid:
            message = f"Invalid token: {', '.join(validation.errors)}"
            logger.error(f"Refusing to store {field_name}: {message}")
            raise ValidationError(
                message,
                field_name=field_name,
                error_code=ErrorCode.VALIDATION_INVALID_TOKEN_FORMAT
            )

    def is_token_expired(self, expires_at: Optional[int]) -> bool:
        """A token is expired from expires_at - expiry_buffer onwards."""
        if expires_at is None:
            return False
        return self._now() >= expires_at - self.expiry_buffer

    # Token writes

    def store_token_info(self, record: TokenRecord) -> None:
        """
        Replace the stored token record as a whole.

        Args:
            record: Token record to persist. A record without a refresh token
                removes any previously stored refresh token.

        Raises:
            ValidationError: If either token is malformed
            TokenStorageError: If the backend write fails
        """
        self._ensure_initialized()

        self._require_valid(record.access_token, ACCESS_TOKEN_KEY)
        if record.refresh_token is not None:
            self._require_valid(record.refresh_token, REFRESH_TOKEN_KEY)

        if record.issued_at is None:
            record = dataclasses.replace(record, issued_at=self._now())

        updates = {
            ACCESS_TOKEN_KEY: record.access_token,
            TOKEN_METADATA_KEY: record.to_metadata(),
        }
        deletions = []
        if record.refresh_token:
            updates[REFRESH_TOKEN_KEY] = record.refresh_token
        else:
            deletions.append(REFRESH_TOKEN_KEY)

        self._write_entries(updates, deletions)
        logger.info(
            f"Token record stored (refresh token: {bool(record.refresh_token)}, "
            f"expires_at: {record.expires_at})"
        )

    def store_access_token(
        self,
        token: str,
        expires_at: Optional[int] = None,
        token_type: str = "Bearer",
        scope: Optional[str] = None
    ) -> None:
        """Store an access token and its metadata, keeping the refresh token."""
        self._ensure_initialized()
        self._require_valid(token, ACCESS_TOKEN_KEY)

        metadata = TokenRecord(
            access_token=token,
            token_type=token_type,
            scope=scope,
            expires_at=expires_at,
            issued_at=self._now()
        ).to_metadata()
        self._write_entries({ACCESS_TOKEN_KEY: token, TOKEN_METADATA_KEY: metadata})
        logger.info("Access token stored")

    def store_refresh_token(self, refresh_token: str) -> None:
        self._ensure_initialized()
        self._require_valid(refresh_token, REFRESH_TOKEN_KEY)
        self._write_entries({REFRESH_TOKEN_KEY: refresh_token})
        logger.info("Refresh token stored")

    # Token reads

    def get_access_token(self) -> Optional[str]:
        """Return the access token, or None if absent or expired."""
        self._ensure_initialized()

        entries = self._read_entries([ACCESS_TOKEN_KEY, TOKEN_METADATA_KEY])
        token = entries.get(ACCESS_TOKEN_KEY)
        if not token:
            return None

        metadata = entries.get(TOKEN_METADATA_KEY) or {}
        if self.is_token_expired(metadata.get('expiresAt')):
            logger.info("Stored access token is expired")
            return None

        return token

    def get_refresh_token(self) -> Optional[str]:
        self._ensure_initialized()
        return self._read_entries([REFRESH_TOKEN_KEY]).get(REFRESH_TOKEN_KEY) or None

    def get_token_metadata(self) -> Optional[Dict[str, Any]]:
        self._ensure_initialized()
        return self._read_entries([TOKEN_METADATA_KEY]).get(TOKEN_METADATA_KEY)

    def get_token_info(self) -> Optional[TokenRecord]:
        """Return the whole stored record, expired or not, or None."""
        self._ensure_initialized()

        entries = self._read_entries([ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, TOKEN_METADATA_KEY])
        if not entries.get(ACCESS_TOKEN_KEY):
            return None
        return TokenRecord.from_storage(
            entries[ACCESS_TOKEN_KEY],
            entries.get(REFRESH_TOKEN_KEY),
            entries.get(TOKEN_METADATA_KEY)
        )

    def has_valid_access_token(self) -> bool:
        return self.get_access_token() is not None

    def has_refresh_token(self) -> bool:
        return self.get_refresh_token() is not None

    def get_token_validation_status(self) -> TokenValidationResult:
        """Describe the stored access token: format problems and expiry."""
        self._ensure_initialized()

        entries = self._read_entries([ACCESS_TOKEN_KEY, TOKEN_METADATA_KEY])
        token = entries.get(ACCESS_TOKEN_KEY)
        if not token:
            return TokenValidationResult(
                is_valid=False,
                is_expired=False,
                errors=["No access token found"]
            )

        validation = self.validate_token(token)
        expires_at = (entries.get(TOKEN_METADATA_KEY) or {}).get('expiresAt')
        is_expired = self.is_token_expired(expires_at)

        return TokenValidationResult(
            is_valid=validation.is_valid and not is_expired,
            is_expired=is_expired,
            errors=validation.errors,
            expires_in=expires_at - self._now() if expires_at is not None else None
        )

    # Removal

    def clear_access_token(self) -> None:
        self._ensure_initialized()
        self._write_entries({}, [ACCESS_TOKEN_KEY, TOKEN_METADATA_KEY])
        logger.info("Access token cleared")

    def clear_refresh_token(self) -> None:
        self._ensure_initialized()
        self._write_entries({}, [REFRESH_TOKEN_KEY])
        logger.info("Refresh token cleared")

    def clear_all_tokens(self) -> None:
        """Remove tokens, metadata and the user profile. Idempotent."""
        self._ensure_initialized()
        self._write_entries({}, ALL_KEYS)
        logger.info("All authentication data cleared")

    # User profile

    def store_user_info(self, user: Union[UserProfile, Dict[str, Any]]) -> None:
        """Store the user profile with a storedAt timestamp."""
        self._ensure_initialized()

        data = user.to_dict() if isinstance(user, UserProfile) else dict(user)
        data['plan'] = normalize_plan(data.get('plan'))
        data['storedAt'] = datetime.now().isoformat()

        self._write_entries({USER_INFO_KEY: data})
        logger.info("User info stored")

    def get_user_info(self) -> Optional[UserProfile]:
        self._ensure_initialized()

        data = self._read_entries([USER_INFO_KEY]).get(USER_INFO_KEY)
        if not data:
            return None

        try:
            return UserProfile.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Stored user info is malformed: {e}")
            return None

    def clear_user_info(self) -> None:
        self._ensure_initialized()
        self._write_entries({}, [USER_INFO_KEY])
