from pathlib import Path
from typing import Optional
import sqlite3
import base64
import time
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.fernet import Fernet, InvalidToken
from loguru import logger
import conduittools.configuration.constants as global_constants
from conduittools.utilities.exceptions import CredentialsExpiredError

CREDENTIALS_DB_FILENAME = "credentials.sqlite"
KEY_EXPIRY = -1  # No expiration by default

def get_credentials_directory() -> Path:
    """Returns the path to the credentials directory, creating it if it doesn't exist"""
    creds_dir = global_constants.CONFIG_DIR
    creds_dir.mkdir(exist_ok=True)
    return creds_dir

def get_database_path() -> Path:
    return get_credentials_directory() / CREDENTIALS_DB_FILENAME

class CredentialManager:
    """
    Encrypted credential store for oracle API keys and mirror connection strings.

    Values are encrypted with a Fernet key derived from the operator password and kept
    in a local SQLite file. Pass db_path to keep the store somewhere other than the
    config directory.
    """

    def __init__(self, password: str, db_path: Optional[str | Path] = None, key_expiry: float = KEY_EXPIRY):
        if not password:
            raise ValueError("Password is required for CredentialManager")
        self.db_path = Path(db_path) if db_path else get_database_path()
        self._initialize_database()
        if not self.verify_password(password):
            raise ValueError("Invalid password")
        self.encryption_key = self._derive_encryption_key(password)
        self._key_expiry_seconds = key_expiry
        self._key_expiry = time.time() + key_expiry if key_expiry >= 0 else float('inf')

    def _check_key_expiry(self):
        """Check if encryption key has expired"""
        if self._key_expiry_seconds >= 0 and time.time() > self._key_expiry:
            self.encryption_key = None
            raise CredentialsExpiredError("Encryption key has expired. Please re-authenticate.")

    def _initialize_database(self):
        """Initialize SQLite database with credentials table if it doesn't exist"""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS credentials (
                    key TEXT PRIMARY KEY,
                    encrypted_value TEXT NOT NULL
                );
            """)
            conn.commit()

    def _encrypt_value(self, value: str) -> str:
        fernet = Fernet(self.encryption_key)
        return fernet.encrypt(value.encode()).decode()

    def _decrypt_value(self, encrypted_value: str) -> str:
        fernet = Fernet(self.encryption_key)
        return fernet.decrypt(encrypted_value.encode()).decode()

    def verify_password(self, password: str) -> bool:
        """Verify password by attempting to decrypt a stored credential. An empty store accepts any password."""
        test_key = self._derive_encryption_key(password)
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT encrypted_value FROM credentials LIMIT 1;")
            row = cursor.fetchone()
        if row is None:
            return True
        try:
            Fernet(test_key).decrypt(row[0].encode())
            return True
        except InvalidToken:
            return False

    def get_credential(self, credential_key: str) -> Optional[str]:
        """Get a specific credential"""
        self._check_key_expiry()

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT encrypted_value FROM credentials
                WHERE key = ?;
            """, (credential_key,))
            row = cursor.fetchone()
            if row:
                return self._decrypt_value(row[0])
        return None

    def list_credentials(self, prefix: Optional[str] = None) -> list[str]:
        """List credential keys stored in the database.

        Args:
            prefix: only return keys starting with this prefix

        Returns:
            list[str]: Sorted list of credential keys
        """
        self._check_key_expiry()

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT key FROM credentials ORDER BY key;")
            keys = [row[0] for row in cursor.fetchall()]
        if prefix:
            keys = [key for key in keys if key.startswith(prefix)]
        return keys

    def delete_credential(self, credential_key: str) -> bool:
        """Delete a specific credential from the database.

        Args:
            credential_key (str): The key of the credential to delete

        Returns:
            bool: True if credential was deleted, False if it didn't exist
        """
        self._check_key_expiry()

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                DELETE FROM credentials
                WHERE key = ?;
            """, (credential_key,))
            deleted = cursor.rowcount > 0
            conn.commit()
        if deleted:
            logger.info(f"CredentialManager.delete_credential: Deleted credential {credential_key}")
        return deleted

    @staticmethod
    def _derive_encryption_key(password: str) -> bytes:
        """Derive an encryption key from a password"""
        kdf = PBKDF2HMAC(
            algorithm=SHA256(),
            length=32,
            salt=b'conduit_salt',
            iterations=100000,
        )
        return base64.urlsafe_b64encode(kdf.derive(password.encode()))

    def enter_and_encrypt_credential(self, credentials_dict: dict[str, str]):
        """Encrypt and store multiple credentials in SQLite database"""
        self._check_key_expiry()

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            for key, value in credentials_dict.items():
                encrypted_value = self._encrypt_value(value)
                cursor.execute("""
                    INSERT OR REPLACE INTO credentials (key, encrypted_value)
                    VALUES (?, ?);
                """, (key, encrypted_value))
            conn.commit()
        logger.info(f"CredentialManager.enter_and_encrypt_credential: Stored {len(credentials_dict)} credentials in {self.db_path}")
