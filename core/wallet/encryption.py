"""Owner secret encryption using Fernet with PBKDF2."""

import os
import base64
import json
from typing import Any, Dict, Tuple

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


class KeyEncryption:
    """Encrypt and decrypt owner signing keys and CLOB credentials."""

    # PBKDF2 iterations for key derivation
    ITERATIONS = 1_200_000

    def __init__(self, master_key: str, iterations: int = ITERATIONS):
        """
        Initialize encryption with master key.

        Args:
            master_key: Master encryption key from environment
            iterations: PBKDF2 iterations
        """
        if not master_key:
            raise ValueError("Master encryption key is not configured")
        self.master_key = master_key.encode()
        self.iterations = iterations

    def encrypt(self, secret: str) -> Tuple[bytes, bytes]:
        """
        Encrypt a secret under a fresh salt.

        Returns:
            Tuple of (ciphertext, salt)
        """
        salt = os.urandom(16)
        return self._derive_fernet(salt).encrypt(secret.encode()), salt

    def decrypt(self, ciphertext: bytes, salt: bytes) -> str:
        """
        Decrypt a secret with the salt it was encrypted under.

        Raises:
            cryptography.fernet.InvalidToken: Wrong master key or corrupted data
        """
        return self._derive_fernet(salt).decrypt(bytes(ciphertext)).decode()

    def encrypt_json(self, data: Dict[str, Any]) -> Tuple[bytes, bytes]:
        """Encrypt a JSON-serialisable dict (CLOB API credentials)."""
        return self.encrypt(json.dumps(data, sort_keys=True))

    def decrypt_json(self, ciphertext: bytes, salt: bytes) -> Dict[str, Any]:
        return json.loads(self.decrypt(ciphertext, salt))

    def _derive_fernet(self, salt: bytes) -> Fernet:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=bytes(salt),
            iterations=self.iterations,
        )
        return Fernet(base64.urlsafe_b64encode(kdf.derive(self.master_key)))

    @staticmethod
    def generate_master_key() -> str:
        """Generate a new random master key."""
        return Fernet.generate_key().decode()
