"""
Connection Config Encryption

Provider configs (API keys, session ids, uploaded entries) are stored as one
Fernet-encrypted JSON document per connection. The key is derived from the
application SECRET_KEY.
"""

import json
import base64
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from .exceptions import ProviderConfigurationError


class ConfigEncryption:
    """
    Encrypt and decrypt connection configs for storage in the database.

    Configs are flat string-to-string maps; values that are not strings are
    converted with str() before encryption.
    """

    def __init__(self, secret_key: str):
        """
        Initialize the cipher.

        The secret is padded/truncated to 32 bytes and base64-encoded to form
        a valid Fernet key.

        Args:
            secret_key: Application secret
        """
        key_bytes = secret_key.encode()[:32].ljust(32, b'0')
        self.cipher = Fernet(base64.urlsafe_b64encode(key_bytes))

    def encrypt(self, value: str) -> str:
        if not value:
            return ""
        return self.cipher.encrypt(value.encode()).decode()

    def decrypt(self, encrypted_value: str) -> str:
        if not encrypted_value:
            return ""
        return self.cipher.decrypt(encrypted_value.encode()).decode()

    def encrypt_config(self, config: Optional[Dict[str, str]]) -> Optional[str]:
        """
        Serialize and encrypt a config map.

        Returns:
            Encrypted token, or None for an empty config

        Example:
            >>> enc = ConfigEncryption("change-me")
            >>> token = enc.encrypt_config({"api_key": "abc"})
            >>> enc.decrypt_config(token)
            {'api_key': 'abc'}
        """
        if not config:
            return None
        payload = {str(key): "" if value is None else str(value) for key, value in config.items()}
        return self.encrypt(json.dumps(payload, sort_keys=True))

    def decrypt_config(self, encrypted_config: Optional[str]) -> Dict[str, str]:
        """
        Decrypt a stored config map.

        Raises:
            ProviderConfigurationError: If the blob cannot be decrypted or is not a JSON object
        """
        if not encrypted_config:
            return {}
        try:
            data = json.loads(self.decrypt(encrypted_config))
        except (InvalidToken, ValueError) as e:
            raise ProviderConfigurationError("Invalid config payload") from e
        if not isinstance(data, dict):
            raise ProviderConfigurationError("Invalid config payload")
        return {str(key): "" if value is None else str(value) for key, value in data.items()}
