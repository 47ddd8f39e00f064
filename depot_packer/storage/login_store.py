"""
Saved downloader credentials.

The file is obfuscated (XOR with a fixed key, hex encoded) so credentials are
not stored as plain text. It is not encryption.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

from depot_packer.exceptions import LoginStoreError

log = logging.getLogger(__name__)

LOGIN_FILE_NAME = "login.dat"
LOGIN_PREFIX = "OP1:"
XOR_KEY = b"omnipacker-login-key"


class LoginData(BaseModel):
    username: str
    password: str


def _xor(data: bytes) -> bytes:
    return bytes(byte ^ XOR_KEY[index % len(XOR_KEY)] for index, byte in enumerate(data))


def encode_payload(plain_text: str) -> str:
    return LOGIN_PREFIX + _xor(plain_text.encode("utf-8")).hex()


def decode_payload(payload: str) -> str:
    payload = payload.strip()
    if not payload.startswith(LOGIN_PREFIX):
        raise LoginStoreError("Unsupported login data format.")
    try:
        masked = bytes.fromhex(payload[len(LOGIN_PREFIX) :])
    except ValueError as e:
        raise LoginStoreError(f"Invalid hex payload: {e}") from e
    try:
        return _xor(masked).decode("utf-8")
    except UnicodeDecodeError as e:
        raise LoginStoreError(f"Invalid login data: {e}") from e


class LoginStore:
    """Reads and writes `login.dat` inside the application config directory."""

    def __init__(self, config_dir: Path):
        self.path = Path(config_dir) / LOGIN_FILE_NAME

    def load(self) -> Optional[LoginData]:
        if not self.path.is_file():
            return None
        try:
            payload = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise LoginStoreError(f"Failed to read login data {self.path}: {e}") from e
        try:
            return LoginData.model_validate_json(decode_payload(payload))
        except ValidationError as e:
            raise LoginStoreError(f"Failed to parse login data: {e}") from e

    def save(self, username: str, password: str) -> None:
        """
        Raises:
            LoginStoreError: If the username is blank, the password is empty,
            or the file cannot be written.
        """
        username = username.strip()
        if not username:
            raise LoginStoreError("Username is required to save login data.")
        if not password:
            raise LoginStoreError("Password is required to save login data.")

        plain = json.dumps({"username": username, "password": password})
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(encode_payload(plain), encoding="utf-8")
        except OSError as e:
            raise LoginStoreError(f"Failed to write login data {self.path}: {e}") from e
        log.debug(f"Saved login data for {username} to {self.path}")

    def delete(self) -> bool:
        """Removes the saved login. Returns False if there was none."""
        if not self.path.exists():
            return False
        try:
            self.path.unlink()
        except OSError as e:
            raise LoginStoreError(f"Failed to delete login data {self.path}: {e}") from e
        return True
