"""
加密服务
- 敏感配置（WebDAV 密码）对称加密：Fernet + PBKDF2-HMAC-SHA256 派生密钥
- 用户密码哈希：bcrypt
"""

import base64
import os
import secrets
import string
from typing import Dict, Union
import json
import logging

import bcrypt
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import ENCRYPTION_KEY

logger = logging.getLogger(__name__)

SALT_LENGTH = 32
KDF_ITERATIONS = 100_000


class CryptoService:
    """加密/解密与密码哈希"""

    def __init__(self, encryption_key: str = None):
        self.encryption_key = encryption_key if encryption_key is not None else ENCRYPTION_KEY

    def _derive_key(self, salt: bytes) -> bytes:
        if not self.encryption_key:
            raise RuntimeError("Encryption key not configured")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=KDF_ITERATIONS,
        )
        return base64.urlsafe_b64encode(kdf.derive(self.encryption_key.encode("utf-8")))

    def encrypt(self, text: str) -> Dict[str, str]:
        """
        加密文本

        Returns:
            {"encrypted_text": ..., "salt": ...}，均为 base64 字符串
        """
        salt = os.urandom(SALT_LENGTH)
        token = Fernet(self._derive_key(salt)).encrypt(text.encode("utf-8"))
        return {
            "encrypted_text": token.decode("ascii"),
            "salt": base64.b64encode(salt).decode("ascii"),
        }

    def decrypt(self, data: Union[Dict[str, str], str]) -> str:
        """
        解密文本

        Args:
            data: encrypt() 的返回值，或其 JSON 字符串
        """
        try:
            if isinstance(data, str):
                data = json.loads(data)
            salt = base64.b64decode(data["salt"])
            key = self._derive_key(salt)
            return Fernet(key).decrypt(data["encrypted_text"].encode("ascii")).decode("utf-8")
        except RuntimeError:
            raise
        except (InvalidToken, KeyError, TypeError, ValueError) as e:
            reason = str(e) or type(e).__name__
            logger.error(f"Decryption failed: {reason}")
            raise ValueError(f"Decryption failed: {reason}")

    def encrypt_to_json(self, text: str) -> str:
        return json.dumps(self.encrypt(text))

    @staticmethod
    def hash_password(password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # 哈希格式不合法
            return False

    @staticmethod
    def generate_random_code(length: int = 6) -> str:
        """生成数字验证码"""
        return "".join(secrets.choice(string.digits) for _ in range(length))

    @staticmethod
    def generate_secure_random(length: int = 32) -> str:
        """生成 URL 安全的随机字符串"""
        alphabet = string.ascii_letters + string.digits
        return "".join(secrets.choice(alphabet) for _ in range(length))


# 全局实例
_crypto_service = None


def get_crypto_service() -> CryptoService:
    global _crypto_service
    if _crypto_service is None:
        _crypto_service = CryptoService()
    return _crypto_service
