"""
암호화 서비스 어댑터

OAuth 토큰을 저장하기 전에 암호화하고, 읽을 때 복호화합니다.
설정에서 받은 키로 Fernet 키를 유도하며 전역 키 상태를 두지 않습니다.
"""

import base64

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from core.domain.ports import EncryptionServicePort, LoggerPort

DEFAULT_SALT = b"mailsync_token_salt"


class EncryptionServiceAdapter(EncryptionServicePort):
    """Fernet 기반 토큰 암호화 어댑터"""

    def __init__(self, encryption_key: str, logger: LoggerPort, salt: bytes = DEFAULT_SALT):
        if not encryption_key:
            raise ValueError("암호화 키가 비어 있습니다")
        self.logger = logger
        self._fernet = self._derive_fernet(encryption_key, salt)

    @staticmethod
    def _derive_fernet(secret: str, salt: bytes) -> Fernet:
        """설정 키에서 Fernet 키를 유도합니다."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )
        return Fernet(base64.urlsafe_b64encode(kdf.derive(secret.encode())))

    async def encrypt(self, data: str) -> str:
        """문자열을 암호화합니다. 빈 문자열은 그대로 둡니다."""
        if not data:
            return ""
        return self._fernet.encrypt(data.encode()).decode()

    async def decrypt(self, encrypted_data: str) -> str:
        """
        암호문을 복호화합니다.

        Raises:
            ValueError: 키가 다르거나 암호문이 손상된 경우
        """
        if not encrypted_data:
            return ""
        try:
            return self._fernet.decrypt(encrypted_data.encode()).decode()
        except (InvalidToken, ValueError) as e:
            self.logger.error("토큰 복호화 실패: 암호화 키 또는 저장된 값을 확인하세요")
            raise ValueError(f"복호화 실패: {type(e).__name__}")

    def verify_key(self, sample: str = "mailsync") -> bool:
        """현재 키로 암호화/복호화가 되는지 확인합니다."""
        try:
            return self._fernet.decrypt(self._fernet.encrypt(sample.encode())).decode() == sample
        except InvalidToken:
            return False
