"""
외부 서비스 어댑터 패키지

Gmail API, Google OAuth, 토큰 암호화 등 외부 서비스와의 통신을 담당하는 어댑터들을 포함합니다.
"""

from .encryption_service import EncryptionServiceAdapter
from .gmail_api_client import GmailApiClientAdapter, build_raw_message
from .google_oauth import GoogleOAuthClient, OAuthTokenSource

__all__ = [
    "EncryptionServiceAdapter",
    "GmailApiClientAdapter",
    "GoogleOAuthClient",
    "OAuthTokenSource",
    "build_raw_message",
]
