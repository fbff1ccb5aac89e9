"""
도메인 오류 정의

동기화 파이프라인 전반에서 사용하는 오류 분류 체계입니다.
모든 오류는 ErrorKind 태그를 가지므로 상태 기록, 로그, 재시도 정책이
문자열 비교 대신 종류로 분기할 수 있습니다.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """오류 종류"""
    TRANSIENT = "transient"
    AUTH = "auth"
    PROVIDER = "provider"
    PARSE = "parse"
    PERSISTENCE = "persistence"
    TIMEOUT = "timeout"
    CONFIGURATION = "configuration"


class MailSyncError(Exception):
    """메일 동기화 오류 기본 클래스"""

    kind: ErrorKind = ErrorKind.PROVIDER

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ProviderError(MailSyncError):
    """메일 제공자 API가 2xx 이외의 응답을 반환한 경우"""

    kind = ErrorKind.PROVIDER

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientAPIError(ProviderError):
    """네트워크 오류, 요청 한도 초과, 5xx 응답 (재시도 가능)"""

    kind = ErrorKind.TRANSIENT


class AuthError(ProviderError):
    """토큰 갱신 실패 또는 권한 거부 (재인증 필요)"""

    kind = ErrorKind.AUTH


class ParseError(MailSyncError):
    """메시지 형식 오류"""

    kind = ErrorKind.PARSE


class PersistenceError(MailSyncError):
    """로컬 저장소 쓰기 실패"""

    kind = ErrorKind.PERSISTENCE


class ConfigurationError(MailSyncError):
    """필수 설정 누락 (시작 시 치명적)"""

    kind = ErrorKind.CONFIGURATION


def classify_status(status_code: int) -> type:
    """HTTP 상태 코드에 해당하는 오류 클래스를 반환합니다."""
    if status_code == 429 or status_code >= 500:
        return TransientAPIError
    if status_code in (401, 403):
        return AuthError
    return ProviderError
