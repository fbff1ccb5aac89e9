"""
토큰 갱신 유즈케이스

기본 토큰 공급자를 감싸서, 토큰이 바뀐 경우에만 자격 증명 저장소에 기록합니다.
저장 실패는 로그로만 남기고 토큰은 그대로 반환하여 API 호출이 계속되도록 합니다.
"""

from datetime import datetime
from typing import Awaitable, Callable, Optional
from uuid import UUID

from ..domain.entities import AccountSyncStatus, OAuthToken
from ..domain.ports import (
    AccountRepositoryPort,
    EncryptionServicePort,
    LoggerPort,
    TokenSourcePort,
)

TokenChangeHandler = Callable[[OAuthToken], Awaitable[None]]


class CredentialPersister:
    """변경된 토큰을 암호화하여 계정에 기록하는 전략 객체"""

    def __init__(
        self,
        account_repository: AccountRepositoryPort,
        encryption_service: EncryptionServicePort,
        account_id: UUID,
    ):
        self.account_repository = account_repository
        self.encryption_service = encryption_service
        self.account_id = account_id

    async def __call__(self, token: OAuthToken) -> None:
        fields = {
            "access_token": await self.encryption_service.encrypt(token.access_token),
            "token_expiry": token.expiry,
            "sync_status": AccountSyncStatus.ACTIVE,
            "sync_error": None,
        }
        # 응답에 리프레시 토큰이 없으면 기존 값을 유지
        if token.refresh_token:
            fields["refresh_token"] = await self.encryption_service.encrypt(token.refresh_token)

        await self.account_repository.update_fields(self.account_id, **fields)


class PersistingTokenSource(TokenSourcePort):
    """
    변경 시에만 저장하는 토큰 공급자

    한 계정 전용입니다. 마지막으로 관찰한 액세스 토큰과 만료 시간을 메모리에 보관하며,
    기본 공급자는 동시 호출에 대해 단일 갱신(single-flight)을 보장해야 합니다.
    """

    def __init__(
        self,
        base: TokenSourcePort,
        on_token_changed: TokenChangeHandler,
        logger: LoggerPort,
        last_access_token: str = "",
        last_expiry: Optional[datetime] = None,
    ):
        self.base = base
        self.on_token_changed = on_token_changed
        self.logger = logger
        self._last_access_token = last_access_token
        self._last_expiry = last_expiry

    async def token(self) -> OAuthToken:
        """
        토큰을 반환합니다.

        Raises:
            AuthError: 기본 공급자의 토큰 갱신이 거부된 경우
            TransientAPIError: 토큰 엔드포인트 통신 실패
        """
        token = await self.base.token()

        if token.access_token == self._last_access_token and token.expiry == self._last_expiry:
            return token

        try:
            await self.on_token_changed(token)
            self.logger.info("갱신된 토큰 저장 완료", token_expiry=str(token.expiry))
        except Exception as e:
            self.logger.error(f"갱신된 토큰 저장 실패: {str(e)}")

        self._last_access_token = token.access_token
        self._last_expiry = token.expiry
        return token
