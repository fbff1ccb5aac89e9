"""
계정 연결 유즈케이스

Google 동의 화면에서 받은 인가 코드를 토큰으로 교환하고,
메일함 프로필을 확인한 뒤 암호화된 자격 증명과 함께 계정을 저장합니다.
"""

from typing import Callable, List, Optional

from ..domain.entities import GOOGLE_PROVIDER, Account, AccountSyncStatus, OAuthToken
from ..domain.errors import AuthError
from ..domain.ports import (
    AccountRepositoryPort,
    EncryptionServicePort,
    LoggerPort,
    MailClientPort,
    OAuthClientPort,
)

MailClientFactory = Callable[[OAuthToken], MailClientPort]


class AccountLinkingUseCase:
    """계정 연결 유즈케이스"""

    def __init__(
        self,
        account_repository: AccountRepositoryPort,
        oauth_client: OAuthClientPort,
        encryption_service: EncryptionServicePort,
        mail_client_factory: MailClientFactory,
        logger: LoggerPort,
    ):
        self.account_repository = account_repository
        self.oauth_client = oauth_client
        self.encryption_service = encryption_service
        self.mail_client_factory = mail_client_factory
        self.logger = logger

    def authorization_url(self, state: str) -> str:
        """동의 화면 URL을 반환합니다."""
        return self.oauth_client.authorization_url(state)

    async def link_account(self, code: str, user_id: Optional[str] = None) -> Account:
        """
        인가 코드로 메일함 계정을 연결합니다. 이미 연결된 메일함이면 자격 증명만 교체합니다.

        Args:
            code: 인가 코드
            user_id: 소유 사용자 ID

        Returns:
            저장된 계정

        Raises:
            AuthError: 코드 교환 실패 또는 리프레시 토큰이 발급되지 않은 경우
        """
        token = await self.oauth_client.exchange_code(code)
        if not token.refresh_token:
            raise AuthError("리프레시 토큰이 발급되지 않았습니다. 동의 화면에서 다시 승인하세요")

        profile = await self.mail_client_factory(token).get_profile()
        encrypted_access = await self.encryption_service.encrypt(token.access_token)
        encrypted_refresh = await self.encryption_service.encrypt(token.refresh_token)

        existing = await self.account_repository.get_by_email(GOOGLE_PROVIDER, profile.email_address)
        if existing:
            await self.account_repository.update_fields(
                existing.id,
                access_token=encrypted_access,
                refresh_token=encrypted_refresh,
                token_expiry=token.expiry,
                sync_status=AccountSyncStatus.ACTIVE,
                sync_error=None,
            )
            self.logger.info(f"계정 자격 증명 갱신: {profile.email_address}")
            return await self.account_repository.get_by_id(existing.id)

        account = await self.account_repository.create(
            Account(
                user_id=user_id,
                provider=GOOGLE_PROVIDER,
                provider_user_id=profile.email_address,
                email=profile.email_address,
                access_token=encrypted_access,
                refresh_token=encrypted_refresh,
                token_expiry=token.expiry,
            )
        )
        self.logger.info(f"계정 연결 완료: {account.email}", account_id=str(account.id))
        return account

    async def list_accounts(self, skip: int = 0, limit: int = 100) -> List[Account]:
        """연결된 계정 목록을 반환합니다."""
        return await self.account_repository.list_all(skip, limit)
