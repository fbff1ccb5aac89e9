"""
어댑터 팩토리

모든 어댑터들을 생성하고 의존성을 주입하는 팩토리 클래스입니다.
클린 아키텍처의 의존성 역전 원칙을 구현합니다.
"""

from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.entities import Account, OAuthToken
from core.domain.errors import AuthError
from core.domain.ports import (
    AccountRepositoryPort,
    ConfigPort,
    EncryptionServicePort,
    LoggerPort,
    MailClientPort,
    TaskQueuePort,
    TokenSourcePort,
)
from core.usecases.account_linking import AccountLinkingUseCase
from core.usecases.mail_sync import MailSyncUseCase
from core.usecases.sync_jobs import SyncJobUseCase
from core.usecases.token_refresh import CredentialPersister, PersistingTokenSource

from .db.repositories import (
    AccountRepositoryAdapter,
    EmailRepositoryAdapter,
    SyncLeaseRepositoryAdapter,
)
from .external.encryption_service import EncryptionServiceAdapter
from .external.gmail_api_client import GmailApiClientAdapter
from .external.google_oauth import GoogleOAuthClient, OAuthTokenSource
from .logger import LoggerAdapter
from config.adapters import get_config


class AdapterFactory:
    """어댑터 팩토리"""

    def __init__(
        self,
        config: Optional[ConfigPort] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or get_config()
        self.transport = transport
        self._logger: Optional[LoggerPort] = None
        self._encryption_service: Optional[EncryptionServicePort] = None
        self._oauth_client: Optional[GoogleOAuthClient] = None

    def create_logger(self) -> LoggerPort:
        """로거 어댑터를 생성합니다."""
        if self._logger is None:
            self._logger = LoggerAdapter(
                name="mailsync",
                level=self.config.get_log_level(),
                format_string=self.config.get_log_format(),
            )
        return self._logger

    def create_encryption_service(self) -> EncryptionServicePort:
        """암호화 서비스 어댑터를 생성합니다."""
        if self._encryption_service is None:
            self._encryption_service = EncryptionServiceAdapter(
                encryption_key=self.config.get_encryption_key(),
                logger=self.create_logger(),
            )
        return self._encryption_service

    def create_oauth_client(self) -> GoogleOAuthClient:
        """Google OAuth 클라이언트를 생성합니다."""
        if self._oauth_client is None:
            self._oauth_client = GoogleOAuthClient(
                client_id=self.config.get_google_client_id(),
                client_secret=self.config.get_google_client_secret(),
                redirect_url=self.config.get_google_redirect_url(),
                scopes=self.config.get_oauth_scopes(),
                logger=self.create_logger(),
                transport=self.transport,
            )
        return self._oauth_client

    async def create_token_source(
        self,
        account: Account,
        account_repository: AccountRepositoryPort,
    ) -> TokenSourcePort:
        """
        계정 전용 토큰 공급자를 생성합니다. 토큰이 바뀌면 암호화하여 계정에 기록합니다.

        Raises:
            AuthError: 저장된 토큰을 복호화할 수 없는 경우
        """
        encryption_service = self.create_encryption_service()
        try:
            access_token = await encryption_service.decrypt(account.access_token)
            refresh_token = await encryption_service.decrypt(account.refresh_token)
        except ValueError as e:
            raise AuthError(f"저장된 토큰을 읽을 수 없어 재인증이 필요합니다: {str(e)}")

        base = OAuthTokenSource(
            self.create_oauth_client(),
            OAuthToken(access_token=access_token, refresh_token=refresh_token, expiry=account.token_expiry),
        )
        return PersistingTokenSource(
            base=base,
            on_token_changed=CredentialPersister(account_repository, encryption_service, account.id),
            logger=self.create_logger(),
            last_access_token=access_token,
            last_expiry=account.token_expiry,
        )

    async def create_mail_client(
        self,
        account: Account,
        account_repository: AccountRepositoryPort,
    ) -> MailClientPort:
        """계정 전용 Gmail 클라이언트를 생성합니다."""
        token_source = await self.create_token_source(account, account_repository)
        return GmailApiClientAdapter(token_source, self.create_logger(), transport=self.transport)

    async def create_mail_sync_usecase(self, account: Account, session: AsyncSession) -> MailSyncUseCase:
        """계정 하나에 대한 메일 동기화 유즈케이스를 생성합니다."""
        account_repository = AccountRepositoryAdapter(session)
        sync_config = self.config.get_sync_config()

        return MailSyncUseCase(
            account_repository=account_repository,
            email_repository=EmailRepositoryAdapter(session),
            mail_client=await self.create_mail_client(account, account_repository),
            logger=self.create_logger(),
            batch_size=sync_config["batch_size"],
            max_emails_per_sync=sync_config["max_emails_per_sync"],
            initial_sync_days=sync_config["initial_sync_days"],
            incremental_overlap_minutes=sync_config["incremental_overlap_minutes"],
            incremental_default_days=sync_config["incremental_default_days"],
            deadline_seconds=sync_config["pass_deadline_seconds"],
        )

    def create_account_linking_usecase(self, session: AsyncSession) -> AccountLinkingUseCase:
        """계정 연결 유즈케이스를 생성합니다."""
        oauth_client = self.create_oauth_client()

        def mail_client_factory(token: OAuthToken) -> MailClientPort:
            return GmailApiClientAdapter(
                OAuthTokenSource(oauth_client, token),
                self.create_logger(),
                transport=self.transport,
            )

        return AccountLinkingUseCase(
            account_repository=AccountRepositoryAdapter(session),
            oauth_client=oauth_client,
            encryption_service=self.create_encryption_service(),
            mail_client_factory=mail_client_factory,
            logger=self.create_logger(),
        )

    def create_sync_job_usecase(
        self,
        session: AsyncSession,
        task_queue: Optional[TaskQueuePort] = None,
    ) -> SyncJobUseCase:
        """동기화 작업 유즈케이스를 생성합니다."""
        sync_config = self.config.get_sync_config()

        async def sync_service_factory(account: Account) -> MailSyncUseCase:
            return await self.create_mail_sync_usecase(account, session)

        return SyncJobUseCase(
            account_repository=AccountRepositoryAdapter(session),
            lease_repository=SyncLeaseRepositoryAdapter(session),
            sync_service_factory=sync_service_factory,
            logger=self.create_logger(),
            task_queue=task_queue,
            fanout_cooldown_minutes=sync_config["cooldown_minutes"],
            manual_cooldown_minutes=sync_config["manual_cooldown_minutes"],
            lease_seconds=sync_config["lease_seconds"],
        )


# 전역 팩토리 인스턴스
_adapter_factory: Optional[AdapterFactory] = None


def get_adapter_factory() -> AdapterFactory:
    """전역 어댑터 팩토리를 반환합니다."""
    global _adapter_factory
    if _adapter_factory is None:
        _adapter_factory = AdapterFactory()
    return _adapter_factory
