"""
동기화 작업 유즈케이스

작업 큐와 무관한 백그라운드 동기화 로직입니다.
- 단일 계정 동기화: 대상 여부 확인, 계정별 임대(lease), 재시도 대상 오류 판단
- 팬아웃: 동기화 대상 계정을 찾아 쿨다운을 확인하고 계정별 작업을 등록
- 수동 동기화 요청: 짧은 쿨다운 확인 후 작업 등록
"""

import math
import socket
from typing import Awaitable, Callable, Optional, Tuple
from uuid import UUID, uuid4

from ..domain.entities import (
    GOOGLE_PROVIDER,
    Account,
    AccountSyncStatus,
    FanOutReport,
    SyncMode,
    SyncResult,
    SyncTriggerResult,
)
from ..domain.errors import AuthError, TransientAPIError
from ..domain.ports import (
    AccountRepositoryPort,
    LoggerPort,
    SyncLeaseRepositoryPort,
    TaskQueuePort,
)
from .mail_sync import MailSyncUseCase

MailSyncFactory = Callable[[Account], Awaitable[MailSyncUseCase]]


class SyncJobUseCase:
    """동기화 작업 유즈케이스"""

    def __init__(
        self,
        account_repository: AccountRepositoryPort,
        lease_repository: SyncLeaseRepositoryPort,
        sync_service_factory: MailSyncFactory,
        logger: LoggerPort,
        task_queue: Optional[TaskQueuePort] = None,
        provider: str = GOOGLE_PROVIDER,
        fanout_cooldown_minutes: int = 5,
        manual_cooldown_minutes: int = 1,
        lease_seconds: int = 900,
    ):
        self.account_repository = account_repository
        self.lease_repository = lease_repository
        self.sync_service_factory = sync_service_factory
        self.logger = logger
        self.task_queue = task_queue
        self.provider = provider
        self.fanout_cooldown_minutes = fanout_cooldown_minutes
        self.manual_cooldown_minutes = manual_cooldown_minutes
        self.lease_seconds = lease_seconds
        self.worker_id = socket.gethostname()

    async def run_account_sync(
        self,
        account_id: UUID,
        mode: SyncMode,
        manual: bool = False,
    ) -> Optional[SyncResult]:
        """
        단일 계정 동기화 작업을 처리합니다.

        Args:
            account_id: 계정 ID
            mode: 동기화 방식
            manual: 수동 요청 작업 여부 (동기화 상태와 무관하게 실행)

        Returns:
            동기화 결과. 대상이 아니거나 다른 작업이 실행 중이면 None (재시도하지 않음)

        Raises:
            TransientAPIError: 일시적 오류로 아무 메시지도 처리하지 못한 경우 (작업 재시도 대상)
        """
        account = await self.account_repository.get_by_id(account_id)
        if not account:
            self.logger.warning(f"동기화 대상 계정 없음: {account_id}")
            return None

        if account.provider != self.provider:
            self.logger.warning(f"지원하지 않는 제공자: {account.provider}", account_id=str(account_id))
            return None

        if not manual and account.sync_status != AccountSyncStatus.ACTIVE:
            self.logger.info(
                f"동기화 비활성 계정 건너뜀: {account.email} ({account.sync_status.value})",
                account_id=str(account_id),
            )
            return None

        if account.is_token_expired():
            self.logger.info(f"토큰 만료됨, 동기화 중 갱신합니다: {account.email}")

        result = await self._run_with_lease(account, mode)
        if result is None:
            return None

        if result.is_retryable():
            raise TransientAPIError(result.errors[0].message)

        return result

    async def run_manual_sync(
        self,
        account_id: UUID,
        mode: Optional[SyncMode] = None,
    ) -> Tuple[SyncTriggerResult, Optional[SyncResult]]:
        """
        수동 동기화를 현재 프로세스에서 바로 실행합니다.

        동기화 상태가 error여도 실행하며, 짧은 쿨다운과 계정별 임대만 확인합니다.

        Raises:
            ValueError: 계정을 찾을 수 없는 경우
        """
        account = await self.account_repository.get_by_id(account_id)
        if not account:
            raise ValueError(f"계정을 찾을 수 없습니다: {account_id}")

        allowed, remaining = account.can_sync(self.manual_cooldown_minutes)
        if not allowed:
            return SyncTriggerResult(accepted=False, retry_after_seconds=math.ceil(remaining.total_seconds())), None

        result = await self._run_with_lease(account, mode or self.choose_mode(account))
        return SyncTriggerResult(accepted=result is not None), result

    async def _run_with_lease(self, account: Account, mode: SyncMode) -> Optional[SyncResult]:
        """계정별 임대를 잡은 상태에서 동기화 패스를 실행 (임대를 못 잡으면 None)"""
        owner = f"{self.worker_id}:{uuid4()}"
        if not await self.lease_repository.acquire(account.id, owner, self.lease_seconds):
            self.logger.warning(f"이미 동기화 중인 계정: {account.email}", account_id=str(account.id))
            return None

        try:
            try:
                sync_service = await self.sync_service_factory(account)
            except AuthError as e:
                await self.account_repository.update_fields(
                    account.id,
                    sync_status=AccountSyncStatus.ERROR,
                    sync_error=e.message,
                )
                self.logger.error(f"인증 정보 오류, 재인증이 필요합니다: {account.email} - {e.message}")
                return None

            return await sync_service.sync_account(account, mode)
        finally:
            await self.lease_repository.release(account.id, owner)

    async def fan_out(self, max_accounts: int = 100) -> FanOutReport:
        """동기화 대상 계정마다 단일 계정 동기화 작업을 등록합니다."""
        if self.task_queue is None:
            raise RuntimeError("작업 큐가 설정되지 않았습니다")

        accounts = await self.account_repository.list_syncable(self.provider, limit=max_accounts)
        report = FanOutReport(found=len(accounts))
        self.logger.info(f"동기화 대상 계정 {len(accounts)}개 조회")

        for account in accounts:
            allowed, remaining = account.can_sync(self.fanout_cooldown_minutes)
            if not allowed:
                report.skipped_cooldown += 1
                self.logger.debug(
                    f"쿨다운 중인 계정 건너뜀: {account.email} ({int(remaining.total_seconds())}초 남음)"
                )
                continue

            mode = self.choose_mode(account)
            try:
                self.task_queue.enqueue_account_sync(account.id, mode)
                report.enqueued += 1
            except Exception as e:
                report.failed += 1
                self.logger.error(
                    f"동기화 작업 등록 실패: {account.email} - {str(e)}",
                    account_id=str(account.id),
                )

        self.logger.info(
            f"팬아웃 완료: 등록 {report.enqueued}, 쿨다운 {report.skipped_cooldown}, 실패 {report.failed}"
        )
        return report

    async def trigger_manual_sync(
        self,
        account_id: UUID,
        mode: Optional[SyncMode] = None,
    ) -> SyncTriggerResult:
        """
        수동 동기화를 요청합니다.

        Raises:
            ValueError: 계정을 찾을 수 없는 경우
        """
        if self.task_queue is None:
            raise RuntimeError("작업 큐가 설정되지 않았습니다")

        account = await self.account_repository.get_by_id(account_id)
        if not account:
            raise ValueError(f"계정을 찾을 수 없습니다: {account_id}")

        allowed, remaining = account.can_sync(self.manual_cooldown_minutes)
        if not allowed:
            retry_after = math.ceil(remaining.total_seconds())
            self.logger.info(f"수동 동기화 거부 (쿨다운 {retry_after}초 남음): {account.email}")
            return SyncTriggerResult(accepted=False, retry_after_seconds=retry_after)

        task_id = self.task_queue.enqueue_account_sync(account.id, mode or self.choose_mode(account), manual=True)
        self.logger.info(f"수동 동기화 등록: {account.email}", task_id=task_id)
        return SyncTriggerResult(accepted=True, task_id=task_id)

    @staticmethod
    def choose_mode(account: Account) -> SyncMode:
        """계정 상태에 맞는 동기화 방식"""
        if account.last_history_id:
            return SyncMode.HISTORY
        if account.last_sync_at:
            return SyncMode.INCREMENTAL
        return SyncMode.INITIAL
