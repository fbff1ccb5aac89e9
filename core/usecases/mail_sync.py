"""
메일 동기화 유즈케이스

Gmail 메일함을 로컬 저장소로 동기화하는 비즈니스 로직을 구현합니다.
- 초기 동기화: 최근 N일 받은편지함/보낸편지함을 각각 상한 개수까지
- 증분 동기화: 마지막 동기화 시각 직전부터의 변경분
- 히스토리 동기화: 제공자 히스토리 커서 이후의 변경 기록
"""

import time
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Set
from uuid import UUID

from ..domain.entities import (
    Account,
    AccountSyncStatus,
    Email,
    GmailLabel,
    ListMessagesOptions,
    MailStats,
    SyncMode,
    SyncResult,
    to_epoch_seconds,
    utcnow,
)
from ..domain.errors import AuthError, ErrorKind, MailSyncError, ParseError, ProviderError
from ..domain.ports import (
    AccountRepositoryPort,
    EmailRepositoryPort,
    LoggerPort,
    MailClientPort,
)
from .message_parser import extract_label_state, parse_message, to_email

LIST_PAGE_SIZE = 100


class _SyncPass:
    """동기화 패스 한 번의 실행 상태"""

    def __init__(self, account: Account, mode: SyncMode, deadline_at: Optional[float]):
        self.account = account
        self.result = SyncResult(mode=mode)
        self.deadline_at = deadline_at
        self.seen: Set[str] = set()
        self.stopped = False


class MailSyncUseCase:
    """메일 동기화 유즈케이스 (계정 하나에 대한 메일 클라이언트를 주입받음)"""

    def __init__(
        self,
        account_repository: AccountRepositoryPort,
        email_repository: EmailRepositoryPort,
        mail_client: MailClientPort,
        logger: LoggerPort,
        batch_size: int = 50,
        max_emails_per_sync: int = 100,
        initial_sync_days: int = 7,
        incremental_overlap_minutes: int = 1,
        incremental_default_days: int = 30,
        deadline_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.account_repository = account_repository
        self.email_repository = email_repository
        self.mail_client = mail_client
        self.logger = logger
        self.batch_size = batch_size
        self.max_emails_per_sync = max_emails_per_sync
        self.initial_sync_days = initial_sync_days
        self.incremental_overlap_minutes = incremental_overlap_minutes
        self.incremental_default_days = incremental_default_days
        self.deadline_seconds = deadline_seconds
        self.clock = clock

    async def sync(self, account_id: UUID, mode: SyncMode) -> SyncResult:
        """
        지정한 방식으로 계정을 동기화합니다.

        Args:
            account_id: 계정 ID
            mode: 동기화 방식

        Returns:
            동기화 결과

        Raises:
            ValueError: 계정이 없거나 지원하지 않는 방식인 경우
        """
        account = await self.account_repository.get_by_id(account_id)
        if not account:
            raise ValueError(f"계정을 찾을 수 없습니다: {account_id}")

        return await self.sync_account(account, mode)

    async def sync_account(self, account: Account, mode: SyncMode) -> SyncResult:
        """이미 조회한 계정을 지정한 방식으로 동기화합니다."""
        if mode == SyncMode.INITIAL:
            return await self.initial_sync(account)
        if mode == SyncMode.INCREMENTAL:
            return await self.incremental_sync(account)
        if mode == SyncMode.HISTORY:
            return await self.history_sync(account)
        raise ValueError(f"지원하지 않는 동기화 방식입니다: {mode}")

    async def initial_sync(self, account: Account) -> SyncResult:
        """최근 N일의 받은편지함과 보낸편지함을 각각 상한 개수까지 가져옵니다."""
        self.logger.info(f"초기 동기화 시작: {account.email}", account_id=str(account.id))
        sync_pass = self._start_pass(account, SyncMode.INITIAL)
        await self._capture_history_id(sync_pass)

        for folder in ("inbox", "sent"):
            query = f"in:{folder} newer_than:{self.initial_sync_days}d"
            if not await self._sync_query(sync_pass, query, limit=self.max_emails_per_sync):
                break

        return await self._finish_pass(sync_pass)

    async def incremental_sync(self, account: Account) -> SyncResult:
        """마지막 동기화 시각에서 겹침 여유를 뺀 시점 이후의 메일을 상한 없이 가져옵니다."""
        self.logger.info(f"증분 동기화 시작: {account.email}", account_id=str(account.id))
        sync_pass = self._start_pass(account, SyncMode.INCREMENTAL)
        await self._capture_history_id(sync_pass)

        window = self.incremental_window(account)
        for folder in ("inbox", "sent"):
            if not await self._sync_query(sync_pass, f"in:{folder} {window}", limit=None):
                break

        return await self._finish_pass(sync_pass)

    async def history_sync(self, account: Account) -> SyncResult:
        """히스토리 커서 이후의 변경 기록을 반영합니다. 커서가 없으면 증분 동기화로 대체합니다."""
        if not account.last_history_id:
            self.logger.info(f"히스토리 커서 없음, 증분 동기화로 대체: {account.email}")
            return await self.incremental_sync(account)

        self.logger.info(f"히스토리 동기화 시작: {account.email}", account_id=str(account.id))
        sync_pass = self._start_pass(account, SyncMode.HISTORY)

        try:
            page = await self.mail_client.get_history(account.last_history_id)
        except MailSyncError as e:
            if isinstance(e, ProviderError) and not isinstance(e, AuthError) and e.status_code == 404:
                self.logger.warning(f"히스토리 커서 만료, 증분 동기화로 대체: {account.email}")
                return await self.incremental_sync(account)
            self._record_pass_error(sync_pass, e, query=f"history:{account.last_history_id}")
            return await self._finish_pass(sync_pass)

        changed: Dict[str, None] = {}
        deleted: Set[str] = set()
        for record in page.records:
            deleted.update(record.messages_deleted)
            for message_id in record.messages_added + record.labels_added + record.labels_removed:
                changed[message_id] = None

        if deleted:
            try:
                sync_pass.result.deleted_emails = await self.email_repository.soft_delete_by_provider_ids(
                    account.id, sorted(deleted)
                )
            except MailSyncError as e:
                self._record_pass_error(sync_pass, e)

        await self._process_ids(sync_pass, [message_id for message_id in changed if message_id not in deleted])
        sync_pass.result.history_id = page.history_id or account.last_history_id

        return await self._finish_pass(sync_pass)

    async def sync_specific_labels(
        self,
        account: Account,
        labels: List[str],
        max_days: Optional[int] = None,
    ) -> SyncResult:
        """
        지정한 라벨의 메일만 동기화합니다.

        계정의 마지막 동기화 시각과 커서는 변경하지 않습니다.
        """
        sync_pass = self._start_pass(account, SyncMode.LABELS)
        days = max_days or self.initial_sync_days

        for label in labels:
            query = f"label:{label} newer_than:{days}d"
            if not await self._sync_query(sync_pass, query, limit=self.max_emails_per_sync):
                break

        return await self._finish_pass(sync_pass, update_status=False)

    async def refresh_email(self, account: Account, email_id: UUID) -> Email:
        """
        저장된 메일 하나의 라벨과 읽음 여부를 제공자 상태로 갱신합니다.

        Raises:
            ValueError: 메일이 없거나 다른 계정의 메일인 경우
        """
        email = await self.email_repository.get_by_id(email_id)
        if not email or email.account_id != account.id:
            raise ValueError(f"메일을 찾을 수 없습니다: {email_id}")

        wire = await self.mail_client.get_message(email.provider_message_id)
        labels, is_read = extract_label_state(wire)
        await self.email_repository.update_labels(email.id, labels, is_read)

        email.labels = labels
        email.is_read = is_read
        return email

    async def get_stats(self, account_id: UUID) -> MailStats:
        """계정의 메일 통계를 계산합니다."""
        stats = MailStats(
            total=await self.email_repository.count(account_id),
            unread=await self.email_repository.count(account_id, unread_only=True),
            categories={category: 0 for category in GmailLabel.CATEGORIES},
        )

        # 라벨 기반 통계는 메모리에서 집계 (메일이 많은 계정에서는 비용이 큼)
        for labels in await self.email_repository.list_label_sets(account_id):
            if GmailLabel.STARRED in labels:
                stats.starred += 1
            if GmailLabel.IMPORTANT in labels:
                stats.important += 1
            for label in labels:
                if label in stats.categories:
                    stats.categories[label] += 1

        return stats

    def can_sync(self, account: Account, cooldown_minutes: int):
        """쿨다운 경과 여부와 남은 대기 시간을 반환합니다."""
        return account.can_sync(cooldown_minutes)

    def incremental_window(self, account: Account) -> str:
        """증분 동기화 쿼리의 시간 범위 조건"""
        if account.last_sync_at is None:
            return f"newer_than:{self.incremental_default_days}d"

        since = account.last_sync_at - timedelta(minutes=self.incremental_overlap_minutes)
        return f"after:{to_epoch_seconds(since)}"

    def _start_pass(self, account: Account, mode: SyncMode) -> _SyncPass:
        deadline_at = None
        if self.deadline_seconds:
            deadline_at = self.clock() + self.deadline_seconds
        return _SyncPass(account, mode, deadline_at)

    async def _capture_history_id(self, sync_pass: _SyncPass) -> None:
        """목록 조회 전에 메일함의 현재 히스토리 ID를 기록"""
        try:
            profile = await self.mail_client.get_profile()
            sync_pass.result.history_id = profile.history_id
        except MailSyncError as e:
            self.logger.warning(f"프로필 조회 실패, 히스토리 커서를 갱신하지 않습니다: {e.message}")

    async def _sync_query(self, sync_pass: _SyncPass, query: str, limit: Optional[int]) -> bool:
        """
        쿼리 하나를 동기화합니다.

        Returns:
            이어지는 쿼리를 실행해도 되는지 여부
        """
        try:
            message_ids = await self._collect_ids(sync_pass, query, limit)
        except AuthError as e:
            self._record_pass_error(sync_pass, e, query=query)
            sync_pass.stopped = True
            return False
        except MailSyncError as e:
            self._record_pass_error(sync_pass, e, query=query)
            return not sync_pass.stopped

        self.logger.debug(f"쿼리 '{query}' 결과 {len(message_ids)}건")
        await self._process_ids(sync_pass, message_ids)
        return not sync_pass.stopped

    async def _collect_ids(self, sync_pass: _SyncPass, query: str, limit: Optional[int]) -> List[str]:
        """다음 페이지가 없거나 상한에 도달할 때까지 메시지 ID를 수집"""
        message_ids: List[str] = []
        collected: Set[str] = set()
        page_token = None

        while not self._deadline_exceeded(sync_pass):
            page_size = LIST_PAGE_SIZE if limit is None else min(LIST_PAGE_SIZE, limit - len(message_ids))
            listing = await self.mail_client.list_messages(
                ListMessagesOptions(query=query, page_token=page_token, max_results=page_size)
            )

            for ref in listing.messages:
                if ref.id in collected:
                    continue
                collected.add(ref.id)
                message_ids.append(ref.id)
                if limit is not None and len(message_ids) >= limit:
                    return message_ids

            if not listing.next_page_token:
                break
            page_token = listing.next_page_token

        return message_ids

    async def _process_ids(self, sync_pass: _SyncPass, message_ids: List[str]) -> None:
        """메시지 ID를 고정 크기 배치로 처리 (메시지 하나의 실패는 배치를 중단하지 않음)"""
        for start in range(0, len(message_ids), self.batch_size):
            batch = message_ids[start:start + self.batch_size]

            for message_id in batch:
                if self._deadline_exceeded(sync_pass):
                    return
                if message_id in sync_pass.seen:
                    continue

                sync_pass.seen.add(message_id)
                sync_pass.result.total_fetched += 1

                try:
                    await self._process_message(sync_pass, message_id)
                except AuthError as e:
                    self._record_item_error(sync_pass, e.kind, e.message, message_id)
                    sync_pass.stopped = True
                    return
                except Exception as e:
                    kind = getattr(e, "kind", ErrorKind.PROVIDER)
                    self._record_item_error(sync_pass, kind, str(e), message_id)

            await self.email_repository.end_batch()

    async def _process_message(self, sync_pass: _SyncPass, message_id: str) -> None:
        """메시지 하나를 저장하거나 라벨/읽음 여부를 갱신"""
        account = sync_pass.account
        existing = await self.email_repository.get_by_provider_id(account.id, message_id)
        wire = await self.mail_client.get_message(message_id)

        if existing:
            labels, is_read = extract_label_state(wire)
            await self.email_repository.update_labels(existing.id, labels, is_read)
            sync_pass.result.updated_emails += 1
            return

        try:
            email = to_email(parse_message(wire), account.id)
        except ValueError as e:
            raise ParseError(f"메시지 변환 실패: {str(e)}")

        saved = await self.email_repository.create(email)
        sync_pass.result.new_emails += 1

        if saved.is_outgoing and saved.thread_id:
            await self._link_case(saved)

    async def _link_case(self, email: Email) -> None:
        """보낸 메일이 속한 스레드에 케이스가 있으면 같은 케이스로 연결"""
        try:
            case_id = await self.email_repository.find_case_id_in_thread(email.account_id, email.thread_id)
            if case_id:
                await self.email_repository.set_case_id(email.id, case_id)
                self.logger.debug(f"케이스 연결: {email.provider_message_id} -> {case_id}")
        except MailSyncError as e:
            self.logger.warning(
                f"케이스 연결 실패: {e.message}",
                message_id=email.provider_message_id,
            )

    def _deadline_exceeded(self, sync_pass: _SyncPass) -> bool:
        """데드라인 초과 여부 (처음 초과한 시점에 한 번 기록)"""
        if sync_pass.result.timed_out:
            return True
        if sync_pass.deadline_at is None or self.clock() < sync_pass.deadline_at:
            return False

        sync_pass.result.timed_out = True
        sync_pass.stopped = True
        sync_pass.result.add_error(ErrorKind.TIMEOUT, "동기화 데드라인 초과, 처리된 결과까지만 반영합니다")
        self.logger.warning(
            f"동기화 데드라인 초과: {sync_pass.account.email}",
            account_id=str(sync_pass.account.id),
        )
        return True

    def _record_pass_error(self, sync_pass: _SyncPass, error: MailSyncError, query: Optional[str] = None) -> None:
        sync_pass.result.add_error(error.kind, error.message, query=query)
        self.logger.error(
            f"동기화 쿼리 실패 ({error.kind.value}): {error.message}",
            account_id=str(sync_pass.account.id),
            query=query,
        )

    def _record_item_error(self, sync_pass: _SyncPass, kind: ErrorKind, message: str, message_id: str) -> None:
        sync_pass.result.add_error(kind, message, message_id=message_id)
        self.logger.error(
            f"메시지 처리 실패 ({kind.value}) {message_id}: {message}",
            account_id=str(sync_pass.account.id),
            message_id=message_id,
        )

    async def _finish_pass(self, sync_pass: _SyncPass, update_status: bool = True) -> SyncResult:
        """계정 동기화 상태를 한 번에 기록하고 결과를 반환"""
        result = sync_pass.result
        result.completed_at = utcnow()

        if update_status:
            fields = {"last_sync_at": result.completed_at}
            if result.is_retryable():
                # 작업 재시도가 이어지므로 active 상태와 마지막 성공 시각은 유지
                fields = {"sync_error": result.errors[0].message}
            elif result.has_errors():
                fields["sync_status"] = AccountSyncStatus.ERROR
                fields["sync_error"] = result.errors[0].message
            else:
                fields["sync_status"] = AccountSyncStatus.ACTIVE
                fields["sync_error"] = None
                # 오류 없이 끝난 패스만 커서를 전진시킴
                if result.history_id:
                    fields["last_history_id"] = result.history_id

            try:
                await self.account_repository.update_fields(sync_pass.account.id, **fields)
            except MailSyncError as e:
                result.add_error(e.kind, e.message)
                self.logger.error(f"동기화 상태 기록 실패: {e.message}", account_id=str(sync_pass.account.id))

        self.logger.info(
            f"동기화 완료 ({result.mode.value}): {sync_pass.account.email} - "
            f"처리 {result.total_fetched}, 신규 {result.new_emails}, "
            f"갱신 {result.updated_emails}, 삭제 {result.deleted_emails}, 오류 {len(result.errors)}",
            account_id=str(sync_pass.account.id),
        )
        return result
