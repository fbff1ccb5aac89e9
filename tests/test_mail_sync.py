"""
메일 동기화 유즈케이스 테스트

실제 SQLite 저장소와 가짜 Gmail 클라이언트로 동기화 패스 전체를 검증합니다.
"""

import itertools
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from core.domain.entities import (
    AccountSyncStatus,
    Email,
    HistoryPage,
    HistoryRecord,
    SyncMode,
    to_epoch_seconds,
    utcnow,
)
from core.domain.errors import AuthError, ErrorKind, PersistenceError, ProviderError, TransientAPIError
from core.usecases.mail_sync import MailSyncUseCase

from .conftest import make_wire


@pytest.fixture
def make_usecase(account_repository, email_repository, mail_client, logger):
    def _make(**kwargs):
        return MailSyncUseCase(
            account_repository=account_repository,
            email_repository=email_repository,
            mail_client=mail_client,
            logger=logger,
            **kwargs,
        )
    return _make


def _stored_email(account, provider_message_id, labels=None, thread_id="", case_id=None):
    return Email(
        account_id=account.id,
        provider_message_id=provider_message_id,
        thread_id=thread_id,
        subject="저장된 메일",
        received_at=utcnow() - timedelta(days=1),
        labels=labels or ["INBOX"],
        is_read=True,
        case_id=case_id,
    )


class TestInitialSync:
    """초기 동기화 테스트"""

    @pytest.mark.asyncio
    async def test_cap_limits_fetch(self, make_usecase, mail_client, account):
        """받은편지함 250건 중 상한 100건만 가져온다"""
        now = utcnow()
        for index in range(250):
            mail_client.add(make_wire(f"m{index:03d}", received_at=now - timedelta(minutes=index)))

        result = await make_usecase(max_emails_per_sync=100).initial_sync(account)

        assert result.mode == SyncMode.INITIAL
        assert result.total_fetched == 100
        assert result.new_emails == 100
        assert len(set(mail_client.fetched)) == 100
        assert len(mail_client.fetched) == 100
        assert mail_client.queries == ["in:inbox newer_than:7d", "in:sent newer_than:7d"]

    @pytest.mark.asyncio
    async def test_second_pass_updates_instead_of_duplicating(
        self, make_usecase, mail_client, account, email_repository
    ):
        """같은 메시지를 다시 동기화하면 중복 저장 없이 라벨만 갱신"""
        for index in range(5):
            mail_client.add(make_wire(f"m{index}"))
        usecase = make_usecase()

        first = await usecase.initial_sync(account)
        mail_client.messages["m0"]["labelIds"] = ["INBOX", "STARRED"]
        result = await usecase.initial_sync(account)

        assert first.new_emails == 5
        assert result.total_fetched == first.total_fetched
        assert result.new_emails == 0
        assert result.updated_emails == 5
        assert await email_repository.count(account.id) == 5

        updated = await email_repository.get_by_provider_id(account.id, "m0")
        assert updated.labels == ["INBOX", "STARRED"]
        assert updated.is_read is True

    @pytest.mark.asyncio
    async def test_message_in_both_folders_processed_once(self, make_usecase, mail_client, account):
        """받은편지함과 보낸편지함에 모두 있는 메시지는 한 번만 처리"""
        mail_client.add(make_wire("both", labels=["INBOX", "SENT"]))
        mail_client.add(make_wire("inbox-only"))

        result = await make_usecase().initial_sync(account)

        assert result.total_fetched == 2
        assert mail_client.fetched.count("both") == 1

    @pytest.mark.asyncio
    async def test_unparseable_message_recorded_not_aborting(self, make_usecase, mail_client, account):
        """파싱할 수 없는 메시지 하나는 오류로 기록되고 나머지는 저장"""
        for index in range(9):
            mail_client.add(make_wire(f"ok{index}"))
        broken = make_wire("broken")
        broken["payload"] = "not-a-mime-tree"
        mail_client.add(broken)

        result = await make_usecase(batch_size=50).initial_sync(account)

        assert result.new_emails == 9
        assert len(result.errors) == 1
        assert result.errors[0].kind == ErrorKind.PARSE
        assert result.errors[0].message_id == "broken"

    @pytest.mark.asyncio
    async def test_failed_inbox_query_does_not_stop_sent(self, make_usecase, mail_client, account):
        """받은편지함 조회 실패 후에도 보낸편지함은 동기화"""
        mail_client.add(make_wire("sent-1", labels=["SENT"]))
        mail_client.list_errors["in:inbox"] = TransientAPIError("일시적 오류", status_code=503)

        result = await make_usecase().initial_sync(account)

        assert result.new_emails == 1
        assert len(result.errors) == 1
        assert result.errors[0].kind == ErrorKind.TRANSIENT
        assert result.errors[0].query.startswith("in:inbox")

    @pytest.mark.asyncio
    async def test_auth_error_stops_remaining_queries(self, make_usecase, mail_client, account):
        """인증 오류는 남은 쿼리를 실행하지 않는다"""
        mail_client.add(make_wire("sent-1", labels=["SENT"]))
        mail_client.list_errors["in:inbox"] = AuthError("권한 없음", status_code=401)

        result = await make_usecase().initial_sync(account)

        assert result.total_fetched == 0
        assert len(mail_client.queries) == 1
        assert result.errors[0].kind == ErrorKind.AUTH

    @pytest.mark.asyncio
    async def test_item_auth_error_stops_pass(self, make_usecase, mail_client, account):
        """메시지 조회 중 인증 오류가 나면 패스를 멈춘다"""
        now = utcnow()
        for index in range(3):
            mail_client.add(make_wire(f"m{index}", received_at=now - timedelta(minutes=index)))
        mail_client.get_errors["m0"] = AuthError("토큰 거부", status_code=401)

        result = await make_usecase().initial_sync(account)

        assert mail_client.fetched == ["m0"]
        assert result.errors[0].message_id == "m0"
        assert result.errors[0].kind == ErrorKind.AUTH


class TestIncrementalSync:
    """증분 동기화 테스트"""

    @pytest.mark.asyncio
    async def test_window_starts_one_minute_before_last_sync(
        self, make_usecase, mail_client, account, account_repository
    ):
        """마지막 동기화 1분 전부터의 메일만 쿼리로 가져온다"""
        last_sync = utcnow() - timedelta(hours=1)
        await account_repository.update_fields(account.id, last_sync_at=last_sync)
        account = await account_repository.get_by_id(account.id)

        mail_client.add(make_wire("recent", received_at=last_sync - timedelta(seconds=30)))
        mail_client.add(make_wire("old", received_at=last_sync - timedelta(minutes=2)))

        result = await make_usecase().incremental_sync(account)

        expected = f"after:{to_epoch_seconds(last_sync - timedelta(minutes=1))}"
        assert mail_client.queries == [f"in:inbox {expected}", f"in:sent {expected}"]
        assert mail_client.fetched == ["recent"]
        assert result.new_emails == 1

    @pytest.mark.asyncio
    async def test_default_window_without_last_sync(self, make_usecase, account):
        """마지막 동기화 시각이 없으면 최근 30일"""
        assert make_usecase().incremental_window(account) == "newer_than:30d"

    @pytest.mark.asyncio
    async def test_no_cap_with_paging(self, make_usecase, mail_client, account):
        """증분 동기화는 상한 없이 모든 페이지를 가져온다"""
        now = utcnow()
        for index in range(150):
            mail_client.add(make_wire(f"m{index:03d}", received_at=now - timedelta(minutes=index)))

        result = await make_usecase(max_emails_per_sync=100).incremental_sync(account)

        assert result.total_fetched == 150
        assert len([call for call in mail_client.list_calls if "in:inbox" in call.query]) == 2


class TestHistorySync:
    """히스토리 동기화 테스트"""

    @pytest.mark.asyncio
    async def test_without_cursor_runs_incremental(self, make_usecase, mail_client, account):
        """커서가 없으면 증분 동기화 경로를 그대로 실행"""
        mail_client.add(make_wire("m1"))
        usecase = make_usecase()

        with patch.object(usecase, "incremental_sync", wraps=usecase.incremental_sync) as spy:
            result = await usecase.history_sync(account)

        spy.assert_awaited_once_with(account)
        assert result.mode == SyncMode.INCREMENTAL
        assert result.new_emails == 1

    @pytest.mark.asyncio
    async def test_applies_changes_and_advances_cursor(
        self, make_usecase, mail_client, account, account_repository, email_repository
    ):
        """추가/라벨 변경은 가져오고 삭제는 삭제 표시한 뒤 커서를 전진"""
        await email_repository.create(_stored_email(account, "gone"))
        await email_repository.create(_stored_email(account, "relabeled"))
        await account_repository.update_fields(account.id, last_history_id="100")
        account = await account_repository.get_by_id(account.id)

        mail_client.add(make_wire("added"))
        mail_client.add(make_wire("relabeled", labels=["INBOX", "IMPORTANT"]))
        mail_client.history_page = HistoryPage(
            history_id="200",
            records=[
                HistoryRecord(id="101", messages_added=["added"]),
                HistoryRecord(id="102", labels_added=["relabeled"], messages_added=["added"]),
                HistoryRecord(id="103", messages_deleted=["gone"]),
            ],
        )

        result = await make_usecase().history_sync(account)

        assert result.mode == SyncMode.HISTORY
        assert result.new_emails == 1
        assert result.updated_emails == 1
        assert result.deleted_emails == 1
        assert mail_client.fetched == ["added", "relabeled"]
        assert await email_repository.count(account.id) == 2

        updated = await account_repository.get_by_id(account.id)
        assert updated.last_history_id == "200"
        assert updated.sync_status == AccountSyncStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_deleted_ids_are_not_fetched(self, make_usecase, mail_client, account, account_repository):
        """같은 패스에서 추가 후 삭제된 메시지는 가져오지 않는다"""
        await account_repository.update_fields(account.id, last_history_id="100")
        account = await account_repository.get_by_id(account.id)
        mail_client.history_page = HistoryPage(
            history_id="150",
            records=[
                HistoryRecord(id="101", messages_added=["short-lived"]),
                HistoryRecord(id="102", messages_deleted=["short-lived"]),
            ],
        )

        result = await make_usecase().history_sync(account)

        assert mail_client.fetched == []
        assert result.total_fetched == 0

    @pytest.mark.asyncio
    async def test_expired_cursor_falls_back_to_incremental(
        self, make_usecase, mail_client, account, account_repository
    ):
        """만료된 커서(404)는 증분 동기화로 대체"""
        await account_repository.update_fields(account.id, last_history_id="1")
        account = await account_repository.get_by_id(account.id)
        mail_client.history_error = ProviderError("not found", status_code=404)
        mail_client.add(make_wire("m1"))

        result = await make_usecase().history_sync(account)

        assert result.mode == SyncMode.INCREMENTAL
        assert result.new_emails == 1

        updated = await account_repository.get_by_id(account.id)
        assert updated.last_history_id == "500"

    @pytest.mark.asyncio
    async def test_history_error_keeps_cursor(self, make_usecase, mail_client, account, account_repository):
        """히스토리 조회 실패 시 커서를 유지하고 오류 상태로 기록"""
        await account_repository.update_fields(account.id, last_history_id="100")
        account = await account_repository.get_by_id(account.id)
        mail_client.history_error = ProviderError("bad request", status_code=400)

        result = await make_usecase().history_sync(account)

        assert result.errors[0].kind == ErrorKind.PROVIDER
        updated = await account_repository.get_by_id(account.id)
        assert updated.last_history_id == "100"
        assert updated.sync_status == AccountSyncStatus.ERROR
        assert updated.sync_error == "bad request"

    @pytest.mark.asyncio
    async def test_transient_history_error_keeps_account_active(
        self, make_usecase, mail_client, account, account_repository
    ):
        """일시적 오류로 아무것도 처리하지 못한 패스는 재시도되므로 active 상태와 동기화 시각을 유지"""
        await account_repository.update_fields(account.id, last_history_id="100")
        account = await account_repository.get_by_id(account.id)
        mail_client.history_error = TransientAPIError("rate limited", status_code=429)

        result = await make_usecase().history_sync(account)

        assert result.is_retryable()
        updated = await account_repository.get_by_id(account.id)
        assert updated.last_history_id == "100"
        assert updated.sync_status == AccountSyncStatus.ACTIVE
        assert updated.sync_error == "rate limited"
        assert updated.last_sync_at is None


class TestPassOutcome:
    """패스 종료 처리 테스트"""

    @pytest.mark.asyncio
    async def test_clean_pass_records_status_and_cursor(
        self, make_usecase, mail_client, account, account_repository
    ):
        """오류 없는 패스는 active 상태, 동기화 시각, 커서를 기록"""
        await account_repository.update_fields(
            account.id, sync_status=AccountSyncStatus.ERROR, sync_error="이전 오류"
        )
        mail_client.add(make_wire("m1"))

        result = await make_usecase().initial_sync(account)

        updated = await account_repository.get_by_id(account.id)
        assert updated.sync_status == AccountSyncStatus.ACTIVE
        assert updated.sync_error is None
        assert updated.last_sync_at == result.completed_at
        assert updated.last_history_id == "500"

    @pytest.mark.asyncio
    async def test_pass_with_errors_does_not_advance_cursor(
        self, make_usecase, mail_client, account, account_repository
    ):
        """오류가 있는 패스는 커서를 전진시키지 않는다"""
        mail_client.add(make_wire("m1"))
        mail_client.get_errors["m1"] = ProviderError("서버 거부", status_code=400)

        await make_usecase().initial_sync(account)

        updated = await account_repository.get_by_id(account.id)
        assert updated.sync_status == AccountSyncStatus.ERROR
        assert updated.sync_error == "서버 거부"
        assert updated.last_history_id is None
        assert updated.last_sync_at is not None

    @pytest.mark.asyncio
    async def test_deadline_keeps_partial_results(self, make_usecase, mail_client, account):
        """데드라인을 넘기면 멈추고 처리한 결과는 유지"""
        now = utcnow()
        for index in range(10):
            mail_client.add(make_wire(f"m{index}", received_at=now - timedelta(minutes=index)))
        ticks = itertools.count()

        result = await make_usecase(deadline_seconds=5, clock=lambda: next(ticks)).initial_sync(account)

        assert result.timed_out is True
        assert result.new_emails == 3
        assert result.errors[-1].kind == ErrorKind.TIMEOUT
        assert mail_client.queries == ["in:inbox newer_than:7d"]

    @pytest.mark.asyncio
    async def test_outgoing_message_joins_thread_case(
        self, make_usecase, mail_client, account, email_repository
    ):
        """보낸 메일은 같은 스레드의 케이스에 연결"""
        await email_repository.create(_stored_email(account, "incoming", thread_id="t-case", case_id="CASE-1"))
        mail_client.add(make_wire("reply", labels=["SENT"], thread_id="t-case"))

        await make_usecase().initial_sync(account)

        reply = await email_repository.get_by_provider_id(account.id, "reply")
        assert reply.case_id == "CASE-1"

    @pytest.mark.asyncio
    async def test_case_link_failure_is_not_a_sync_error(
        self, make_usecase, mail_client, account, email_repository, logger
    ):
        """케이스 연결 실패는 경고 로그만 남긴다"""
        mail_client.add(make_wire("reply", labels=["SENT"], thread_id="t-case"))

        with patch.object(
            email_repository,
            "find_case_id_in_thread",
            AsyncMock(side_effect=PersistenceError("조회 실패")),
        ):
            result = await make_usecase().initial_sync(account)

        assert result.new_emails == 1
        assert not result.has_errors()
        assert any("케이스 연결 실패" in message for message in logger.messages("warning"))


class TestLabelsAndQueries:
    """라벨 동기화, 단건 갱신, 통계 테스트"""

    @pytest.mark.asyncio
    async def test_sync_specific_labels_keeps_account_state(
        self, make_usecase, mail_client, account, account_repository
    ):
        """라벨 동기화는 계정의 동기화 시각을 변경하지 않는다"""
        mail_client.add(make_wire("important", labels=["IMPORTANT"]))
        mail_client.add(make_wire("plain"))

        result = await make_usecase().sync_specific_labels(account, ["IMPORTANT"], max_days=3)

        assert result.mode == SyncMode.LABELS
        assert mail_client.queries == ["label:IMPORTANT newer_than:3d"]
        assert result.new_emails == 1
        updated = await account_repository.get_by_id(account.id)
        assert updated.last_sync_at is None

    @pytest.mark.asyncio
    async def test_refresh_email(self, make_usecase, mail_client, account, email_repository):
        """저장된 메일의 라벨과 읽음 여부를 제공자 상태로 갱신"""
        stored = await email_repository.create(_stored_email(account, "m1", labels=["INBOX"]))
        mail_client.add(make_wire("m1", labels=["INBOX", "UNREAD", "STARRED"]))

        email = await make_usecase().refresh_email(account, stored.id)

        assert email.labels == ["INBOX", "UNREAD", "STARRED"]
        assert email.is_read is False
        reloaded = await email_repository.get_by_id(stored.id)
        assert reloaded.is_read is False

    @pytest.mark.asyncio
    async def test_get_stats(self, make_usecase, account, email_repository):
        """라벨 기반 통계"""
        await email_repository.create(_stored_email(account, "a", labels=["INBOX", "STARRED", "CATEGORY_SOCIAL"]))
        await email_repository.create(_stored_email(account, "b", labels=["INBOX", "IMPORTANT"]))
        unread = _stored_email(account, "c", labels=["INBOX", "UNREAD", "CATEGORY_SOCIAL"])
        unread.is_read = False
        await email_repository.create(unread)

        stats = await make_usecase().get_stats(account.id)

        assert stats.total == 3
        assert stats.unread == 1
        assert stats.starred == 1
        assert stats.important == 1
        assert stats.categories["CATEGORY_SOCIAL"] == 2
        assert stats.categories["CATEGORY_FORUMS"] == 0

    @pytest.mark.asyncio
    async def test_sync_unknown_account(self, make_usecase):
        from uuid import uuid4

        with pytest.raises(ValueError):
            await make_usecase().sync(uuid4(), SyncMode.INITIAL)
