"""
도메인 엔티티 테스트
"""

from datetime import timedelta

from core.domain.entities import Account, SyncMode, SyncResult, utcnow
from core.domain.errors import ErrorKind


class TestAccountCooldown:
    """계정 쿨다운 확인 테스트"""

    def test_never_synced(self):
        allowed, remaining = Account(email="a@example.com").can_sync(5)

        assert allowed is True
        assert remaining == timedelta(0)

    def test_elapsed_equals_cooldown(self):
        now = utcnow()
        account = Account(email="a@example.com", last_sync_at=now - timedelta(minutes=5))

        allowed, remaining = account.can_sync(5, now=now)

        assert allowed is True
        assert remaining == timedelta(0)

    def test_remaining_is_cooldown_minus_elapsed(self):
        now = utcnow()
        account = Account(email="a@example.com", last_sync_at=now - timedelta(minutes=2, seconds=15))

        allowed, remaining = account.can_sync(5, now=now)

        assert allowed is False
        assert remaining == timedelta(minutes=2, seconds=45)


class TestSyncResultRetry:
    """재시도 대상 판단 테스트"""

    def test_transient_without_progress(self):
        result = SyncResult(mode=SyncMode.INITIAL)
        result.add_error(ErrorKind.TRANSIENT, "rate limited", query="in:inbox")

        assert result.is_retryable()

    def test_progress_is_not_retried(self):
        result = SyncResult(mode=SyncMode.INITIAL, total_fetched=1)
        result.add_error(ErrorKind.TRANSIENT, "rate limited", query="in:inbox")

        assert not result.is_retryable()

    def test_auth_error_is_not_retried(self):
        result = SyncResult(mode=SyncMode.INITIAL)
        result.add_error(ErrorKind.TRANSIENT, "rate limited", query="in:inbox")
        result.add_error(ErrorKind.AUTH, "invalid_grant", query="in:sent")

        assert not result.is_retryable()

    def test_clean_pass_is_not_retried(self):
        assert not SyncResult(mode=SyncMode.INITIAL).is_retryable()
