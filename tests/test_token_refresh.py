"""
토큰 갱신 테스트

단일 갱신(single-flight) 토큰 공급자와 변경 시에만 저장하는 래퍼를 검증합니다.
"""

import asyncio
import json
from datetime import timedelta
from typing import List
from urllib.parse import parse_qs
from unittest.mock import AsyncMock

import httpx
import pytest

from core.domain.entities import AccountSyncStatus, OAuthToken, utcnow
from core.domain.errors import AuthError, TransientAPIError
from core.domain.ports import EncryptionServicePort, TokenSourcePort
from core.usecases.token_refresh import CredentialPersister, PersistingTokenSource
from adapters.external.google_oauth import GOOGLE_TOKEN_URL, GoogleOAuthClient, OAuthTokenSource


class StaticTokenSource(TokenSourcePort):
    """미리 정한 토큰을 순서대로 반환"""

    def __init__(self, tokens: List[OAuthToken]):
        self.tokens = tokens
        self.calls = 0

    async def token(self) -> OAuthToken:
        token = self.tokens[min(self.calls, len(self.tokens) - 1)]
        self.calls += 1
        return token


class PrefixEncryption(EncryptionServicePort):
    async def encrypt(self, data: str) -> str:
        return f"enc:{data}"

    async def decrypt(self, encrypted_data: str) -> str:
        return encrypted_data[len("enc:"):]


def _oauth_client(handler, logger) -> GoogleOAuthClient:
    return GoogleOAuthClient(
        client_id="client-id",
        client_secret="client-secret",
        redirect_url="http://localhost/callback",
        scopes=["https://www.googleapis.com/auth/gmail.readonly"],
        logger=logger,
        transport=httpx.MockTransport(handler),
    )


class TestPersistingTokenSource:
    """변경 시 저장 래퍼 테스트"""

    @pytest.mark.asyncio
    async def test_unchanged_token_is_not_written(self, logger):
        """액세스 토큰과 만료 시간이 같으면 저장하지 않는다"""
        expiry = utcnow() + timedelta(hours=1)
        token = OAuthToken(access_token="a1", refresh_token="r1", expiry=expiry)
        handler = AsyncMock()
        source = PersistingTokenSource(
            StaticTokenSource([token]), handler, logger, last_access_token="a1", last_expiry=expiry
        )

        for _ in range(3):
            assert (await source.token()).access_token == "a1"

        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_changed_token_is_written_once(self, logger):
        """새 토큰은 한 번만 저장"""
        old = OAuthToken(access_token="a1", expiry=utcnow() + timedelta(seconds=5))
        new = OAuthToken(access_token="a2", refresh_token="r2", expiry=utcnow() + timedelta(hours=1))
        handler = AsyncMock()
        source = PersistingTokenSource(
            StaticTokenSource([new]), handler, logger, last_access_token=old.access_token, last_expiry=old.expiry
        )

        await source.token()
        await source.token()

        handler.assert_awaited_once_with(new)

    @pytest.mark.asyncio
    async def test_persistence_failure_still_returns_token(self, logger):
        """저장 실패는 로그만 남기고 토큰을 반환"""
        new = OAuthToken(access_token="a2", expiry=utcnow() + timedelta(hours=1))
        handler = AsyncMock(side_effect=RuntimeError("db down"))
        source = PersistingTokenSource(StaticTokenSource([new]), handler, logger)

        token = await source.token()

        assert token.access_token == "a2"
        assert any("db down" in message for message in logger.messages("error"))


class TestCredentialPersister:
    """자격 증명 저장 전략 테스트"""

    @pytest.mark.asyncio
    async def test_writes_encrypted_token_fields(self, account, account_repository):
        """토큰 필드와 상태만 갱신"""
        await account_repository.update_fields(account.id, last_history_id="42")
        expiry = utcnow() + timedelta(hours=1)
        persister = CredentialPersister(account_repository, PrefixEncryption(), account.id)

        await persister(OAuthToken(access_token="new-access", refresh_token="new-refresh", expiry=expiry))

        updated = await account_repository.get_by_id(account.id)
        assert updated.access_token == "enc:new-access"
        assert updated.refresh_token == "enc:new-refresh"
        assert updated.token_expiry == expiry
        assert updated.sync_status == AccountSyncStatus.ACTIVE
        assert updated.last_history_id == "42"

    @pytest.mark.asyncio
    async def test_keeps_refresh_token_when_absent(self, account, account_repository):
        """새 리프레시 토큰이 없으면 기존 값을 유지"""
        persister = CredentialPersister(account_repository, PrefixEncryption(), account.id)

        await persister(OAuthToken(access_token="new-access", expiry=utcnow() + timedelta(hours=1)))

        updated = await account_repository.get_by_id(account.id)
        assert updated.access_token == "enc:new-access"
        assert updated.refresh_token == "encrypted-refresh"


class TestOAuthTokenSource:
    """단일 갱신 토큰 공급자 테스트"""

    @pytest.mark.asyncio
    async def test_valid_token_is_not_refreshed(self, logger):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(500)

        token = OAuthToken(access_token="a1", refresh_token="r1", expiry=utcnow() + timedelta(hours=1))
        source = OAuthTokenSource(_oauth_client(handler, logger), token)

        assert (await source.token()).access_token == "a1"
        assert requests == []

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, logger):
        """동시 호출은 갱신 요청 하나를 공유"""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={"access_token": "a2", "expires_in": 3600, "token_type": "Bearer"})

        expired = OAuthToken(access_token="a1", refresh_token="r1", expiry=utcnow() - timedelta(minutes=1))
        source = OAuthTokenSource(_oauth_client(handler, logger), expired)

        tokens = await asyncio.gather(*(source.token() for _ in range(5)))

        assert len(requests) == 1
        assert requests[0]["grant_type"] == ["refresh_token"]
        assert requests[0]["refresh_token"] == ["r1"]
        assert {token.access_token for token in tokens} == {"a2"}
        # 응답에 리프레시 토큰이 없으면 기존 값을 유지
        assert tokens[0].refresh_token == "r1"

    @pytest.mark.asyncio
    async def test_token_inside_leeway_is_refreshed(self, logger):
        """만료 10초 이내의 토큰은 갱신"""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "a2", "refresh_token": "r2", "expires_in": 3600})

        almost = OAuthToken(access_token="a1", refresh_token="r1", expiry=utcnow() + timedelta(seconds=5))
        token = await OAuthTokenSource(_oauth_client(handler, logger), almost).token()

        assert token.access_token == "a2"
        assert token.refresh_token == "r2"

    @pytest.mark.asyncio
    async def test_invalid_grant_is_auth_error(self, logger):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_grant"})

        expired = OAuthToken(access_token="a1", refresh_token="r1", expiry=utcnow() - timedelta(minutes=1))

        with pytest.raises(AuthError):
            await OAuthTokenSource(_oauth_client(handler, logger), expired).token()

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, logger):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="unavailable")

        expired = OAuthToken(access_token="a1", refresh_token="r1", expiry=utcnow() - timedelta(minutes=1))

        with pytest.raises(TransientAPIError):
            await OAuthTokenSource(_oauth_client(handler, logger), expired).token()

    @pytest.mark.asyncio
    async def test_missing_refresh_token_is_auth_error(self, logger):
        expired = OAuthToken(access_token="a1", expiry=utcnow() - timedelta(minutes=1))

        with pytest.raises(AuthError):
            await OAuthTokenSource(_oauth_client(lambda request: httpx.Response(500), logger), expired).token()


class TestGoogleOAuthClient:
    """토큰 엔드포인트 클라이언트 테스트"""

    def test_authorization_url(self, logger):
        url = _oauth_client(lambda request: httpx.Response(500), logger).authorization_url("state-1")

        assert url.startswith("https://accounts.google.com/o/oauth2/auth?")
        assert "access_type=offline" in url
        assert "prompt=consent" in url
        assert "state=state-1" in url

    @pytest.mark.asyncio
    async def test_exchange_code(self, logger):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(
                200,
                content=json.dumps({"access_token": "a1", "refresh_token": "r1", "expires_in": 3599}),
                headers={"Content-Type": "application/json"},
            )

        token = await _oauth_client(handler, logger).exchange_code("auth-code")

        assert seen["url"] == GOOGLE_TOKEN_URL
        assert seen["form"]["code"] == ["auth-code"]
        assert seen["form"]["grant_type"] == ["authorization_code"]
        assert token.refresh_token == "r1"
        assert token.expiry > utcnow()
