"""
Google OAuth 어댑터

Google OAuth 2.0 토큰 엔드포인트와의 통신(인가 코드 교환, 토큰 갱신)과
계정 하나에 대한 단일 갱신(single-flight) 토큰 공급자를 구현합니다.
"""

import asyncio
from datetime import timedelta
from typing import List, Optional
from urllib.parse import urlencode

import httpx

from core.domain.entities import OAuthToken, utcnow
from core.domain.errors import AuthError, ProviderError, TransientAPIError, classify_status
from core.domain.ports import LoggerPort, OAuthClientPort, TokenSourcePort

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

# 재인증 외에는 복구할 수 없는 토큰 엔드포인트 오류
_AUTH_ERRORS = {"invalid_grant", "invalid_client", "unauthorized_client"}


class GoogleOAuthClient(OAuthClientPort):
    """Google OAuth 토큰 엔드포인트 클라이언트"""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_url: str,
        scopes: List[str],
        logger: LoggerPort,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_url = redirect_url
        self.scopes = scopes
        self.logger = logger
        self.timeout = timeout
        self.transport = transport

    def authorization_url(self, state: str) -> str:
        """메일함 연결용 동의 화면 URL을 생성합니다."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> OAuthToken:
        """인가 코드를 토큰으로 교환합니다."""
        self.logger.debug("인가 코드 교환 요청")
        return await self._request_token({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_url,
        })

    async def refresh(self, refresh_token: str) -> OAuthToken:
        """리프레시 토큰으로 새 액세스 토큰을 발급받습니다."""
        self.logger.debug("액세스 토큰 갱신 요청")
        return await self._request_token({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    async def _request_token(self, data: dict) -> OAuthToken:
        """
        토큰 엔드포인트를 호출합니다.

        Raises:
            AuthError: invalid_grant 등 재인증이 필요한 오류
            TransientAPIError: 네트워크 오류, 429, 5xx
            ProviderError: 그 밖의 2xx 이외 응답
        """
        form = {"client_id": self.client_id, "client_secret": self.client_secret, **data}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data=form,
                    headers={"Accept": "application/json"},
                )
        except httpx.TransportError as e:
            raise TransientAPIError(f"토큰 엔드포인트 연결 실패: {str(e)}")

        if response.status_code != 200:
            error_code = ""
            try:
                error_code = response.json().get("error", "")
            except ValueError:
                pass

            error_msg = f"토큰 요청 실패: {response.status_code} - {error_code or response.text}"
            self.logger.error(error_msg)
            if error_code in _AUTH_ERRORS:
                raise AuthError(error_msg, status_code=response.status_code)
            raise classify_status(response.status_code)(error_msg, status_code=response.status_code)

        payload = response.json()
        if not payload.get("access_token"):
            raise ProviderError("토큰 응답에 access_token이 없습니다", status_code=response.status_code)

        expires_in = int(payload.get("expires_in") or 0)
        return OAuthToken(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or "",
            token_type=payload.get("token_type") or "Bearer",
            expiry=utcnow() + timedelta(seconds=expires_in) if expires_in else None,
        )


class OAuthTokenSource(TokenSourcePort):
    """
    만료 시에만 갱신하는 토큰 공급자

    같은 계정에 대한 동시 호출은 진행 중인 갱신 하나를 기다렸다가 그 결과를 재사용합니다.
    """

    def __init__(self, oauth_client: OAuthClientPort, token: OAuthToken, leeway_seconds: int = 10):
        self.oauth_client = oauth_client
        self.leeway_seconds = leeway_seconds
        self._token = token
        self._lock = asyncio.Lock()

    async def token(self) -> OAuthToken:
        if self._token.is_valid(self.leeway_seconds):
            return self._token

        async with self._lock:
            # 대기하는 동안 다른 호출이 이미 갱신했을 수 있음
            if self._token.is_valid(self.leeway_seconds):
                return self._token

            if not self._token.refresh_token:
                raise AuthError("리프레시 토큰이 없어 재인증이 필요합니다")

            refreshed = await self.oauth_client.refresh(self._token.refresh_token)
            if not refreshed.refresh_token:
                refreshed = refreshed.model_copy(update={"refresh_token": self._token.refresh_token})

            self._token = refreshed
            return refreshed
