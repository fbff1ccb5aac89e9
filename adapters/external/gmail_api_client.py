"""
Gmail API 클라이언트 어댑터

Gmail REST API(users/me)와의 통신을 담당하는 어댑터입니다.
2xx 이외의 응답은 제공자 오류로 변환하며, 재시도는 작업 큐에서 처리합니다.
"""

import base64
from email.header import Header
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

import httpx

from core.domain.entities import (
    GmailLabel,
    HistoryPage,
    HistoryRecord,
    ListMessagesOptions,
    MailboxProfile,
    MailLabel,
    MessageListResult,
    MessageRef,
    ModifyLabelsRequest,
    SendMessageRequest,
)
from core.domain.errors import TransientAPIError, classify_status
from core.domain.ports import LoggerPort, MailClientPort, TokenSourcePort

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"


def build_raw_message(request: SendMessageRequest) -> str:
    """RFC 2822 메시지를 만들어 base64url로 인코딩합니다."""
    if request.body_text and request.body_html:
        message = MIMEMultipart("alternative")
        message.attach(MIMEText(request.body_text, "plain", "utf-8"))
        message.attach(MIMEText(request.body_html, "html", "utf-8"))
    elif request.body_html:
        message = MIMEText(request.body_html, "html", "utf-8")
    else:
        message = MIMEText(request.body_text, "plain", "utf-8")

    message["To"] = ", ".join(request.to)
    if request.cc:
        message["Cc"] = ", ".join(request.cc)
    if request.bcc:
        message["Bcc"] = ", ".join(request.bcc)

    if request.subject.isascii():
        message["Subject"] = request.subject
    else:
        message["Subject"] = Header(request.subject, "utf-8")

    if request.in_reply_to:
        message["In-Reply-To"] = request.in_reply_to
    if request.references:
        message["References"] = request.references

    return base64.urlsafe_b64encode(message.as_bytes()).decode()


class GmailApiClientAdapter(MailClientPort):
    """Gmail API 클라이언트 어댑터 (계정 하나의 토큰 공급자를 사용)"""

    def __init__(
        self,
        token_source: TokenSourcePort,
        logger: LoggerPort,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        base_url: str = GMAIL_API_BASE,
    ):
        self.token_source = token_source
        self.logger = logger
        self.timeout = timeout
        self.transport = transport
        self.base_url = base_url

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        인증 헤더를 붙여 API를 호출합니다.

        Raises:
            AuthError: 401/403 응답 또는 토큰 갱신 실패
            TransientAPIError: 네트워크 오류, 요청 한도 초과, 5xx
            ProviderError: 그 밖의 2xx 이외 응답
        """
        token = await self.token_source.token()
        headers = {
            "Authorization": token.authorization_header(),
            "Accept": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    params=params,
                    json=json_body,
                    headers=headers,
                )
        except httpx.TransportError as e:
            raise TransientAPIError(f"Gmail API 연결 실패 {method} {path}: {str(e)}")

        if not 200 <= response.status_code < 300:
            error_msg = f"Gmail API 요청 실패 {method} {path}: {response.status_code} - {response.text[:500]}"
            self.logger.error(error_msg)
            error_class = classify_status(response.status_code)
            # Gmail은 사용량 한도 초과를 403으로 반환
            if response.status_code == 403 and "ratelimitexceeded" in response.text.lower():
                error_class = TransientAPIError
            raise error_class(error_msg, status_code=response.status_code)

        if not response.content:
            return {}
        return response.json()

    async def list_messages(self, options: ListMessagesOptions) -> MessageListResult:
        """메시지 목록을 조회합니다."""
        params: Dict[str, Any] = {"maxResults": options.max_results}
        if options.query:
            params["q"] = options.query
        if options.label_ids:
            params["labelIds"] = options.label_ids
        if options.page_token:
            params["pageToken"] = options.page_token
        if options.include_spam_trash:
            params["includeSpamTrash"] = "true"

        data = await self._request("GET", "/messages", params=params)
        return MessageListResult(
            messages=[
                MessageRef(id=item["id"], thread_id=item.get("threadId", ""))
                for item in data.get("messages", [])
            ],
            next_page_token=data.get("nextPageToken"),
            result_size_estimate=int(data.get("resultSizeEstimate", 0)),
        )

    async def get_message(self, message_id: str) -> Dict[str, Any]:
        """메시지 전체를 조회합니다."""
        return await self._request("GET", f"/messages/{message_id}", params={"format": "full"})

    async def send_message(self, request: SendMessageRequest) -> Dict[str, Any]:
        """메일을 발송합니다. 스레드 ID가 있으면 같은 스레드의 답장으로 보냅니다."""
        body: Dict[str, Any] = {"raw": build_raw_message(request)}
        if request.thread_id:
            body["threadId"] = request.thread_id

        result = await self._request("POST", "/messages/send", json_body=body)
        self.logger.info(f"메일 발송 완료: {result.get('id')}")
        return result

    async def modify_labels(self, message_id: str, request: ModifyLabelsRequest) -> Dict[str, Any]:
        """메시지 하나의 라벨을 변경합니다."""
        return await self._request(
            "POST",
            f"/messages/{message_id}/modify",
            json_body={
                "addLabelIds": request.add_label_ids,
                "removeLabelIds": request.remove_label_ids,
            },
        )

    async def batch_modify_labels(self, message_ids: List[str], request: ModifyLabelsRequest) -> None:
        """여러 메시지의 라벨을 한 번에 변경합니다."""
        if not message_ids:
            return
        await self._request(
            "POST",
            "/messages/batchModify",
            json_body={
                "ids": message_ids,
                "addLabelIds": request.add_label_ids,
                "removeLabelIds": request.remove_label_ids,
            },
        )

    async def mark_as_read(self, message_ids: List[str]) -> None:
        await self.batch_modify_labels(message_ids, ModifyLabelsRequest(remove_label_ids=[GmailLabel.UNREAD]))

    async def mark_as_unread(self, message_ids: List[str]) -> None:
        await self.batch_modify_labels(message_ids, ModifyLabelsRequest(add_label_ids=[GmailLabel.UNREAD]))

    async def star(self, message_ids: List[str]) -> None:
        await self.batch_modify_labels(message_ids, ModifyLabelsRequest(add_label_ids=[GmailLabel.STARRED]))

    async def unstar(self, message_ids: List[str]) -> None:
        await self.batch_modify_labels(message_ids, ModifyLabelsRequest(remove_label_ids=[GmailLabel.STARRED]))

    async def archive(self, message_ids: List[str]) -> None:
        await self.batch_modify_labels(message_ids, ModifyLabelsRequest(remove_label_ids=[GmailLabel.INBOX]))

    async def trash(self, message_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/messages/{message_id}/trash")

    async def untrash(self, message_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/messages/{message_id}/untrash")

    async def delete(self, message_id: str) -> None:
        """메시지를 영구 삭제합니다."""
        await self._request("DELETE", f"/messages/{message_id}")

    async def get_history(self, start_history_id: str) -> HistoryPage:
        """커서 이후의 모든 히스토리 페이지를 조회합니다."""
        page = HistoryPage()
        page_token = None

        while True:
            params: Dict[str, Any] = {"startHistoryId": start_history_id}
            if page_token:
                params["pageToken"] = page_token

            data = await self._request("GET", "/history", params=params)
            page.records.extend(self._to_history_record(item) for item in data.get("history", []))
            page.history_id = data.get("historyId") or page.history_id

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        self.logger.debug(f"히스토리 {len(page.records)}건 조회 (커서 {start_history_id} -> {page.history_id})")
        return page

    async def list_labels(self) -> List[MailLabel]:
        """라벨 목록을 조회합니다."""
        data = await self._request("GET", "/labels")
        return [
            MailLabel(
                id=item["id"],
                name=item.get("name", item["id"]),
                type=item.get("type", "user"),
                messages_total=int(item.get("messagesTotal", 0)),
                messages_unread=int(item.get("messagesUnread", 0)),
            )
            for item in data.get("labels", [])
        ]

    async def get_profile(self) -> MailboxProfile:
        """메일함 프로필을 조회합니다."""
        data = await self._request("GET", "/profile")
        return MailboxProfile(
            email_address=data.get("emailAddress", ""),
            messages_total=int(data.get("messagesTotal", 0)),
            threads_total=int(data.get("threadsTotal", 0)),
            history_id=str(data["historyId"]) if data.get("historyId") else None,
        )

    @staticmethod
    def _to_history_record(item: Dict[str, Any]) -> HistoryRecord:
        def message_ids(key: str) -> List[str]:
            return [entry["message"]["id"] for entry in item.get(key, []) if entry.get("message", {}).get("id")]

        return HistoryRecord(
            id=str(item.get("id", "")),
            messages_added=message_ids("messagesAdded"),
            messages_deleted=message_ids("messagesDeleted"),
            labels_added=message_ids("labelsAdded"),
            labels_removed=message_ids("labelsRemoved"),
        )
