"""
테스트 설정

인메모리 SQLite 데이터베이스와 가짜 Gmail 클라이언트 픽스처를 제공합니다.
"""

import os

os.environ["ENVIRONMENT"] = "testing"

import base64
import copy
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from core.domain.entities import (
    Account,
    HistoryPage,
    ListMessagesOptions,
    MailboxProfile,
    MailLabel,
    MessageListResult,
    MessageRef,
    ModifyLabelsRequest,
    SendMessageRequest,
    to_epoch_seconds,
    utcnow,
)
from core.domain.ports import LoggerPort, MailClientPort
from adapters.db.database import DatabaseAdapter
from adapters.db.repositories import (
    AccountRepositoryAdapter,
    EmailRepositoryAdapter,
    SyncLeaseRepositoryAdapter,
)
from config.adapters import get_config

_AFTER_RE = re.compile(r"after:(\d+)")
_FOLDER_RE = re.compile(r"in:(\w+)")
_LABEL_RE = re.compile(r"label:(\S+)")


def b64(text: str) -> str:
    """base64url 인코딩 (패딩 제거)"""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode().rstrip("=")


def to_millis(value: datetime) -> str:
    return str(to_epoch_seconds(value) * 1000)


def make_wire(
    message_id: str,
    labels: Optional[List[str]] = None,
    received_at: Optional[datetime] = None,
    thread_id: Optional[str] = None,
    subject: str = "테스트 메일",
    text: str = "본문",
) -> Dict[str, Any]:
    """messages.get(format=full) 형태의 메시지 응답"""
    return {
        "id": message_id,
        "threadId": thread_id or f"thread-{message_id}",
        "labelIds": labels if labels is not None else ["INBOX", "UNREAD"],
        "snippet": text[:20],
        "historyId": "100",
        "internalDate": to_millis(received_at or utcnow()),
        "sizeEstimate": 1024,
        "payload": {
            "mimeType": "text/plain",
            "headers": [
                {"name": "From", "value": "보낸사람 <sender@example.com>"},
                {"name": "To", "value": "owner@example.com"},
                {"name": "Subject", "value": subject},
            ],
            "body": {"size": len(text), "data": b64(text)},
        },
    }


class RecordingLogger(LoggerPort):
    """로그를 메모리에 기록하는 로거"""

    def __init__(self):
        self.records: List[tuple] = []

    def info(self, message: str, **kwargs) -> None:
        self.records.append(("info", message))

    def warning(self, message: str, **kwargs) -> None:
        self.records.append(("warning", message))

    def error(self, message: str, **kwargs) -> None:
        self.records.append(("error", message))

    def debug(self, message: str, **kwargs) -> None:
        self.records.append(("debug", message))

    def messages(self, level: str) -> List[str]:
        return [message for record_level, message in self.records if record_level == level]


class FakeMailClient(MailClientPort):
    """
    메모리 메일함을 사용하는 Gmail 클라이언트

    in:<폴더>, label:<라벨>, after:<유닉스 초> 조건만 해석하며
    newer_than 같은 나머지 조건은 무시합니다.
    """

    def __init__(self, history_id: str = "500"):
        self.messages: Dict[str, Dict[str, Any]] = {}
        self.history_id = history_id
        self.history_page: Optional[HistoryPage] = None
        self.history_error: Optional[Exception] = None
        self.list_errors: Dict[str, Exception] = {}
        self.get_errors: Dict[str, Exception] = {}
        self.queries: List[str] = []
        self.list_calls: List[ListMessagesOptions] = []
        self.fetched: List[str] = []

    def add(self, wire: Dict[str, Any]) -> None:
        self.messages[wire["id"]] = wire

    def _matches(self, wire: Dict[str, Any], query: str) -> bool:
        labels = wire.get("labelIds") or []
        for folder in _FOLDER_RE.findall(query):
            if folder.upper() not in labels:
                return False
        for label in _LABEL_RE.findall(query):
            if label not in labels:
                return False
        after = _AFTER_RE.search(query)
        if after and int(wire["internalDate"]) // 1000 <= int(after.group(1)):
            return False
        return True

    async def list_messages(self, options: ListMessagesOptions) -> MessageListResult:
        self.list_calls.append(options)
        if options.page_token is None:
            self.queries.append(options.query)

        for fragment, error in self.list_errors.items():
            if fragment in options.query:
                raise error

        matched = sorted(
            (wire for wire in self.messages.values() if self._matches(wire, options.query)),
            key=lambda wire: int(wire["internalDate"]),
            reverse=True,
        )
        start = int(options.page_token or 0)
        end = start + options.max_results
        return MessageListResult(
            messages=[MessageRef(id=wire["id"], thread_id=wire["threadId"]) for wire in matched[start:end]],
            next_page_token=str(end) if end < len(matched) else None,
            result_size_estimate=len(matched),
        )

    async def get_message(self, message_id: str) -> Dict[str, Any]:
        self.fetched.append(message_id)
        if message_id in self.get_errors:
            raise self.get_errors[message_id]
        return copy.deepcopy(self.messages[message_id])

    async def send_message(self, request: SendMessageRequest) -> Dict[str, Any]:
        return {"id": "sent-1"}

    async def modify_labels(self, message_id: str, request: ModifyLabelsRequest) -> Dict[str, Any]:
        wire = self.messages[message_id]
        labels = [label for label in wire["labelIds"] if label not in request.remove_label_ids]
        wire["labelIds"] = labels + [label for label in request.add_label_ids if label not in labels]
        return wire

    async def batch_modify_labels(self, message_ids: List[str], request: ModifyLabelsRequest) -> None:
        for message_id in message_ids:
            await self.modify_labels(message_id, request)

    async def get_history(self, start_history_id: str) -> HistoryPage:
        if self.history_error:
            raise self.history_error
        return self.history_page or HistoryPage(history_id=start_history_id)

    async def list_labels(self) -> List[MailLabel]:
        return [MailLabel(id="INBOX", name="INBOX", type="system")]

    async def get_profile(self) -> MailboxProfile:
        return MailboxProfile(email_address="owner@example.com", history_id=self.history_id)


@pytest.fixture
def config():
    return get_config()


@pytest.fixture
def logger():
    return RecordingLogger()


@pytest.fixture
def mail_client():
    return FakeMailClient()


@pytest_asyncio.fixture
async def db_adapter(config):
    adapter = DatabaseAdapter(config)
    await adapter.initialize()
    await adapter.create_tables()
    yield adapter
    await adapter.close()


@pytest_asyncio.fixture
async def session(db_adapter):
    async with db_adapter.get_session() as session:
        yield session


@pytest.fixture
def account_repository(session):
    return AccountRepositoryAdapter(session)


@pytest.fixture
def email_repository(session):
    return EmailRepositoryAdapter(session)


@pytest.fixture
def lease_repository(session):
    return SyncLeaseRepositoryAdapter(session)


@pytest_asyncio.fixture
async def account(account_repository):
    return await account_repository.create(
        Account(
            email="owner@example.com",
            provider_user_id="owner@example.com",
            access_token="encrypted-access",
            refresh_token="encrypted-refresh",
            token_expiry=utcnow() + timedelta(hours=1),
        )
    )
