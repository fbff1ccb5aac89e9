"""
도메인 엔티티 정의

메일 동기화의 핵심 개념을 나타내는 엔티티들을 정의합니다.
모든 엔티티는 Pydantic 모델을 기반으로 하여 타입 안정성을 보장합니다.
"""

from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from .errors import ErrorKind

GOOGLE_PROVIDER = "google"


def utcnow() -> datetime:
    """현재 UTC 시간을 tz 정보 없이 반환합니다."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_epoch_seconds(value: datetime) -> int:
    """tz 정보 없는 UTC 시간을 유닉스 초로 변환합니다."""
    return int(value.replace(tzinfo=timezone.utc).timestamp())


class GmailLabel:
    """Gmail 시스템 라벨 ID"""
    INBOX = "INBOX"
    SENT = "SENT"
    DRAFT = "DRAFT"
    SPAM = "SPAM"
    TRASH = "TRASH"
    UNREAD = "UNREAD"
    STARRED = "STARRED"
    IMPORTANT = "IMPORTANT"

    CATEGORY_PERSONAL = "CATEGORY_PERSONAL"
    CATEGORY_SOCIAL = "CATEGORY_SOCIAL"
    CATEGORY_PROMOTIONS = "CATEGORY_PROMOTIONS"
    CATEGORY_UPDATES = "CATEGORY_UPDATES"
    CATEGORY_FORUMS = "CATEGORY_FORUMS"

    CATEGORIES = (
        CATEGORY_PERSONAL,
        CATEGORY_SOCIAL,
        CATEGORY_PROMOTIONS,
        CATEGORY_UPDATES,
        CATEGORY_FORUMS,
    )


class AccountSyncStatus(str, Enum):
    """계정 동기화 상태"""
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


class SyncMode(str, Enum):
    """동기화 방식"""
    INITIAL = "initial"
    INCREMENTAL = "incremental"
    HISTORY = "history"
    LABELS = "labels"


class OAuthToken(BaseModel):
    """OAuth 토큰 (평문, 메모리 전용)"""

    access_token: str = Field(..., description="액세스 토큰")
    refresh_token: str = Field(default="", description="리프레시 토큰")
    token_type: str = Field(default="Bearer", description="토큰 타입")
    expiry: Optional[datetime] = Field(None, description="만료 시간 (UTC)")

    def is_valid(self, leeway_seconds: int = 10, now: Optional[datetime] = None) -> bool:
        """만료 여유 시간을 고려해 토큰이 유효한지 확인"""
        if not self.access_token:
            return False
        if self.expiry is None:
            return True
        current = now or utcnow()
        return self.expiry - timedelta(seconds=leeway_seconds) > current

    def authorization_header(self) -> str:
        """Authorization 헤더 값"""
        return f"{self.token_type or 'Bearer'} {self.access_token}"


class Account(BaseModel):
    """연결된 메일함 계정 엔티티"""

    id: UUID = Field(default_factory=uuid4, description="계정 고유 ID")
    user_id: Optional[str] = Field(None, description="소유 사용자 ID")
    provider: str = Field(default=GOOGLE_PROVIDER, description="메일 제공자")
    provider_user_id: Optional[str] = Field(None, description="제공자 측 사용자 ID")
    email: str = Field(..., description="계정 이메일 주소")
    access_token: str = Field(default="", description="암호화된 액세스 토큰")
    refresh_token: str = Field(default="", description="암호화된 리프레시 토큰")
    token_expiry: Optional[datetime] = Field(None, description="토큰 만료 시간 (UTC)")
    sync_status: AccountSyncStatus = Field(default=AccountSyncStatus.ACTIVE, description="동기화 상태")
    sync_error: Optional[str] = Field(None, description="마지막 동기화 오류")
    last_sync_at: Optional[datetime] = Field(None, description="마지막 동기화 시간")
    last_history_id: Optional[str] = Field(None, description="마지막 히스토리 커서")
    created_at: datetime = Field(default_factory=utcnow, description="생성 시간")
    updated_at: datetime = Field(default_factory=utcnow, description="수정 시간")
    deleted_at: Optional[datetime] = Field(None, description="삭제 시간")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        """이메일 형식 검증"""
        if '@' not in v:
            raise ValueError('유효한 이메일 주소가 아닙니다')
        return v.lower()

    def is_active(self) -> bool:
        """동기화 대상 상태인지 확인"""
        return self.sync_status == AccountSyncStatus.ACTIVE and self.deleted_at is None

    def is_token_expired(self, now: Optional[datetime] = None) -> bool:
        """저장된 토큰이 만료되었는지 확인"""
        if self.token_expiry is None:
            return False
        return self.token_expiry <= (now or utcnow())

    def can_sync(
        self,
        cooldown_minutes: int,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, timedelta]:
        """
        쿨다운 경과 여부를 확인합니다.

        Returns:
            (가능 여부, 남은 대기 시간) 튜플
        """
        if self.last_sync_at is None:
            return True, timedelta(0)

        elapsed = (now or utcnow()) - self.last_sync_at
        cooldown = timedelta(minutes=cooldown_minutes)
        if elapsed >= cooldown:
            return True, timedelta(0)
        return False, cooldown - elapsed


class EmailAddress(BaseModel):
    """이메일 주소"""

    name: str = Field(default="", description="표시 이름")
    email: str = Field(default="", description="주소")

    def __str__(self) -> str:
        if self.name:
            return f"{self.name} <{self.email}>"
        return self.email


class Attachment(BaseModel):
    """첨부파일 메타데이터"""

    filename: str = Field(..., description="파일명")
    mime_type: str = Field(default="application/octet-stream", description="MIME 타입")
    size: int = Field(default=0, description="크기 (바이트)")
    attachment_id: Optional[str] = Field(None, description="제공자 첨부파일 ID")


class ParsedMessage(BaseModel):
    """파싱된 제공자 메시지"""

    id: str = Field(..., description="제공자 메시지 ID")
    thread_id: str = Field(default="", description="스레드 ID")
    label_ids: List[str] = Field(default_factory=list, description="라벨 목록")
    snippet: str = Field(default="", description="미리보기")
    history_id: Optional[str] = Field(None, description="히스토리 ID")
    internal_date: datetime = Field(..., description="수신 시간 (UTC)")
    size_estimate: int = Field(default=0, description="크기 추정치")

    from_address: EmailAddress = Field(default_factory=EmailAddress, description="발신자")
    to: List[EmailAddress] = Field(default_factory=list, description="수신자")
    cc: List[EmailAddress] = Field(default_factory=list, description="참조")
    bcc: List[EmailAddress] = Field(default_factory=list, description="숨은 참조")
    subject: str = Field(default="", description="제목")
    date_header: Optional[str] = Field(None, description="Date 헤더 원문")
    message_id_header: Optional[str] = Field(None, description="Message-ID 헤더")

    body_text: str = Field(default="", description="텍스트 본문")
    body_html: str = Field(default="", description="HTML 본문")
    attachments: List[Attachment] = Field(default_factory=list, description="첨부파일")

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)

    @property
    def is_read(self) -> bool:
        return GmailLabel.UNREAD not in self.label_ids

    @property
    def is_outgoing(self) -> bool:
        return GmailLabel.SENT in self.label_ids


class Email(BaseModel):
    """저장된 메일 엔티티"""

    id: UUID = Field(default_factory=uuid4, description="메일 고유 ID")
    account_id: UUID = Field(..., description="계정 ID")
    provider_message_id: str = Field(..., description="제공자 메시지 ID")
    thread_id: str = Field(default="", description="스레드 ID")
    from_email: str = Field(default="", description="발신자 주소")
    from_name: str = Field(default="", description="발신자 이름")
    to_addresses: List[str] = Field(default_factory=list, description="수신자 목록")
    cc_addresses: List[str] = Field(default_factory=list, description="참조 목록")
    subject: str = Field(default="", description="제목")
    body_text: str = Field(default="", description="텍스트 본문")
    body_html: str = Field(default="", description="HTML 본문")
    snippet: str = Field(default="", description="미리보기")
    received_at: datetime = Field(..., description="수신 시간")
    labels: List[str] = Field(default_factory=list, description="라벨 목록")
    is_read: bool = Field(default=False, description="읽음 여부")
    has_attachments: bool = Field(default=False, description="첨부파일 여부")
    attachments: List[Attachment] = Field(default_factory=list, description="첨부파일 메타데이터")
    case_id: Optional[str] = Field(None, description="연결된 케이스 ID")
    created_at: datetime = Field(default_factory=utcnow, description="생성 시간")
    updated_at: datetime = Field(default_factory=utcnow, description="수정 시간")
    deleted_at: Optional[datetime] = Field(None, description="삭제 시간")

    @property
    def is_outgoing(self) -> bool:
        return GmailLabel.SENT in self.labels


class SyncError(BaseModel):
    """동기화 중 발생한 개별 오류"""

    kind: ErrorKind = Field(..., description="오류 종류")
    message: str = Field(..., description="오류 메시지")
    message_id: Optional[str] = Field(None, description="문제 메시지 ID (패스 단위 오류는 None)")
    query: Optional[str] = Field(None, description="오류가 발생한 쿼리")


class SyncResult(BaseModel):
    """동기화 패스 결과 (저장하지 않음)"""

    mode: SyncMode = Field(..., description="실제 실행된 동기화 방식")
    total_fetched: int = Field(default=0, description="처리한 메시지 수")
    new_emails: int = Field(default=0, description="새로 저장한 메시지 수")
    updated_emails: int = Field(default=0, description="갱신한 메시지 수")
    deleted_emails: int = Field(default=0, description="삭제 처리한 메시지 수")
    errors: List[SyncError] = Field(default_factory=list, description="오류 목록")
    timed_out: bool = Field(default=False, description="데드라인 초과 여부")
    history_id: Optional[str] = Field(None, description="다음 히스토리 커서")
    started_at: datetime = Field(default_factory=utcnow, description="시작 시간")
    completed_at: Optional[datetime] = Field(None, description="완료 시간")

    def add_error(
        self,
        kind: ErrorKind,
        message: str,
        message_id: Optional[str] = None,
        query: Optional[str] = None,
    ) -> SyncError:
        """오류 기록"""
        error = SyncError(kind=kind, message=message, message_id=message_id, query=query)
        self.errors.append(error)
        return error

    def has_errors(self) -> bool:
        return bool(self.errors)

    def pass_errors(self) -> List[SyncError]:
        """메시지 단위가 아닌 패스 단위 오류"""
        return [error for error in self.errors if error.message_id is None]

    def is_retryable(self) -> bool:
        """일시적 오류로 아무 메시지도 처리하지 못한 패스 (작업 재시도 대상)"""
        if self.total_fetched > 0 or not self.errors:
            return False
        return all(error.kind == ErrorKind.TRANSIENT for error in self.errors)


class MailStats(BaseModel):
    """계정별 메일 통계"""

    total: int = Field(default=0, description="전체 메일 수")
    unread: int = Field(default=0, description="읽지 않은 메일 수")
    starred: int = Field(default=0, description="별표 메일 수")
    important: int = Field(default=0, description="중요 메일 수")
    categories: Dict[str, int] = Field(default_factory=dict, description="카테고리별 메일 수")


class MessageRef(BaseModel):
    """목록 조회 결과의 메시지 참조"""

    id: str
    thread_id: str = ""


class ListMessagesOptions(BaseModel):
    """메시지 목록 조회 옵션"""

    query: str = Field(default="", description="검색 쿼리")
    label_ids: List[str] = Field(default_factory=list, description="라벨 필터")
    page_token: Optional[str] = Field(None, description="페이지 토큰")
    max_results: int = Field(default=100, description="페이지 크기")
    include_spam_trash: bool = Field(default=False, description="스팸/휴지통 포함 여부")


class MessageListResult(BaseModel):
    """메시지 목록 조회 결과"""

    messages: List[MessageRef] = Field(default_factory=list)
    next_page_token: Optional[str] = None
    result_size_estimate: int = 0


class SendMessageRequest(BaseModel):
    """메일 발송 요청"""

    to: List[str] = Field(..., description="수신자")
    cc: List[str] = Field(default_factory=list, description="참조")
    bcc: List[str] = Field(default_factory=list, description="숨은 참조")
    subject: str = Field(default="", description="제목")
    body_text: str = Field(default="", description="텍스트 본문")
    body_html: str = Field(default="", description="HTML 본문")
    thread_id: Optional[str] = Field(None, description="답장 대상 스레드 ID")
    in_reply_to: Optional[str] = Field(None, description="In-Reply-To 헤더")
    references: Optional[str] = Field(None, description="References 헤더")

    @field_validator('to')
    @classmethod
    def validate_to(cls, v):
        """수신자 검증"""
        if not v:
            raise ValueError('수신자가 최소 한 명 필요합니다')
        return v


class ModifyLabelsRequest(BaseModel):
    """라벨 변경 요청"""

    add_label_ids: List[str] = Field(default_factory=list)
    remove_label_ids: List[str] = Field(default_factory=list)


class HistoryRecord(BaseModel):
    """히스토리 변경 기록"""

    id: str
    messages_added: List[str] = Field(default_factory=list)
    messages_deleted: List[str] = Field(default_factory=list)
    labels_added: List[str] = Field(default_factory=list)
    labels_removed: List[str] = Field(default_factory=list)


class HistoryPage(BaseModel):
    """히스토리 조회 결과"""

    records: List[HistoryRecord] = Field(default_factory=list)
    history_id: Optional[str] = Field(None, description="메일함의 최신 히스토리 ID")


class MailboxProfile(BaseModel):
    """메일함 프로필"""

    email_address: str
    messages_total: int = 0
    threads_total: int = 0
    history_id: Optional[str] = None


class MailLabel(BaseModel):
    """메일함 라벨"""

    id: str
    name: str
    type: str = "user"
    messages_total: int = 0
    messages_unread: int = 0


class SearchOptions(BaseModel):
    """Gmail 검색 쿼리 옵션"""

    from_address: Optional[str] = None
    to_address: Optional[str] = None
    subject: Optional[str] = None
    has_words: Optional[str] = None
    doesnt_have: Optional[str] = None
    after: Optional[date] = None
    before: Optional[date] = None
    has_attachment: bool = False
    is_unread: bool = False
    is_starred: bool = False
    labels: List[str] = Field(default_factory=list)

    def build_query(self) -> str:
        """Gmail 검색 쿼리 문자열 생성"""
        parts: List[str] = []

        if self.from_address:
            parts.append(f"from:{self.from_address}")
        if self.to_address:
            parts.append(f"to:{self.to_address}")
        if self.subject:
            subject = f'"{self.subject}"' if " " in self.subject else self.subject
            parts.append(f"subject:{subject}")
        if self.has_words:
            parts.append(self.has_words)
        if self.doesnt_have:
            parts.extend(f"-{word}" for word in self.doesnt_have.split())
        if self.after:
            parts.append(f"after:{self.after.strftime('%Y/%m/%d')}")
        if self.before:
            parts.append(f"before:{self.before.strftime('%Y/%m/%d')}")
        if self.has_attachment:
            parts.append("has:attachment")
        if self.is_unread:
            parts.append("is:unread")
        if self.is_starred:
            parts.append("is:starred")
        for label in self.labels:
            parts.append(f"label:{label}")

        return " ".join(parts)


class SyncTriggerResult(BaseModel):
    """수동 동기화 요청 결과"""

    accepted: bool
    retry_after_seconds: int = 0
    task_id: Optional[str] = None


class FanOutReport(BaseModel):
    """팬아웃 실행 결과"""

    found: int = 0
    enqueued: int = 0
    skipped_cooldown: int = 0
    failed: int = 0
