"""
포트 인터페이스 정의

클린 아키텍처의 핵심으로, Core 레이어와 외부 어댑터 간의 계약을 정의합니다.
모든 포트는 추상 기본 클래스(ABC)로 정의되어 구현을 강제합니다.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from uuid import UUID

from .entities import (
    Account,
    Email,
    HistoryPage,
    ListMessagesOptions,
    MailboxProfile,
    MailLabel,
    MessageListResult,
    ModifyLabelsRequest,
    OAuthToken,
    SendMessageRequest,
    SyncMode,
)


class AccountRepositoryPort(ABC):
    """계정(자격 증명 저장소) 포트"""

    @abstractmethod
    async def create(self, account: Account) -> Account:
        """계정 생성"""
        pass

    @abstractmethod
    async def get_by_id(self, account_id: UUID) -> Optional[Account]:
        """ID로 계정 조회 (삭제된 계정 제외)"""
        pass

    @abstractmethod
    async def get_by_email(self, provider: str, email: str) -> Optional[Account]:
        """제공자와 이메일로 계정 조회"""
        pass

    @abstractmethod
    async def list_all(self, skip: int = 0, limit: int = 100) -> List[Account]:
        """모든 계정 목록 조회"""
        pass

    @abstractmethod
    async def list_syncable(self, provider: str, limit: int = 100) -> List[Account]:
        """동기화 대상 계정 목록 조회 (제공자 일치, active, 삭제되지 않음)"""
        pass

    @abstractmethod
    async def update_fields(self, account_id: UUID, **fields: Any) -> bool:
        """지정한 컬럼만 갱신 (행 전체를 덮어쓰지 않음)"""
        pass


class EmailRepositoryPort(ABC):
    """메일 저장소 포트"""

    @abstractmethod
    async def create(self, email: Email) -> Email:
        """메일 저장"""
        pass

    @abstractmethod
    async def get_by_id(self, email_id: UUID) -> Optional[Email]:
        """ID로 메일 조회"""
        pass

    @abstractmethod
    async def get_by_provider_id(self, account_id: UUID, provider_message_id: str) -> Optional[Email]:
        """(계정, 제공자 메시지 ID)로 메일 조회 (삭제 표시된 메일 포함)"""
        pass

    @abstractmethod
    async def update_labels(self, email_id: UUID, labels: List[str], is_read: bool) -> None:
        """라벨과 읽음 여부만 갱신"""
        pass

    @abstractmethod
    async def soft_delete_by_provider_ids(self, account_id: UUID, provider_message_ids: List[str]) -> int:
        """제공자 메시지 ID 목록을 삭제 표시"""
        pass

    @abstractmethod
    async def find_case_id_in_thread(self, account_id: UUID, thread_id: str) -> Optional[str]:
        """같은 스레드에서 케이스가 연결된 메일의 케이스 ID 조회"""
        pass

    @abstractmethod
    async def set_case_id(self, email_id: UUID, case_id: str) -> None:
        """케이스 연결"""
        pass

    @abstractmethod
    async def count(self, account_id: UUID, unread_only: bool = False) -> int:
        """메일 수 조회"""
        pass

    @abstractmethod
    async def list_label_sets(self, account_id: UUID) -> List[List[str]]:
        """계정의 모든 메일 라벨 목록 조회"""
        pass

    @abstractmethod
    async def end_batch(self) -> None:
        """배치 처리 후 로드된 객체 해제"""
        pass


class SyncLeaseRepositoryPort(ABC):
    """계정별 동기화 임대(lease) 포트"""

    @abstractmethod
    async def acquire(self, account_id: UUID, owner: str, ttl_seconds: int) -> bool:
        """임대 획득 (다른 소유자가 유효한 임대를 가진 경우 False)"""
        pass

    @abstractmethod
    async def release(self, account_id: UUID, owner: str) -> None:
        """임대 해제"""
        pass


class MailClientPort(ABC):
    """메일 제공자 API 클라이언트 포트"""

    @abstractmethod
    async def list_messages(self, options: ListMessagesOptions) -> MessageListResult:
        """메시지 목록 조회"""
        pass

    @abstractmethod
    async def get_message(self, message_id: str) -> Dict[str, Any]:
        """메시지 전체 조회 (원본 응답)"""
        pass

    @abstractmethod
    async def send_message(self, request: SendMessageRequest) -> Dict[str, Any]:
        """메일 발송"""
        pass

    @abstractmethod
    async def modify_labels(self, message_id: str, request: ModifyLabelsRequest) -> Dict[str, Any]:
        """단일 메시지 라벨 변경"""
        pass

    @abstractmethod
    async def batch_modify_labels(self, message_ids: List[str], request: ModifyLabelsRequest) -> None:
        """여러 메시지 라벨 일괄 변경"""
        pass

    @abstractmethod
    async def get_history(self, start_history_id: str) -> HistoryPage:
        """히스토리 커서 이후 변경 기록 조회"""
        pass

    @abstractmethod
    async def list_labels(self) -> List[MailLabel]:
        """라벨 목록 조회"""
        pass

    @abstractmethod
    async def get_profile(self) -> MailboxProfile:
        """메일함 프로필 조회"""
        pass


class TokenSourcePort(ABC):
    """OAuth 토큰 공급자 포트"""

    @abstractmethod
    async def token(self) -> OAuthToken:
        """유효한 토큰 반환 (필요 시 갱신)"""
        pass


class OAuthClientPort(ABC):
    """OAuth 토큰 엔드포인트 포트"""

    @abstractmethod
    def authorization_url(self, state: str) -> str:
        """동의 화면 URL 생성"""
        pass

    @abstractmethod
    async def exchange_code(self, code: str) -> OAuthToken:
        """인가 코드를 토큰으로 교환"""
        pass

    @abstractmethod
    async def refresh(self, refresh_token: str) -> OAuthToken:
        """리프레시 토큰으로 액세스 토큰 갱신"""
        pass


class EncryptionServicePort(ABC):
    """암호화 서비스 포트"""

    @abstractmethod
    async def encrypt(self, data: str) -> str:
        """데이터 암호화"""
        pass

    @abstractmethod
    async def decrypt(self, encrypted_data: str) -> str:
        """데이터 복호화"""
        pass


class TaskQueuePort(ABC):
    """작업 큐 포트"""

    @abstractmethod
    def enqueue_account_sync(self, account_id: UUID, sync_mode: SyncMode, manual: bool = False) -> str:
        """단일 계정 동기화 작업 등록 (작업 ID 반환)"""
        pass


class LoggerPort(ABC):
    """로거 포트"""

    @abstractmethod
    def info(self, message: str, **kwargs) -> None:
        """정보 로그"""
        pass

    @abstractmethod
    def warning(self, message: str, **kwargs) -> None:
        """경고 로그"""
        pass

    @abstractmethod
    def error(self, message: str, **kwargs) -> None:
        """오류 로그"""
        pass

    @abstractmethod
    def debug(self, message: str, **kwargs) -> None:
        """디버그 로그"""
        pass


class ConfigPort(ABC):
    """설정 포트"""

    @abstractmethod
    def get_environment(self) -> str:
        """실행 환경"""
        pass

    @abstractmethod
    def is_debug(self) -> bool:
        """디버그 모드 여부"""
        pass

    @abstractmethod
    def get_database_url(self) -> str:
        """데이터베이스 URL"""
        pass

    @abstractmethod
    def get_encryption_key(self) -> str:
        """토큰 암호화 키"""
        pass

    @abstractmethod
    def get_google_client_id(self) -> str:
        """Google OAuth 클라이언트 ID"""
        pass

    @abstractmethod
    def get_google_client_secret(self) -> str:
        """Google OAuth 클라이언트 시크릿"""
        pass

    @abstractmethod
    def get_google_redirect_url(self) -> str:
        """Google OAuth 리다이렉트 URL"""
        pass

    @abstractmethod
    def get_oauth_scopes(self) -> List[str]:
        """OAuth 권한 범위"""
        pass

    @abstractmethod
    def get_log_level(self) -> str:
        """로그 레벨"""
        pass

    @abstractmethod
    def get_log_format(self) -> str:
        """로그 포맷"""
        pass

    @abstractmethod
    def get_broker_url(self) -> str:
        """작업 큐 브로커 URL"""
        pass

    @abstractmethod
    def get_result_backend(self) -> str:
        """작업 결과 백엔드 URL"""
        pass

    @abstractmethod
    def get_sync_config(self) -> dict:
        """동기화 설정"""
        pass
