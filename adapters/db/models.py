"""
SQLAlchemy 데이터베이스 모델

도메인 엔티티와 매핑되는 데이터베이스 테이블 모델을 정의합니다.
SQLite 호환성을 위해 UUID는 String으로, 목록은 JSON으로 처리합니다.
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class AccountModel(Base):
    """연결된 메일함 계정 테이블 모델"""

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), index=True)
    provider = Column(String(50), nullable=False, default="google")
    provider_user_id = Column(String(255))
    email = Column(String(255), nullable=False, index=True)
    access_token = Column(Text, nullable=False, default="")  # 암호화된 값
    refresh_token = Column(Text, nullable=False, default="")  # 암호화된 값
    token_expiry = Column(DateTime)
    sync_status = Column(String(20), nullable=False, default="active")
    sync_error = Column(Text)
    last_sync_at = Column(DateTime)
    last_history_id = Column(String(64))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime, index=True)

    # 복합 인덱스
    __table_args__ = (
        Index('idx_accounts_provider_status', 'provider', 'sync_status'),
        Index('idx_accounts_provider_email', 'provider', 'email'),
    )

    # 관계 설정
    emails = relationship("EmailModel", back_populates="account", cascade="all, delete-orphan", passive_deletes=True)


class EmailModel(Base):
    """메일 테이블 모델"""

    __tablename__ = "emails"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    provider_message_id = Column(String(255), nullable=False)
    thread_id = Column(String(255), index=True)
    from_email = Column(String(500))
    from_name = Column(String(500))
    to_addresses = Column(JSON, default=list)
    cc_addresses = Column(JSON, default=list)
    subject = Column(Text)
    body_text = Column(Text)
    body_html = Column(Text)
    snippet = Column(Text)
    received_at = Column(DateTime, nullable=False)
    labels = Column(JSON, default=list)
    is_read = Column(Boolean, default=False, nullable=False)
    has_attachments = Column(Boolean, default=False, nullable=False)
    attachments = Column(JSON, default=list)
    case_id = Column(String(36), index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime)

    # 계정별 제공자 메시지 ID 중복 방지
    __table_args__ = (
        UniqueConstraint('account_id', 'provider_message_id', name='uq_emails_account_message'),
        Index('idx_emails_account_thread', 'account_id', 'thread_id'),
        Index('idx_emails_account_read', 'account_id', 'is_read'),
        Index('idx_emails_account_received', 'account_id', 'received_at'),
    )

    account = relationship("AccountModel", back_populates="emails")


class SyncLeaseModel(Base):
    """계정별 동기화 임대 테이블 모델"""

    __tablename__ = "sync_leases"

    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True)
    owner = Column(String(255), nullable=False)
    expires_at = Column(DateTime, nullable=False)
