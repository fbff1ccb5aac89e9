"""
데이터베이스 Repository 어댑터

Core 레이어의 Repository 포트를 구현하는 SQLAlchemy 기반 어댑터들입니다.
SQLite 호환성을 위해 UUID를 문자열로 변환하여 처리합니다.
"""

from datetime import timedelta
from enum import Enum
from typing import Any, List, Optional
from uuid import UUID

from sqlalchemy import delete, desc, func, insert, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from core.domain.entities import (
    Account,
    AccountSyncStatus,
    Attachment,
    Email,
    utcnow,
)
from core.domain.errors import PersistenceError
from core.domain.ports import (
    AccountRepositoryPort,
    EmailRepositoryPort,
    SyncLeaseRepositoryPort,
)
from .models import AccountModel, EmailModel, SyncLeaseModel

ACCOUNT_UPDATABLE_FIELDS = {
    "email",
    "provider_user_id",
    "access_token",
    "refresh_token",
    "token_expiry",
    "sync_status",
    "sync_error",
    "last_sync_at",
    "last_history_id",
    "deleted_at",
}


class AccountRepositoryAdapter(AccountRepositoryPort):
    """계정 Repository 어댑터"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, account: Account) -> Account:
        """계정을 생성합니다."""
        model = AccountModel(
            id=str(account.id),  # UUID를 문자열로 변환
            user_id=account.user_id,
            provider=account.provider,
            provider_user_id=account.provider_user_id,
            email=account.email,
            access_token=account.access_token,
            refresh_token=account.refresh_token,
            token_expiry=account.token_expiry,
            sync_status=account.sync_status.value,  # Enum을 문자열로 변환
            sync_error=account.sync_error,
            last_sync_at=account.last_sync_at,
            last_history_id=account.last_history_id,
        )

        self.session.add(model)
        await self._commit("계정 생성 실패")
        await self.session.refresh(model)

        return self._model_to_entity(model)

    async def get_by_id(self, account_id: UUID) -> Optional[Account]:
        """ID로 계정을 조회합니다."""
        stmt = select(AccountModel).where(
            AccountModel.id == str(account_id),
            AccountModel.deleted_at.is_(None),
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            return None

        return self._model_to_entity(model)

    async def get_by_email(self, provider: str, email: str) -> Optional[Account]:
        """제공자와 이메일로 계정을 조회합니다."""
        stmt = select(AccountModel).where(
            AccountModel.provider == provider,
            AccountModel.email == email.lower(),
            AccountModel.deleted_at.is_(None),
        )
        result = await self.session.execute(stmt)
        model = result.scalars().first()

        if model is None:
            return None

        return self._model_to_entity(model)

    async def list_all(self, skip: int = 0, limit: int = 100) -> List[Account]:
        """모든 계정을 조회합니다."""
        stmt = (
            select(AccountModel)
            .where(AccountModel.deleted_at.is_(None))
            .order_by(desc(AccountModel.created_at))
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [self._model_to_entity(model) for model in result.scalars().all()]

    async def list_syncable(self, provider: str, limit: int = 100) -> List[Account]:
        """동기화 대상 계정을 오래 동기화하지 않은 순으로 조회합니다."""
        stmt = (
            select(AccountModel)
            .where(
                AccountModel.provider == provider,
                AccountModel.sync_status == AccountSyncStatus.ACTIVE.value,
                AccountModel.deleted_at.is_(None),
            )
            .order_by(AccountModel.last_sync_at.is_(None).desc(), AccountModel.last_sync_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [self._model_to_entity(model) for model in result.scalars().all()]

    async def update_fields(self, account_id: UUID, **fields: Any) -> bool:
        """지정한 컬럼만 UPDATE 합니다."""
        unknown = set(fields) - ACCOUNT_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"갱신할 수 없는 계정 필드입니다: {', '.join(sorted(unknown))}")

        values = {key: value.value if isinstance(value, Enum) else value for key, value in fields.items()}
        values["updated_at"] = utcnow()

        stmt = update(AccountModel).where(AccountModel.id == str(account_id)).values(**values)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"계정 갱신 실패: {str(e)}")
        await self._commit("계정 갱신 실패")

        return result.rowcount > 0

    async def _commit(self, error_message: str) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"{error_message}: {str(e)}")

    def _model_to_entity(self, model: AccountModel) -> Account:
        """모델을 엔티티로 변환합니다."""
        return Account(
            id=UUID(model.id),
            user_id=model.user_id,
            provider=model.provider,
            provider_user_id=model.provider_user_id,
            email=model.email,
            access_token=model.access_token or "",
            refresh_token=model.refresh_token or "",
            token_expiry=model.token_expiry,
            sync_status=AccountSyncStatus(model.sync_status),
            sync_error=model.sync_error,
            last_sync_at=model.last_sync_at,
            last_history_id=model.last_history_id,
            created_at=model.created_at or utcnow(),
            updated_at=model.updated_at or utcnow(),
            deleted_at=model.deleted_at,
        )


class EmailRepositoryAdapter(EmailRepositoryPort):
    """메일 Repository 어댑터"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, email: Email) -> Email:
        """메일을 저장합니다. 중복 등 제약 조건 위반은 PersistenceError로 변환합니다."""
        model = EmailModel(
            id=str(email.id),
            account_id=str(email.account_id),
            provider_message_id=email.provider_message_id,
            thread_id=email.thread_id,
            from_email=email.from_email,
            from_name=email.from_name,
            to_addresses=list(email.to_addresses),
            cc_addresses=list(email.cc_addresses),
            subject=email.subject,
            body_text=email.body_text,
            body_html=email.body_html,
            snippet=email.snippet,
            received_at=email.received_at,
            labels=list(email.labels),
            is_read=email.is_read,
            has_attachments=email.has_attachments,
            attachments=[attachment.model_dump() for attachment in email.attachments],
            case_id=email.case_id,
        )

        self.session.add(model)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise PersistenceError(f"이미 저장된 메시지입니다: {email.provider_message_id}")
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"메일 저장 실패 {email.provider_message_id}: {str(e)}")

        return self._model_to_entity(model)

    async def get_by_id(self, email_id: UUID) -> Optional[Email]:
        """ID로 메일을 조회합니다."""
        stmt = select(EmailModel).where(EmailModel.id == str(email_id))
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            return None

        return self._model_to_entity(model)

    async def get_by_provider_id(self, account_id: UUID, provider_message_id: str) -> Optional[Email]:
        """계정과 제공자 메시지 ID로 메일을 조회합니다."""
        stmt = select(EmailModel).where(
            EmailModel.account_id == str(account_id),
            EmailModel.provider_message_id == provider_message_id,
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            return None

        return self._model_to_entity(model)

    async def update_labels(self, email_id: UUID, labels: List[str], is_read: bool) -> None:
        """라벨과 읽음 여부만 갱신합니다."""
        stmt = (
            update(EmailModel)
            .where(EmailModel.id == str(email_id))
            .values(labels=list(labels), is_read=is_read, updated_at=utcnow())
        )
        await self._execute_and_commit(stmt, "메일 라벨 갱신 실패")

    async def soft_delete_by_provider_ids(self, account_id: UUID, provider_message_ids: List[str]) -> int:
        """제공자 메시지 ID 목록을 삭제 표시합니다."""
        if not provider_message_ids:
            return 0

        stmt = (
            update(EmailModel)
            .where(
                EmailModel.account_id == str(account_id),
                EmailModel.provider_message_id.in_(provider_message_ids),
                EmailModel.deleted_at.is_(None),
            )
            .values(deleted_at=utcnow())
        )
        result = await self._execute_and_commit(stmt, "메일 삭제 표시 실패")
        return result.rowcount

    async def find_case_id_in_thread(self, account_id: UUID, thread_id: str) -> Optional[str]:
        """같은 스레드에서 케이스가 연결된 메일을 찾습니다."""
        stmt = (
            select(EmailModel.case_id)
            .where(
                EmailModel.account_id == str(account_id),
                EmailModel.thread_id == thread_id,
                EmailModel.case_id.is_not(None),
                EmailModel.deleted_at.is_(None),
            )
            .order_by(EmailModel.received_at.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def set_case_id(self, email_id: UUID, case_id: str) -> None:
        """케이스를 연결합니다."""
        stmt = update(EmailModel).where(EmailModel.id == str(email_id)).values(case_id=case_id)
        await self._execute_and_commit(stmt, "케이스 연결 실패")

    async def count(self, account_id: UUID, unread_only: bool = False) -> int:
        """메일 수를 조회합니다."""
        stmt = select(func.count()).select_from(EmailModel).where(
            EmailModel.account_id == str(account_id),
            EmailModel.deleted_at.is_(None),
        )
        if unread_only:
            stmt = stmt.where(EmailModel.is_read.is_(False))

        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def list_label_sets(self, account_id: UUID) -> List[List[str]]:
        """계정의 모든 메일 라벨 목록을 조회합니다."""
        stmt = select(EmailModel.labels).where(
            EmailModel.account_id == str(account_id),
            EmailModel.deleted_at.is_(None),
        )
        result = await self.session.execute(stmt)
        return [labels or [] for labels in result.scalars().all()]

    async def end_batch(self) -> None:
        """세션에 로드된 객체를 해제합니다."""
        self.session.expunge_all()

    async def _execute_and_commit(self, stmt, error_message: str):
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"{error_message}: {str(e)}")
        return result

    def _model_to_entity(self, model: EmailModel) -> Email:
        """모델을 엔티티로 변환합니다."""
        return Email(
            id=UUID(model.id),
            account_id=UUID(model.account_id),
            provider_message_id=model.provider_message_id,
            thread_id=model.thread_id or "",
            from_email=model.from_email or "",
            from_name=model.from_name or "",
            to_addresses=model.to_addresses or [],
            cc_addresses=model.cc_addresses or [],
            subject=model.subject or "",
            body_text=model.body_text or "",
            body_html=model.body_html or "",
            snippet=model.snippet or "",
            received_at=model.received_at,
            labels=model.labels or [],
            is_read=bool(model.is_read),
            has_attachments=bool(model.has_attachments),
            attachments=[Attachment(**attachment) for attachment in model.attachments or []],
            case_id=model.case_id,
            created_at=model.created_at or utcnow(),
            updated_at=model.updated_at or utcnow(),
            deleted_at=model.deleted_at,
        )


class SyncLeaseRepositoryAdapter(SyncLeaseRepositoryPort):
    """동기화 임대 Repository 어댑터"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def acquire(self, account_id: UUID, owner: str, ttl_seconds: int) -> bool:
        """만료되었거나 자신이 가진 임대를 갱신하고, 없으면 새로 만듭니다."""
        now = utcnow()
        expires_at = now + timedelta(seconds=ttl_seconds)

        stmt = (
            update(SyncLeaseModel)
            .where(
                SyncLeaseModel.account_id == str(account_id),
                or_(SyncLeaseModel.expires_at <= now, SyncLeaseModel.owner == owner),
            )
            .values(owner=owner, expires_at=expires_at)
        )
        result = await self.session.execute(stmt)
        if result.rowcount:
            await self.session.commit()
            return True

        stmt = insert(SyncLeaseModel).values(account_id=str(account_id), owner=owner, expires_at=expires_at)
        try:
            await self.session.execute(stmt)
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            return False
        return True

    async def release(self, account_id: UUID, owner: str) -> None:
        """자신이 가진 임대를 해제합니다."""
        stmt = delete(SyncLeaseModel).where(
            SyncLeaseModel.account_id == str(account_id),
            SyncLeaseModel.owner == owner,
        )
        await self.session.execute(stmt)
        await self.session.commit()
