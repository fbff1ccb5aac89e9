"""
메일 동기화 Celery 작업

- mailsync.sync_account: 단일 계정 동기화 (일시적 오류만 재시도)
- mailsync.sync_all_accounts: 동기화 대상 계정마다 단일 계정 작업 등록
"""

import asyncio
from typing import Optional
from uuid import UUID

from celery import shared_task
from sqlalchemy.exc import OperationalError

from core.domain.entities import SyncMode
from core.domain.errors import TransientAPIError
from core.domain.ports import TaskQueuePort
from adapters.db.database import DatabaseAdapter
from adapters.factory import get_adapter_factory
from config.adapters import ensure_oauth_configured, get_config
from .celery_app import QUEUE_DEFAULT, SYNC_ACCOUNT_TASK, SYNC_ALL_ACCOUNTS_TASK, celery_app  # noqa: F401

_sync_config = get_config().get_sync_config()


class CeleryTaskQueueAdapter(TaskQueuePort):
    """Celery 작업 큐 어댑터"""

    def __init__(self, queue: str = QUEUE_DEFAULT):
        self.queue = queue

    def enqueue_account_sync(self, account_id: UUID, sync_mode: SyncMode, manual: bool = False) -> str:
        result = sync_account.apply_async(
            kwargs={"account_id": str(account_id), "sync_mode": sync_mode.value, "manual": manual},
            queue=self.queue,
        )
        return result.id


async def run_account_sync(account_id: str, sync_mode: str, manual: bool = False) -> Optional[dict]:
    """단일 계정 동기화를 실행하고 결과를 직렬화 가능한 dict로 반환합니다."""
    factory = get_adapter_factory()
    ensure_oauth_configured(factory.config)

    db_adapter = DatabaseAdapter(factory.config)
    await db_adapter.initialize()
    try:
        async with db_adapter.get_session() as session:
            usecase = factory.create_sync_job_usecase(session)
            result = await usecase.run_account_sync(UUID(account_id), SyncMode(sync_mode), manual=manual)
            return result.model_dump(mode="json") if result else None
    finally:
        await db_adapter.close()


async def run_fan_out(max_accounts: int) -> dict:
    """동기화 대상 계정마다 단일 계정 작업을 등록합니다."""
    factory = get_adapter_factory()

    db_adapter = DatabaseAdapter(factory.config)
    await db_adapter.initialize()
    try:
        async with db_adapter.get_session() as session:
            usecase = factory.create_sync_job_usecase(session, task_queue=CeleryTaskQueueAdapter())
            report = await usecase.fan_out(max_accounts)
            return report.model_dump()
    finally:
        await db_adapter.close()


@shared_task(
    bind=True,
    name=SYNC_ACCOUNT_TASK,
    autoretry_for=(TransientAPIError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    max_retries=_sync_config["task_max_retries"],
    soft_time_limit=_sync_config["task_timeout_seconds"] - 30,
    time_limit=_sync_config["task_timeout_seconds"],
)
def sync_account(self, account_id: str, sync_mode: str = SyncMode.INCREMENTAL.value, manual: bool = False):
    """단일 계정 동기화 작업"""
    factory = get_adapter_factory()
    factory.create_logger().info(
        f"계정 동기화 작업 시작: {account_id} ({sync_mode}, 시도 {self.request.retries + 1})"
    )
    return asyncio.run(run_account_sync(account_id, sync_mode, manual))


@shared_task(
    bind=True,
    name=SYNC_ALL_ACCOUNTS_TASK,
    autoretry_for=(OperationalError,),
    retry_backoff=True,
    max_retries=_sync_config["all_task_max_retries"],
    soft_time_limit=_sync_config["all_task_timeout_seconds"] - 60,
    time_limit=_sync_config["all_task_timeout_seconds"],
)
def sync_all_accounts(self, max_accounts: int = 100):
    """동기화 대상 계정 팬아웃 작업"""
    return asyncio.run(run_fan_out(max_accounts))
