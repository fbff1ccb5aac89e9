"""
Celery 애플리케이션

우선순위 큐(high/default/low), 워커 동시성, 주기적 팬아웃 스케줄을 설정합니다.
"""

from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from config.adapters import get_config

QUEUE_HIGH = "high"
QUEUE_DEFAULT = "default"
QUEUE_LOW = "low"

SYNC_ACCOUNT_TASK = "mailsync.sync_account"
SYNC_ALL_ACCOUNTS_TASK = "mailsync.sync_all_accounts"

_config = get_config()
_worker_config = _config.get_worker_config()
_sync_config = _config.get_sync_config()

celery_app = Celery(
    "mailsync",
    broker=_worker_config["broker_url"],
    backend=_worker_config["result_backend"],
    include=["adapters.queue.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    broker_connection_retry_on_startup=True,
    # 큐 목록 순서대로 우선 소비 (high > default > low)
    task_queues=(Queue(QUEUE_HIGH), Queue(QUEUE_DEFAULT), Queue(QUEUE_LOW)),
    task_default_queue=QUEUE_DEFAULT,
    task_routes={
        SYNC_ACCOUNT_TASK: {"queue": QUEUE_DEFAULT},
        SYNC_ALL_ACCOUNTS_TASK: {"queue": QUEUE_LOW},
    },
    broker_transport_options={"queue_order_strategy": "priority"},
    worker_concurrency=_worker_config["concurrency"],
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    result_expires=3600,
    beat_schedule={
        "sync-all-mail-accounts": {
            "task": SYNC_ALL_ACCOUNTS_TASK,
            "schedule": crontab(minute=f"*/{_sync_config['interval_minutes']}"),
            "kwargs": {"max_accounts": _sync_config["fanout_max_accounts"]},
            "options": {"queue": QUEUE_LOW},
        },
    },
)
