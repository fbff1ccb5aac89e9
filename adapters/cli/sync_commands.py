"""
동기화 CLI 명령어

동기화 실행, 작업 등록, 상태 조회를 CLI 명령으로 노출하는 어댑터입니다.
"""

import asyncio
from typing import List, Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from core.domain.entities import SyncMode, SyncResult
from core.domain.errors import MailSyncError
from core.usecases.mail_sync import MailSyncUseCase
from adapters.db.database import initialize_database
from adapters.db.repositories import AccountRepositoryAdapter, EmailRepositoryAdapter
from adapters.factory import get_adapter_factory
from config.adapters import ensure_oauth_configured

app = typer.Typer(name="sync", help="메일 동기화 명령어")
console = Console()


def _parse_mode(mode: Optional[str]) -> Optional[SyncMode]:
    if mode is None:
        return None
    if mode not in (SyncMode.INITIAL.value, SyncMode.INCREMENTAL.value, SyncMode.HISTORY.value):
        console.print("[red]오류: 동기화 방식은 initial, incremental, history 중 하나입니다.[/red]")
        raise typer.Exit(1)
    return SyncMode(mode)


def _print_result(result: SyncResult) -> None:
    table = Table(title=f"동기화 결과 ({result.mode.value})")
    table.add_column("항목", style="cyan")
    table.add_column("값", style="green")
    table.add_row("처리", str(result.total_fetched))
    table.add_row("신규", str(result.new_emails))
    table.add_row("갱신", str(result.updated_emails))
    table.add_row("삭제", str(result.deleted_emails))
    table.add_row("오류", str(len(result.errors)))
    table.add_row("데드라인 초과", "예" if result.timed_out else "아니오")
    console.print(table)

    for error in result.errors[:10]:
        target = error.message_id or error.query or "-"
        console.print(f"[red]- [{error.kind.value}] {target}: {error.message}[/red]")


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except (MailSyncError, ValueError) as e:
        console.print(f"[red]오류: {str(e)}[/red]")
        raise typer.Exit(1)


@app.command("run")
def run_sync(
    account_id: str = typer.Argument(..., help="계정 ID"),
    mode: Optional[str] = typer.Option(None, help="동기화 방식 (생략 시 계정 상태에 따라 선택)"),
):
    """현재 프로세스에서 계정을 바로 동기화합니다."""
    sync_mode = _parse_mode(mode)

    async def _sync():
        factory = get_adapter_factory()
        ensure_oauth_configured(factory.config)

        db_adapter = initialize_database(factory.config)
        await db_adapter.initialize()
        try:
            async with db_adapter.get_session() as session:
                usecase = factory.create_sync_job_usecase(session)
                trigger, result = await usecase.run_manual_sync(UUID(account_id), sync_mode)
        finally:
            await db_adapter.close()

        if trigger.retry_after_seconds:
            console.print(f"[yellow]최근에 동기화했습니다. {trigger.retry_after_seconds}초 후 다시 시도하세요.[/yellow]")
            raise typer.Exit(1)
        if result is None:
            console.print("[yellow]동기화를 실행하지 못했습니다. 로그를 확인하세요.[/yellow]")
            raise typer.Exit(1)
        _print_result(result)

    _run(_sync())


@app.command("enqueue")
def enqueue_sync(
    account_id: str = typer.Argument(..., help="계정 ID"),
    mode: Optional[str] = typer.Option(None, help="동기화 방식"),
):
    """계정 동기화 작업을 우선순위 큐에 등록합니다."""
    from adapters.queue.celery_app import QUEUE_HIGH
    from adapters.queue.tasks import CeleryTaskQueueAdapter

    sync_mode = _parse_mode(mode)

    async def _enqueue():
        factory = get_adapter_factory()
        db_adapter = initialize_database(factory.config)
        await db_adapter.initialize()
        try:
            async with db_adapter.get_session() as session:
                usecase = factory.create_sync_job_usecase(session, task_queue=CeleryTaskQueueAdapter(QUEUE_HIGH))
                trigger = await usecase.trigger_manual_sync(UUID(account_id), sync_mode)
        finally:
            await db_adapter.close()

        if not trigger.accepted:
            console.print(f"[yellow]최근에 동기화했습니다. {trigger.retry_after_seconds}초 후 다시 시도하세요.[/yellow]")
            raise typer.Exit(1)
        console.print(f"[green]✓ 동기화 작업 등록: {trigger.task_id}[/green]")

    _run(_enqueue())


@app.command("fan-out")
def fan_out(
    max_accounts: Optional[int] = typer.Option(None, help="최대 계정 수"),
):
    """동기화 대상 계정마다 동기화 작업을 등록합니다."""
    from adapters.queue.tasks import run_fan_out

    factory = get_adapter_factory()
    limit = max_accounts or factory.config.get_sync_config()["fanout_max_accounts"]

    async def _fan_out():
        report = await run_fan_out(limit)
        console.print(
            f"[green]조회 {report['found']}, 등록 {report['enqueued']}, "
            f"쿨다운 {report['skipped_cooldown']}, 실패 {report['failed']}[/green]"
        )

    _run(_fan_out())


@app.command("labels")
def sync_labels(
    account_id: str = typer.Argument(..., help="계정 ID"),
    labels: List[str] = typer.Option(..., "--label", help="동기화할 라벨 (여러 번 지정 가능)"),
    max_days: Optional[int] = typer.Option(None, help="최근 N일"),
):
    """지정한 라벨의 메일만 동기화합니다."""

    async def _sync_labels():
        factory = get_adapter_factory()
        ensure_oauth_configured(factory.config)

        db_adapter = initialize_database(factory.config)
        await db_adapter.initialize()
        try:
            async with db_adapter.get_session() as session:
                account = await AccountRepositoryAdapter(session).get_by_id(UUID(account_id))
                if not account:
                    raise ValueError(f"계정을 찾을 수 없습니다: {account_id}")
                usecase = await factory.create_mail_sync_usecase(account, session)
                result = await usecase.sync_specific_labels(account, labels, max_days)
        finally:
            await db_adapter.close()

        _print_result(result)

    _run(_sync_labels())


@app.command("refresh-email")
def refresh_email(
    account_id: str = typer.Argument(..., help="계정 ID"),
    email_id: str = typer.Argument(..., help="메일 ID"),
):
    """저장된 메일 하나의 라벨과 읽음 여부를 제공자 상태로 갱신합니다."""

    async def _refresh():
        factory = get_adapter_factory()
        ensure_oauth_configured(factory.config)

        db_adapter = initialize_database(factory.config)
        await db_adapter.initialize()
        try:
            async with db_adapter.get_session() as session:
                account = await AccountRepositoryAdapter(session).get_by_id(UUID(account_id))
                if not account:
                    raise ValueError(f"계정을 찾을 수 없습니다: {account_id}")
                usecase = await factory.create_mail_sync_usecase(account, session)
                email = await usecase.refresh_email(account, UUID(email_id))
        finally:
            await db_adapter.close()

        console.print(f"[green]✓ 갱신 완료: {email.subject or '(제목 없음)'}[/green]")
        console.print(f"라벨: {', '.join(email.labels) or '-'}")
        console.print(f"읽음: {'예' if email.is_read else '아니오'}")

    _run(_refresh())


@app.command("status")
def show_status(
    account_id: str = typer.Argument(..., help="계정 ID"),
):
    """계정의 동기화 상태와 메일 통계를 표시합니다."""

    async def _status():
        factory = get_adapter_factory()
        sync_config = factory.config.get_sync_config()

        db_adapter = initialize_database(factory.config)
        await db_adapter.initialize()
        try:
            async with db_adapter.get_session() as session:
                account_repository = AccountRepositoryAdapter(session)
                account = await account_repository.get_by_id(UUID(account_id))
                if not account:
                    raise ValueError(f"계정을 찾을 수 없습니다: {account_id}")

                # 통계는 저장소만 사용하므로 메일 클라이언트 없이 생성
                usecase = MailSyncUseCase(
                    account_repository=account_repository,
                    email_repository=EmailRepositoryAdapter(session),
                    mail_client=None,
                    logger=factory.create_logger(),
                )
                stats = await usecase.get_stats(account.id)
                can_sync, remaining = usecase.can_sync(account, sync_config["manual_cooldown_minutes"])
        finally:
            await db_adapter.close()

        console.print(f"[bold]{account.email}[/bold]")
        console.print(f"동기화 상태: {account.sync_status.value}")
        console.print(f"마지막 동기화: {account.last_sync_at or '-'}")
        console.print(f"마지막 오류: {account.sync_error or '-'}")
        console.print(f"히스토리 커서: {account.last_history_id or '-'}")
        if can_sync:
            console.print("[green]지금 동기화할 수 있습니다.[/green]")
        else:
            console.print(f"[yellow]{int(remaining.total_seconds())}초 후 동기화할 수 있습니다.[/yellow]")

        table = Table(title="메일 통계")
        table.add_column("항목", style="cyan")
        table.add_column("개수", style="green")
        table.add_row("전체", str(stats.total))
        table.add_row("읽지 않음", str(stats.unread))
        table.add_row("별표", str(stats.starred))
        table.add_row("중요", str(stats.important))
        for category, count in stats.categories.items():
            table.add_row(category, str(count))
        console.print(table)

    _run(_status())
