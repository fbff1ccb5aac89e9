"""
계정 CLI 명령어

AccountLinkingUseCase를 CLI 명령으로 노출하는 어댑터입니다.
"""

import asyncio
import secrets
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from core.domain.errors import MailSyncError
from adapters.db.database import initialize_database
from adapters.factory import get_adapter_factory
from config.adapters import ensure_oauth_configured

# CLI 앱 생성
app = typer.Typer(name="account", help="메일함 계정 연결 명령어")
console = Console()


@app.command("auth-url")
def show_authorization_url(
    state: Optional[str] = typer.Option(None, help="state 값 (생략 시 임의 생성)"),
):
    """메일함 연결용 Google 동의 화면 URL을 출력합니다."""
    factory = get_adapter_factory()
    try:
        ensure_oauth_configured(factory.config)
    except MailSyncError as e:
        console.print(f"[red]오류: {e.message}[/red]")
        raise typer.Exit(1)

    url = factory.create_oauth_client().authorization_url(state or secrets.token_urlsafe(16))
    console.print("[bold]아래 URL에서 권한을 승인한 뒤 받은 code 값으로 'account link'를 실행하세요.[/bold]")
    console.print(url)


@app.command("link")
def link_account(
    code: str = typer.Argument(..., help="동의 화면에서 받은 인가 코드"),
    user_id: Optional[str] = typer.Option(None, help="소유 사용자 ID"),
):
    """인가 코드로 메일함 계정을 연결합니다."""

    async def _link():
        factory = get_adapter_factory()
        ensure_oauth_configured(factory.config)

        db_adapter = initialize_database(factory.config)
        await db_adapter.initialize()
        try:
            async with db_adapter.get_session() as session:
                usecase = factory.create_account_linking_usecase(session)
                account = await usecase.link_account(code, user_id=user_id)
        finally:
            await db_adapter.close()

        console.print("[green]✓ 계정이 연결되었습니다![/green]")
        console.print(f"계정 ID: {account.id}")
        console.print(f"이메일: {account.email}")

    try:
        asyncio.run(_link())
    except (MailSyncError, ValueError) as e:
        console.print(f"[red]오류: {str(e)}[/red]")
        raise typer.Exit(1)


@app.command("list")
def list_accounts(
    limit: int = typer.Option(20, help="조회할 계정 수"),
    skip: int = typer.Option(0, help="건너뛸 계정 수"),
):
    """연결된 계정 목록을 조회합니다."""

    async def _list():
        factory = get_adapter_factory()
        db_adapter = initialize_database(factory.config)
        await db_adapter.initialize()
        try:
            async with db_adapter.get_session() as session:
                usecase = factory.create_account_linking_usecase(session)
                accounts = await usecase.list_accounts(skip, limit)
        finally:
            await db_adapter.close()

        if not accounts:
            console.print("[yellow]연결된 계정이 없습니다.[/yellow]")
            return

        table = Table(title="연결된 계정 목록")
        table.add_column("ID", style="cyan")
        table.add_column("이메일", style="green")
        table.add_column("상태", style="yellow")
        table.add_column("마지막 동기화", style="dim")
        table.add_column("오류", style="red")

        for account in accounts:
            table.add_row(
                str(account.id),
                account.email,
                account.sync_status.value,
                account.last_sync_at.strftime("%Y-%m-%d %H:%M") if account.last_sync_at else "-",
                account.sync_error or "-",
            )

        console.print(table)

    try:
        asyncio.run(_list())
    except MailSyncError as e:
        console.print(f"[red]오류: {e.message}[/red]")
        raise typer.Exit(1)
