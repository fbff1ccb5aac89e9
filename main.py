"""
Gmail 메일 동기화 시스템

메인 진입점 파일입니다.
"""

import asyncio
import typer
from rich.console import Console

from adapters.cli.account_commands import app as account_app
from adapters.cli.sync_commands import app as sync_app
from adapters.db.database import initialize_database
from adapters.factory import get_adapter_factory
from config.adapters import get_config

# 메인 CLI 앱
app = typer.Typer(
    name="mailsync",
    help="Gmail 메일 동기화 시스템",
    no_args_is_help=True,
)

# 서브 명령어 추가
app.add_typer(account_app, name="account")
app.add_typer(sync_app, name="sync")

console = Console()


@app.command("init-db")
def init_database(
    drop_existing: bool = typer.Option(False, "--drop", help="기존 테이블을 삭제하고 재생성"),
):
    """데이터베이스를 초기화합니다."""

    async def _init_db():
        config = get_config()
        console.print(f"[blue]환경: {config.get_environment()}[/blue]")
        console.print(f"[blue]데이터베이스: {config.get_database_url()}[/blue]")

        db_adapter = initialize_database(config)
        await db_adapter.initialize()
        try:
            if drop_existing:
                console.print("[yellow]기존 테이블을 삭제하는 중...[/yellow]")
                await db_adapter.drop_tables()

            console.print("[blue]데이터베이스 테이블을 생성하는 중...[/blue]")
            await db_adapter.create_tables()
        finally:
            await db_adapter.close()

        console.print("[green]✓ 데이터베이스가 성공적으로 초기화되었습니다![/green]")

    try:
        asyncio.run(_init_db())
    except Exception as e:
        console.print(f"[red]오류: {str(e)}[/red]")
        raise typer.Exit(1)


@app.command("version")
def show_version():
    """버전 정보를 표시합니다."""
    console.print("[bold]Gmail 메일 동기화 시스템[/bold]")
    console.print("버전: 1.0.0")


@app.command("config")
def show_config():
    """현재 설정을 표시합니다."""
    try:
        config = get_config()
        sync_config = config.get_sync_config()

        console.print("[bold]현재 설정[/bold]")
        console.print(f"환경: {config.get_environment()}")
        console.print(f"디버그 모드: {config.is_debug()}")
        console.print(f"데이터베이스 URL: {config.get_database_url()}")
        console.print(f"브로커 URL: {config.get_broker_url()}")
        console.print(f"Google 클라이언트 ID: {config.get_google_client_id() or '(미설정)'}")
        console.print(f"OAuth 리다이렉트 URL: {config.get_google_redirect_url()}")
        console.print(f"OAuth 스코프: {', '.join(config.get_oauth_scopes())}")
        console.print(f"로그 레벨: {config.get_log_level()}")
        console.print(f"동기화 배치 크기: {sync_config['batch_size']}")
        console.print(f"패스당 최대 메일 수: {sync_config['max_emails_per_sync']}")
        console.print(f"초기 동기화 기간(일): {sync_config['initial_sync_days']}")
        console.print(f"동기화 간격(분): {sync_config['interval_minutes']}")

        key_ok = get_adapter_factory().create_encryption_service().verify_key()
        status = "[green]정상[/green]" if key_ok else "[red]사용 불가[/red]"
        console.print(f"암호화 키: {status}")

    except Exception as e:
        console.print(f"[red]오류: {str(e)}[/red]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
