"""
Celery 워커

메일 동기화 작업을 처리하는 워커 진입점입니다.
"""

import typer
from rich.console import Console

from adapters.logger import create_logger
from adapters.queue.celery_app import QUEUE_DEFAULT, QUEUE_HIGH, QUEUE_LOW, celery_app
from config.adapters import ensure_oauth_configured, get_config
from core.domain.errors import ConfigurationError

app = typer.Typer(name="worker", help="메일 동기화 워커")
console = Console()

logger = create_logger("worker")


@app.command()
def run(
    beat: bool = typer.Option(False, "--beat", "-B", help="주기 스케줄러를 워커와 함께 실행"),
    concurrency: int = typer.Option(None, help="동시 작업 수 (생략 시 설정값)"),
):
    """큐 우선순위(high > default > low)대로 작업을 소비하는 워커를 시작합니다."""
    config = get_config()
    try:
        ensure_oauth_configured(config)
    except ConfigurationError as e:
        console.print(f"[red]오류: {e.message}[/red]")
        raise typer.Exit(1)

    worker_config = config.get_worker_config()
    argv = [
        "worker",
        "-Q", ",".join([QUEUE_HIGH, QUEUE_DEFAULT, QUEUE_LOW]),
        "--concurrency", str(concurrency or worker_config["concurrency"]),
        "--loglevel", config.get_log_level(),
    ]
    if beat:
        argv.append("-B")

    logger.info(f"워커 시작: 환경 {config.get_environment()}, 브로커 {worker_config['broker_url']}")
    celery_app.worker_main(argv)


if __name__ == "__main__":
    app()
