"""
로거 어댑터

Core 레이어의 LoggerPort를 구현하는 Python 표준 로깅 어댑터입니다.
동기화 로그에 함께 넘긴 계정 ID, 메시지 ID 등은 한 줄 끝의 문맥 필드로 출력됩니다.
"""

import logging
import sys

from core.domain.ports import LoggerPort

CONTEXT_FIELDS = ("account_id", "message_id", "query", "task_id")
DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s%(context)s'


class SyncContextFilter(logging.Filter):
    """extra로 전달된 동기화 문맥을 context 필드로 모음"""

    def filter(self, record: logging.LogRecord) -> bool:
        parts = [
            f"{field}={getattr(record, field)}"
            for field in CONTEXT_FIELDS
            if getattr(record, field, None)
        ]
        record.context = f" [{' '.join(parts)}]" if parts else ""
        return True


class LoggerAdapter(LoggerPort):
    """Python 표준 로깅을 사용하는 로거 어댑터"""

    def __init__(self, name: str = "mailsync", level: str = "INFO", format_string: str = DEFAULT_FORMAT):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))

        # 핸들러가 없으면 콘솔 핸들러 추가
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(format_string))
            handler.addFilter(SyncContextFilter())
            self.logger.addHandler(handler)

    def info(self, message: str, **kwargs) -> None:
        """정보 로그"""
        self.logger.info(message, extra=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """경고 로그"""
        self.logger.warning(message, extra=kwargs)

    def error(self, message: str, **kwargs) -> None:
        """오류 로그"""
        self.logger.error(message, extra=kwargs)

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(message, extra=kwargs)


def create_logger(name: str = "mailsync", level: str = "INFO", format_string: str = DEFAULT_FORMAT) -> LoggerPort:
    """로거 인스턴스를 생성합니다."""
    return LoggerAdapter(name, level, format_string)
