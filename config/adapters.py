"""
설정 어댑터

Pydantic Settings 기반으로 환경 변수와 .env 파일에서 설정을 읽습니다.
Google OAuth, 작업 큐, 동기화 정책 설정을 포함합니다.
"""

import os
from typing import List, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.domain.errors import ConfigurationError
from core.domain.ports import ConfigPort

DEFAULT_OAUTH_SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/gmail.labels",
]


class BaseConfig(BaseSettings, ConfigPort):
    """기본 설정 클래스"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # 환경 설정
    environment: str = Field(default="development")
    debug: bool = Field(default=False)

    # 데이터베이스 설정
    database_url: str = Field(...)

    # Google OAuth 설정
    google_client_id: str = Field(default="")
    google_client_secret: str = Field(default="")
    google_redirect_url: str = Field(default="http://localhost:8080/api/v1/oauth/google/callback")
    oauth_scopes: List[str] = Field(default_factory=lambda: list(DEFAULT_OAUTH_SCOPES))

    # 암호화 설정
    encryption_key: str = Field(...)

    # 로깅 설정
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s%(context)s")

    # 작업 큐 설정
    celery_broker_url: str = Field(default="redis://localhost:6379/0")
    celery_result_backend: str = Field(default="redis://localhost:6379/1")
    worker_concurrency: int = Field(default=10)

    # 메일 동기화 설정
    sync_batch_size: int = Field(default=50)
    initial_sync_days: int = Field(default=7)
    max_emails_per_sync: int = Field(default=100)
    incremental_overlap_minutes: int = Field(default=1)
    incremental_default_days: int = Field(default=30)
    sync_interval_minutes: int = Field(default=5)
    sync_cooldown_minutes: int = Field(default=5)
    manual_sync_cooldown_minutes: int = Field(default=1)
    sync_fanout_max_accounts: int = Field(default=100)
    sync_task_timeout_seconds: int = Field(default=600)
    sync_all_task_timeout_seconds: int = Field(default=1800)
    sync_task_max_retries: int = Field(default=3)
    sync_all_task_max_retries: int = Field(default=2)
    sync_pass_deadline_seconds: int = Field(default=540)
    sync_lease_seconds: int = Field(default=900)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """로그 레벨 검증"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"로그 레벨은 {valid_levels} 중 하나여야 합니다")
        return v.upper()

    @field_validator("sync_batch_size", "max_emails_per_sync", "worker_concurrency")
    @classmethod
    def validate_positive(cls, v):
        """양수 검증"""
        if v <= 0:
            raise ValueError("0보다 커야 합니다")
        return v

    # ConfigPort 인터페이스 구현
    def get_environment(self) -> str:
        return self.environment

    def is_debug(self) -> bool:
        return self.debug

    def get_database_url(self) -> str:
        return self.database_url

    def get_encryption_key(self) -> str:
        return self.encryption_key

    def get_google_client_id(self) -> str:
        return self.google_client_id

    def get_google_client_secret(self) -> str:
        return self.google_client_secret

    def get_google_redirect_url(self) -> str:
        return self.google_redirect_url

    def get_oauth_scopes(self) -> List[str]:
        return self.oauth_scopes

    def get_log_level(self) -> str:
        return self.log_level

    def get_log_format(self) -> str:
        return self.log_format

    def get_broker_url(self) -> str:
        return self.celery_broker_url

    def get_result_backend(self) -> str:
        return self.celery_result_backend

    def get_sync_config(self) -> dict:
        """동기화 설정 조회"""
        return {
            "batch_size": self.sync_batch_size,
            "initial_sync_days": self.initial_sync_days,
            "max_emails_per_sync": self.max_emails_per_sync,
            "incremental_overlap_minutes": self.incremental_overlap_minutes,
            "incremental_default_days": self.incremental_default_days,
            "interval_minutes": self.sync_interval_minutes,
            "cooldown_minutes": self.sync_cooldown_minutes,
            "manual_cooldown_minutes": self.manual_sync_cooldown_minutes,
            "fanout_max_accounts": self.sync_fanout_max_accounts,
            "task_timeout_seconds": self.sync_task_timeout_seconds,
            "all_task_timeout_seconds": self.sync_all_task_timeout_seconds,
            "task_max_retries": self.sync_task_max_retries,
            "all_task_max_retries": self.sync_all_task_max_retries,
            "pass_deadline_seconds": self.sync_pass_deadline_seconds,
            "lease_seconds": self.sync_lease_seconds,
        }

    def get_worker_config(self) -> dict:
        """워커 설정 조회"""
        return {
            "broker_url": self.celery_broker_url,
            "result_backend": self.celery_result_backend,
            "concurrency": self.worker_concurrency,
        }

    def get_log_config(self) -> dict:
        """로그 설정 조회"""
        return {
            "level": self.log_level,
            "format": self.log_format,
        }


class DevelopmentConfig(BaseConfig):
    """개발 환경 설정"""

    environment: str = "development"
    debug: bool = True
    log_level: str = "DEBUG"

    # 개발용 기본값들
    database_url: str = Field(default="sqlite+aiosqlite:///./dev_mailsync.db")
    encryption_key: str = Field(default="dev_encryption_key_32_bytes_long")


class ProductionConfig(BaseConfig):
    """운영 환경 설정"""

    environment: str = "production"
    debug: bool = False
    log_level: str = "INFO"

    @field_validator("database_url")
    @classmethod
    def validate_production_database_url(cls, v):
        """운영 환경에서는 PostgreSQL 필수"""
        if not v or v.startswith("sqlite"):
            raise ValueError("운영 환경에서는 PostgreSQL 데이터베이스가 필요합니다")
        return v

    @field_validator("encryption_key", "google_client_secret")
    @classmethod
    def validate_production_secrets(cls, v):
        """운영 환경에서는 실제 시크릿 값 필수"""
        if not v or v.startswith(("dev_", "test_")):
            raise ValueError("운영 환경에서는 실제 시크릿 값이 필요합니다")
        return v


class TestingConfig(BaseConfig):
    """테스트 환경 설정"""

    environment: str = "testing"
    debug: bool = True
    log_level: str = "WARNING"

    # 테스트용 기본값들
    database_url: str = Field(default="sqlite+aiosqlite:///:memory:")
    google_client_id: str = "test_client_id"
    google_client_secret: str = "test_client_secret"
    encryption_key: str = "test_encryption_key_32_bytes_long"
    celery_broker_url: str = "memory://"
    celery_result_backend: str = "cache+memory://"


class ConfigAdapter:
    """설정 어댑터 팩토리"""

    @staticmethod
    def create_config() -> ConfigPort:
        """
        환경에 따른 설정 객체를 생성합니다.

        Raises:
            ConfigurationError: 설정 값 검증에 실패한 경우
        """
        environment = os.getenv("ENVIRONMENT", "development").lower()

        try:
            if environment == "production":
                return ProductionConfig()
            elif environment == "testing":
                return TestingConfig()
            else:
                return DevelopmentConfig()
        except ValidationError as e:
            raise ConfigurationError(f"설정 검증 실패 ({environment}): {e}")


def ensure_oauth_configured(config: ConfigPort) -> None:
    """
    Google OAuth 설정을 확인합니다. 동기화 시작 전에 호출합니다.

    Raises:
        ConfigurationError: 클라이언트 ID, 시크릿, 리다이렉트 URL 중 하나라도 비어 있는 경우
    """
    missing = [
        name
        for name, value in (
            ("GOOGLE_CLIENT_ID", config.get_google_client_id()),
            ("GOOGLE_CLIENT_SECRET", config.get_google_client_secret()),
            ("GOOGLE_REDIRECT_URL", config.get_google_redirect_url()),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(f"Google OAuth 설정이 없습니다: {', '.join(missing)}")


# 전역 설정 인스턴스
_config: Optional[ConfigPort] = None


def get_config() -> ConfigPort:
    """전역 설정 인스턴스를 반환합니다."""
    global _config
    if _config is None:
        _config = ConfigAdapter.create_config()
    return _config


def initialize_config() -> ConfigPort:
    """설정을 초기화합니다."""
    global _config
    _config = ConfigAdapter.create_config()
    return _config
