"""
Controller configuration using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main controller settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="vdb-controller", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="Environment (development/staging/production)")
    log_level: str = Field(default="INFO", description="Logging level")

    # AWS (read once at startup, the RDS client is built from these)
    aws_region: str = Field(default="us-east-1", description="AWS region for RDS")
    aws_access_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("aws_access_key", "aws_access_key_id"),
        description="AWS access key",
    )
    aws_secret_access_key: Optional[str] = Field(default=None, description="AWS secret access key")

    # Kubernetes
    kubeconfig_path: Optional[str] = Field(
        default=None, description="Path to kubeconfig file (None for default loading rules)"
    )
    k8s_in_cluster: bool = Field(default=False, description="Running inside Kubernetes cluster")
    watch_namespace: Optional[str] = Field(
        default=None, description="Namespace to watch (None watches all namespaces)"
    )

    # Reconciler
    reconcile_interval: float = Field(default=30.0, gt=0, description="Steady-state recheck interval in seconds")
    max_concurrent_reconciles: int = Field(default=4, ge=1, le=64, description="Number of reconcile workers")
    backoff_base_delay: float = Field(default=0.005, gt=0, description="Initial per-key retry delay in seconds")
    backoff_max_delay: float = Field(default=1000.0, gt=0, description="Maximum per-key retry delay in seconds")

    # Leader election (Redis lease)
    leader_elect: bool = Field(default=False, description="Enable leader election")
    leader_election_id: str = Field(
        default="vdb-controller.database-mesh.io", description="Leader election lease key"
    )
    leader_lease_duration: int = Field(default=30, ge=5, le=300, description="Lease duration in seconds")
    redis_url: Optional[str] = Field(default=None, description="Redis connection URL (leader election)")

    # Process surface
    metrics_bind_address: str = Field(default=":8082", description="Metrics endpoint bind address")
    health_probe_bind_address: str = Field(default=":8081", description="Probe endpoint bind address")
    webhook_port: int = Field(default=9443, ge=1, le=65535, description="Webhook port")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment."""
        valid_envs = ["development", "testing", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


def parse_bind_address(address: str) -> tuple[str, int]:
    """
    Split a Go-style bind address (":8081", "0.0.0.0:8081") into host and port.

    An empty host means all interfaces.
    """
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid bind address: {address!r}")
    return host or "0.0.0.0", int(port)


# Global settings instance
settings = Settings()
