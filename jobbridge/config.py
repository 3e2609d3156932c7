"""
Configuration for jobbridge.

All settings come from a YAML file (config/jobbridge.yaml by default) with
environment overrides, and a .env file is honoured for local runs. The result
is a tree of frozen dataclasses: loaded once at startup, immutable after.

Secrets are never written in the YAML file itself. Like the bus credentials,
the file names the environment variable to read them from:

    engine:
      client_secret_env: JOBBRIDGE_CLIENT_SECRET
"""

import os
import socket
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import yaml
from dotenv import load_dotenv

from .errors import ConfigError

DEFAULT_CONFIG_PATH = "config/jobbridge.yaml"


class CompletionPolicy(str, Enum):
    """What the consumer does when a completion request fails."""

    REPORT = "report"  # log and move on
    RETRY_TRANSIENT = "retry_transient"  # bounded retry when the engine is unavailable


def _split_address(address: str, default_port: int) -> Tuple[str, int]:
    """Split 'host:port' into its parts."""
    host, sep, port = address.rpartition(":")
    if not sep:
        return address, default_port
    if not host:
        raise ConfigError(f"Invalid address '{address}': missing host")
    try:
        return host, int(port)
    except ValueError:
        raise ConfigError(f"Invalid address '{address}': port must be a number")


@dataclass(frozen=True)
class EngineConfig:
    """Workflow engine (Temporal) connection settings."""

    contact_point: str = "localhost:7233"
    namespace: str = "default"
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    task_queue: str = "jobbridge-processes"
    request_timeout_seconds: float = 30.0

    @property
    def use_tls(self) -> bool:
        """Cloud clusters authenticate with an API key over TLS."""
        return bool(self.client_secret)


@dataclass(frozen=True)
class BrokerConfig:
    """Message broker (RabbitMQ) connection and topic settings."""

    bootstrap_server: str = "localhost:5672"
    username: str = "guest"
    password: str = "guest"
    virtual_host: str = "/"
    topic: str = "vacation"
    consumer_group: str = "jobbridge-consumer"
    heartbeat_seconds: int = 300
    blocked_connection_timeout_seconds: int = 300

    @property
    def host(self) -> str:
        return _split_address(self.bootstrap_server, 5672)[0]

    @property
    def port(self) -> int:
        return _split_address(self.bootstrap_server, 5672)[1]

    @property
    def group_queue(self) -> str:
        """Durable queue holding the topic's records for the consumer group."""
        return f"{self.topic}.{self.consumer_group}"


@dataclass(frozen=True)
class WorkerConfig:
    """Job worker (lease manager) and job handler settings."""

    job_type: str = "put"
    name: str = field(default_factory=socket.gethostname)
    max_jobs_active: int = 5
    poll_interval_seconds: float = 1.0
    timeout_seconds: float = 10.0
    flush_timeout_seconds: float = 10.0
    fail_job_on_publish_error: bool = True


@dataclass(frozen=True)
class ConsumerConfig:
    """Consumer loop and completion error handler settings."""

    poll_timeout_seconds: float = 1.0
    completion_policy: CompletionPolicy = CompletionPolicy.REPORT
    completion_max_attempts: int = 3
    completion_backoff_seconds: float = 0.5
    completion_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class BridgeConfig:
    """Complete jobbridge configuration."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    consumer: ConsumerConfig = field(default_factory=ConsumerConfig)

    @classmethod
    def load(
        cls,
        path: Union[str, Path] = DEFAULT_CONFIG_PATH,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "BridgeConfig":
        """Load configuration from a YAML file plus environment overrides.

        A missing file is not an error: defaults and environment apply.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        data: Dict[str, Any] = {}
        config_path = Path(path)
        if config_path.exists():
            try:
                with open(config_path) as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Cannot parse {config_path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"{config_path} must contain a mapping")

        # Files may nest everything under a top-level 'jobbridge' key
        if "jobbridge" in data:
            data = data["jobbridge"] or {}
            if not isinstance(data, dict):
                raise ConfigError(f"'jobbridge' in {config_path} must be a mapping")
        return cls.from_dict(data, environ)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], environ: Mapping[str, str]) -> "BridgeConfig":
        engine = _section(data, "engine")
        broker = _section(data, "broker")
        worker = _section(data, "worker")
        consumer = _section(data, "consumer")

        def env(name: str, default: Any) -> Any:
            return environ.get(name, default)

        try:
            config = cls(
                engine=EngineConfig(
                    contact_point=env("JOBBRIDGE_CLUSTER_URL", engine.get("contact_point", "localhost:7233")),
                    namespace=env("JOBBRIDGE_NAMESPACE", engine.get("namespace", "default")),
                    client_id=environ.get(engine.get("client_id_env", "JOBBRIDGE_CLIENT_ID"), engine.get("client_id")),
                    client_secret=environ.get(engine.get("client_secret_env", "JOBBRIDGE_CLIENT_SECRET")),
                    task_queue=engine.get("task_queue", "jobbridge-processes"),
                    request_timeout_seconds=float(engine.get("request_timeout_seconds", 30.0)),
                ),
                broker=BrokerConfig(
                    bootstrap_server=env("JOBBRIDGE_BOOTSTRAP_SERVER", broker.get("bootstrap_server", "localhost:5672")),
                    username=environ.get(broker.get("username_env", "RABBITMQ_USER"), broker.get("default_username", "guest")),
                    password=environ.get(broker.get("password_env", "RABBITMQ_PASSWORD"), broker.get("default_password", "guest")),
                    virtual_host=broker.get("virtual_host", "/"),
                    topic=env("JOBBRIDGE_TOPIC", broker.get("topic", "vacation")),
                    consumer_group=env("JOBBRIDGE_CONSUMER_GROUP", broker.get("consumer_group", "jobbridge-consumer")),
                    heartbeat_seconds=int(broker.get("heartbeat_seconds", 300)),
                    blocked_connection_timeout_seconds=int(broker.get("blocked_connection_timeout_seconds", 300)),
                ),
                worker=WorkerConfig(
                    job_type=env("JOBBRIDGE_JOB_TYPE", worker.get("job_type", "put")),
                    name=env("JOBBRIDGE_WORKER_NAME", worker.get("name") or socket.gethostname()),
                    max_jobs_active=int(worker.get("max_jobs_active", 5)),
                    poll_interval_seconds=float(worker.get("poll_interval_seconds", 1.0)),
                    timeout_seconds=float(worker.get("timeout_seconds", 10.0)),
                    flush_timeout_seconds=float(worker.get("flush_timeout_seconds", 10.0)),
                    fail_job_on_publish_error=_as_bool(worker.get("fail_job_on_publish_error", True)),
                ),
                consumer=ConsumerConfig(
                    poll_timeout_seconds=float(consumer.get("poll_timeout_seconds", 1.0)),
                    completion_policy=CompletionPolicy(consumer.get("completion_policy", "report")),
                    completion_max_attempts=int(consumer.get("completion_max_attempts", 3)),
                    completion_backoff_seconds=float(consumer.get("completion_backoff_seconds", 0.5)),
                    completion_timeout_seconds=float(consumer.get("completion_timeout_seconds", 30.0)),
                ),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}")

        config.validate()
        return config

    def validate(self) -> None:
        """Reject settings the bridge cannot run with."""
        # Parses bootstrap_server, raises ConfigError when malformed
        _split_address(self.broker.bootstrap_server, 5672)
        _split_address(self.engine.contact_point, 7233)

        positive = {
            "worker.max_jobs_active": self.worker.max_jobs_active,
            "worker.poll_interval_seconds": self.worker.poll_interval_seconds,
            "worker.timeout_seconds": self.worker.timeout_seconds,
            "worker.flush_timeout_seconds": self.worker.flush_timeout_seconds,
            "consumer.poll_timeout_seconds": self.consumer.poll_timeout_seconds,
            "consumer.completion_max_attempts": self.consumer.completion_max_attempts,
            "consumer.completion_timeout_seconds": self.consumer.completion_timeout_seconds,
            "engine.request_timeout_seconds": self.engine.request_timeout_seconds,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ConfigError(f"{name} must be positive, got {value}")
        if self.consumer.completion_backoff_seconds < 0:
            raise ConfigError("consumer.completion_backoff_seconds must not be negative")

        for name, value in {
            "worker.job_type": self.worker.job_type,
            "broker.topic": self.broker.topic,
            "broker.consumer_group": self.broker.consumer_group,
        }.items():
            if not value:
                raise ConfigError(f"{name} must not be empty")


def _section(data: Mapping[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")
    return section


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")
