"""Configuration parsing for tailexport.

Parses .tailexport/config.toml files for stream and sink definitions:

    [metrics]
    sinks = ["datadog", "honeycomb"]
    max_buffer_size = 10
    max_buffer_duration = 1

    [logs]
    sinks = ["honeycomb-logs"]

    [sinks.datadog]
    type = "datadog"
    site = "us3.datadoghq.com"

    [sinks.honeycomb]
    type = "otel-metrics"
    url = "https://api.honeycomb.io"
    headers = { "x-honeycomb-team" = "env:HONEYCOMB_API_KEY" }
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tailexport.tail import (
    DEFAULT_MAX_BUFFER_DURATION,
    DEFAULT_MAX_BUFFER_SIZE,
    LogsTail,
    MetricsTail,
    TailExporter,
)

CONFIG_DIR = ".tailexport"
CONFIG_FILE = "config.toml"

# Sink type -> stream it can receive
SINK_STREAMS = {
    "datadog": "metrics",
    "otel-metrics": "metrics",
    "otel-logs": "logs",
}

ENV_PREFIX = "env:"


def resolve_env(value: Any) -> Any:
    """Resolve ``env:NAME`` strings from the environment.

    Raises:
        ValueError: If the referenced variable is not set.
    """
    if isinstance(value, str) and value.startswith(ENV_PREFIX):
        name = value[len(ENV_PREFIX):]
        if name not in os.environ:
            raise ValueError(f"Environment variable '{name}' is not set")
        return os.environ[name]
    return value


@dataclass
class SinkConfig:
    """Configuration for a single sink."""

    name: str
    type: str
    options: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True

    @property
    def stream(self) -> str:
        return SINK_STREAMS[self.type]

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> SinkConfig:
        """Create a SinkConfig from a dictionary.

        Args:
            name: The sink name (from config section).
            data: Dictionary of sink configuration values.

        Returns:
            A configured SinkConfig instance.

        Raises:
            ValueError: If the type is missing or unknown.
        """
        if "type" not in data:
            raise ValueError(f"Sink '{name}' missing required field 'type'")
        sink_type = data["type"]
        if sink_type not in SINK_STREAMS:
            raise ValueError(
                f"Sink '{name}' has invalid type '{sink_type}'. "
                f"Valid types are: {', '.join(sorted(SINK_STREAMS))}"
            )
        if sink_type.startswith("otel-") and "url" not in data:
            raise ValueError(f"Sink '{name}' missing required field 'url'")

        known_keys = {"type", "enabled"}
        options = {k: v for k, v in data.items() if k not in known_keys}

        return cls(
            name=name,
            type=sink_type,
            options=options,
            enabled=data.get("enabled", True),
        )

    def build(self) -> Any:
        """Instantiate the sink, resolving ``env:`` references."""
        from tailexport.sinks import DatadogMetricSink, OtelLogSink, OtelMetricSink

        options = {k: resolve_env(v) for k, v in self.options.items()}
        if isinstance(options.get("headers"), dict):
            options["headers"] = {
                k: resolve_env(v) for k, v in options["headers"].items()
            }

        sink_class = {
            "datadog": DatadogMetricSink,
            "otel-metrics": OtelMetricSink,
            "otel-logs": OtelLogSink,
        }[self.type]
        try:
            sink = sink_class(**options)
        except TypeError as e:
            raise ValueError(f"Sink '{self.name}' has invalid options: {e}") from e
        sink.name = self.name
        return sink


@dataclass
class StreamConfig:
    """Buffering configuration for the metrics or logs stream."""

    sinks: list[str] = field(default_factory=list)
    max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE
    max_buffer_duration: float = DEFAULT_MAX_BUFFER_DURATION

    @classmethod
    def from_dict(cls, stream: str, data: dict[str, Any]) -> StreamConfig:
        sinks = data.get("sinks", [])
        if isinstance(sinks, str):
            sinks = [sinks]
        elif not isinstance(sinks, list):
            raise ValueError(
                f"Stream '{stream}' has invalid 'sinks' field: expected string or list"
            )

        max_buffer_size = data.get("max_buffer_size", DEFAULT_MAX_BUFFER_SIZE)
        if not isinstance(max_buffer_size, int) or max_buffer_size < 1:
            raise ValueError(f"Stream '{stream}' max_buffer_size must be a positive integer")

        max_buffer_duration = data.get("max_buffer_duration", DEFAULT_MAX_BUFFER_DURATION)
        if not isinstance(max_buffer_duration, (int, float)) or max_buffer_duration <= 0:
            raise ValueError(f"Stream '{stream}' max_buffer_duration must be positive")

        return cls(
            sinks=sinks,
            max_buffer_size=max_buffer_size,
            max_buffer_duration=float(max_buffer_duration),
        )


@dataclass
class Config:
    """Main configuration container."""

    metrics: StreamConfig = field(default_factory=StreamConfig)
    logs: StreamConfig = field(default_factory=StreamConfig)
    sinks: dict[str, SinkConfig] = field(default_factory=dict)
    config_path: Path | None = None

    @classmethod
    def load(cls, path: Path | None = None) -> Config:
        """Load configuration from a file.

        Args:
            path: Path to config file. If None, searches for
                  .tailexport/config.toml in current directory and parents.

        Returns:
            Loaded configuration.

        Raises:
            FileNotFoundError: If no config file found.
            ValueError: If config file is invalid.
        """
        if path is None:
            path = cls._find_config()

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "rb") as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ValueError(f"Invalid TOML in {path}: {e}") from e

        return cls._from_dict(data, path)

    @classmethod
    def load_or_default(cls, path: Path | None = None) -> Config:
        """Load configuration or return default if not found."""
        try:
            return cls.load(path)
        except FileNotFoundError:
            return cls()

    @classmethod
    def _find_config(cls) -> Path:
        """Find config file by searching current directory and parents."""
        cwd = Path.cwd()
        for parent in [cwd, *cwd.parents]:
            config_path = parent / CONFIG_DIR / CONFIG_FILE
            if config_path.exists():
                return config_path

        # Return expected path even if it doesn't exist
        return cwd / CONFIG_DIR / CONFIG_FILE

    @classmethod
    def _from_dict(cls, data: dict[str, Any], path: Path | None = None) -> Config:
        """Create a Config from a dictionary."""
        sinks: dict[str, SinkConfig] = {}
        for name, sink_data in data.get("sinks", {}).items():
            sinks[name] = SinkConfig.from_dict(name, sink_data)

        metrics = StreamConfig.from_dict("metrics", data.get("metrics", {}))
        logs = StreamConfig.from_dict("logs", data.get("logs", {}))

        config = cls(metrics=metrics, logs=logs, sinks=sinks, config_path=path)
        config.validate()
        return config

    def validate(self) -> None:
        """Check that every stream references sinks of the right kind.

        Raises:
            ValueError: On unknown sink names or stream mismatches.
        """
        for stream, stream_config in (("metrics", self.metrics), ("logs", self.logs)):
            for name in stream_config.sinks:
                if name not in self.sinks:
                    raise ValueError(f"Stream '{stream}' references unknown sink '{name}'")
                sink = self.sinks[name]
                if sink.stream != stream:
                    raise ValueError(
                        f"Sink '{name}' of type '{sink.type}' cannot receive {stream}"
                    )

    def get_sinks_for_stream(self, stream: str) -> list[SinkConfig]:
        """Get all enabled sinks configured for the given stream."""
        stream_config: StreamConfig = getattr(self, stream)
        return [
            self.sinks[name]
            for name in stream_config.sinks
            if self.sinks[name].enabled
        ]

    def build_exporter(self) -> TailExporter:
        """Instantiate sinks and tails for every configured stream."""
        metrics_sinks = [s.build() for s in self.get_sinks_for_stream("metrics")]
        logs_sinks = [s.build() for s in self.get_sinks_for_stream("logs")]

        return TailExporter(
            metrics=MetricsTail(
                metrics_sinks,
                max_buffer_size=self.metrics.max_buffer_size,
                max_buffer_duration=self.metrics.max_buffer_duration,
            ),
            logs=LogsTail(
                logs_sinks,
                max_buffer_size=self.logs.max_buffer_size,
                max_buffer_duration=self.logs.max_buffer_duration,
            ),
        )

    def get_value(self, key_path: str) -> Any:
        """Get a configuration value by dot-separated path.

        Args:
            key_path: Dot-separated path to value (e.g. "metrics.max_buffer_size").

        Returns:
            The configuration value.

        Raises:
            KeyError: If path is invalid.
        """
        parts = key_path.split(".")
        current: Any = self
        for part in parts:
            if isinstance(current, dict) and part in current:
                current = current[part]
            elif not isinstance(current, dict) and hasattr(current, part):
                current = getattr(current, part)
            else:
                raise KeyError(f"Invalid config path: {key_path}")
        return current
