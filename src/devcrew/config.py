"""
Crew configuration: every interval, threshold and scoring weight in one place.

Values come from ``~/.devcrew/config.toml`` (sections ``[engine]``, ``[scoring]``,
``[monitor]``, ``[oracle]``), then ``DEVCREW_*`` environment variables, then the
defaults below. The resulting ``CrewConfig`` is passed to each component at
construction.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".devcrew"


@dataclass
class ScoringWeights:
    """Weights for agent/task and agent/subtask scoring."""

    load_weight: float = 40.0
    health_weight: float = 30.0
    role_weight: float = 30.0
    senior_high_priority: float = 1.0
    other_high_priority: float = 0.5
    medium_priority: float = 0.8
    low_priority: float = 0.6
    skill_weight: float = 0.6
    availability_weight: float = 0.4
    availability_task_divisor: float = 5.0
    availability_hours_divisor: float = 40.0
    default_task_hours: float = 2.0


@dataclass
class EngineSettings:
    main_interval: float = 2.0
    health_interval: float = 30.0
    sweep_interval: float = 10.0
    error_backoff: float = 5.0
    stale_threshold: float = 30.0
    max_recovery_attempts: int = 3
    overload_ratio: float = 0.9
    low_health_threshold: float = 70.0
    health_penalty: float = 10.0
    health_recovery_step: float = 2.0
    history_limit: int = 10
    decompose_threshold_hours: float = 8.0
    generic_subtask_cap: int | None = None


@dataclass
class MonitorSettings:
    interval: float = 60.0
    window_seconds: float = 2 * 3600
    window_limit: int = 50
    stuck_seconds: float = 30 * 60
    failure_rate_medium: float = 0.3
    failure_rate_high: float = 0.5
    failure_rate_critical: float = 0.8
    response_time_medium: float = 5.0
    response_time_high: float = 10.0
    unread_medium: int = 10
    unread_high: int = 20
    failed_communication_limit: int = 3
    repeat_limit: int = 5
    open_tasks_medium: int = 8
    open_tasks_high: int = 12
    ledger_size_low: int = 1000
    trend_days: float = 7.0
    expertise_promotion_successes: int = 3
    explain_window_seconds: float = 3600
    explain_limit: int = 20
    causal_gap_seconds: float = 5 * 60
    similarity_threshold: float = 0.3
    reflection_retention_seconds: float = 3600


@dataclass
class OracleSettings:
    url: str | None = None
    timeout: float = 20.0


@dataclass
class CrewConfig:
    """Top-level configuration injected into the engine, decomposer and monitor."""

    data_dir: Path = DEFAULT_DATA_DIR
    seed: int | None = None
    log_level: str = "WARNING"
    engine: EngineSettings = field(default_factory=EngineSettings)
    scoring: ScoringWeights = field(default_factory=ScoringWeights)
    monitor: MonitorSettings = field(default_factory=MonitorSettings)
    oracle: OracleSettings = field(default_factory=OracleSettings)

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.toml"


_SECTIONS = {
    "engine": EngineSettings,
    "scoring": ScoringWeights,
    "monitor": MonitorSettings,
    "oracle": OracleSettings,
}


def _apply_section(target: Any, name: str, values: dict[str, Any]) -> Any:
    known = {f.name for f in dataclasses.fields(target)}
    unknown = sorted(set(values) - known)
    if unknown:
        log.warning("Ignoring unknown keys in [%s]: %s", name, ", ".join(unknown))
    return dataclasses.replace(target, **{k: v for k, v in values.items() if k in known})


def load_config(path: Path | None = None, env: dict[str, str] | None = None) -> CrewConfig:
    """Build a CrewConfig from a TOML file plus environment overrides.

    A missing file is not an error; the defaults apply.
    """
    env = dict(os.environ) if env is None else env
    config = CrewConfig()

    data_dir = env.get("DEVCREW_DATA_DIR")
    if data_dir:
        config.data_dir = Path(data_dir).expanduser()

    path = path or config.config_path
    if path.exists():
        with path.open("rb") as fh:
            raw = tomllib.load(fh)
        for name in _SECTIONS:
            section = raw.get(name)
            if section is None:
                continue
            if not isinstance(section, dict):
                raise ValueError(f"[{name}] in {path} must be a table")
            setattr(config, name, _apply_section(getattr(config, name), name, section))
        if "seed" in raw:
            config.seed = int(raw["seed"])
        if "log_level" in raw:
            config.log_level = str(raw["log_level"])
        if "data_dir" in raw and not data_dir:
            config.data_dir = Path(raw["data_dir"]).expanduser()

    if env.get("DEVCREW_ORACLE_URL"):
        config.oracle.url = env["DEVCREW_ORACLE_URL"]
    if env.get("DEVCREW_ORACLE_TIMEOUT"):
        config.oracle.timeout = float(env["DEVCREW_ORACLE_TIMEOUT"])
    if env.get("DEVCREW_LOG_LEVEL"):
        config.log_level = env["DEVCREW_LOG_LEVEL"]
    if env.get("DEVCREW_SEED"):
        config.seed = int(env["DEVCREW_SEED"])

    return config
