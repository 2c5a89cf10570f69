"""Configuration loader for the recorder and compilers."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

_ENV_PREFIX = "FLOWTRACE_"
_TRUE_VALUES = {"true", "1", "yes", "on"}

SCREENSHOT_MODES = ("dynamic", "fullpage", "viewport")


def _coerce(value: Any, default: Any) -> Any:
    if isinstance(default, bool):
        return value if isinstance(value, bool) else str(value).lower() in _TRUE_VALUES
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    if isinstance(default, tuple):
        if isinstance(value, str):
            return tuple(v.strip() for v in value.split(",") if v.strip())
        return tuple(value)
    return str(value)


class _Section:
    """Mixin: build a section dataclass from a loose mapping."""

    @classmethod
    def from_mapping(cls, mapping: dict[str, Any]):
        defaults = cls()
        kwargs = {}
        for f in fields(cls):
            if f.name in mapping:
                kwargs[f.name] = _coerce(mapping[f.name], getattr(defaults, f.name))
        return cls(**kwargs)


@dataclass(frozen=True)
class StabilizationConfig(_Section):
    layout_delta_px: float = 0.5
    min_stable_frames: int = 15
    min_wait_ms: float = 500.0
    max_timeout_ms: float = 3000.0
    frame_ms: float = 16.0


@dataclass(frozen=True)
class LimitsConfig(_Section):
    max_class_changes: int = 5
    max_mutation_batch: int = 100


@dataclass(frozen=True)
class TimerConfig(_Section):
    scroll_debounce_ms: float = 150.0
    input_debounce_ms: float = 300.0
    height_nudge_debounce_ms: float = 300.0
    scroll_min_delta_px: float = 100.0


@dataclass(frozen=True)
class DedupConfig(_Section):
    same_event_window_ms: float = 500.0
    input_family_window_ms: float = 1000.0


@dataclass(frozen=True)
class LocatorConfig(_Section):
    ancestor_depth: int = 4
    max_selector_length: int = 100
    heading_search_depth: int = 6
    observed_attributes: tuple[str, ...] = ("class", "style", "data-state")


@dataclass(frozen=True)
class ThresholdConfig(_Section):
    # shift (px) above which a step needs a stabilization wait
    noise_floor_px: float = 1.0
    # shift (px) above which a button/link click counts as a UI expansion
    ui_expansion_px: float = 5.0
    # shift (px) above which style events get an advisory note
    large_shift_px: float = 200.0


@dataclass(frozen=True)
class FlowTraceConfig:
    stabilization: StabilizationConfig = field(default_factory=StabilizationConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    timers: TimerConfig = field(default_factory=TimerConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    locator: LocatorConfig = field(default_factory=LocatorConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    screenshot_mode: str = "dynamic"
    capture_shortcut: str = "ctrl+shift+c"
    expand_shortcut: str = "ctrl+shift+e"
    manual_expand_step: int = 50

    @classmethod
    def from_mapping(cls, mapping: dict[str, Any]) -> "FlowTraceConfig":
        sections = {
            "stabilization": StabilizationConfig,
            "limits": LimitsConfig,
            "timers": TimerConfig,
            "dedup": DedupConfig,
            "locator": LocatorConfig,
            "thresholds": ThresholdConfig,
        }
        kwargs: dict[str, Any] = {
            name: section.from_mapping(mapping.get(name) or {})
            for name, section in sections.items()
        }
        mode = str(mapping.get("screenshot_mode", "dynamic")).lower()
        if mode not in SCREENSHOT_MODES:
            raise ValueError(f"screenshot_mode must be one of {SCREENSHOT_MODES}, got {mode!r}")
        kwargs["screenshot_mode"] = mode
        for key in ("capture_shortcut", "expand_shortcut"):
            if key in mapping:
                kwargs[key] = str(mapping[key]).lower()
        if "manual_expand_step" in mapping:
            kwargs["manual_expand_step"] = int(mapping["manual_expand_step"])
        return cls(**kwargs)


DEFAULT_CONFIG = FlowTraceConfig()


def _load_toml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        return tomllib.load(fh)


def _env_mapping(environ: dict[str, str]) -> dict[str, Any]:
    """FLOWTRACE_TIMERS__SCROLL_DEBOUNCE_MS=200 -> {"timers": {"scroll_debounce_ms": "200"}}."""
    result: dict[str, Any] = {}
    for key, value in environ.items():
        if not key.startswith(_ENV_PREFIX):
            continue
        path = key[len(_ENV_PREFIX):].lower().split("__")
        node = result
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value
    return result


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    config_path: Path | str | None = None,
    environ: dict[str, str] | None = None,
) -> FlowTraceConfig:
    """Load configuration from defaults, an optional TOML file, then the environment."""
    path = Path(config_path) if config_path else Path("flowtrace.toml")
    file_map = _load_toml(path).get("flowtrace", {})
    env_map = _env_mapping(dict(os.environ) if environ is None else environ)
    return FlowTraceConfig.from_mapping(_merge(file_map, env_map))
