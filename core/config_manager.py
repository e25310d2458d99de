import copy
import os
import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from core.logging_utils import log_json
from core.exceptions import ConfigurationError
from core.types import ResourceLimits, ResourceUsage

# ---------------------------------------------------------------------------
# Value validators return (is_valid: bool, coerced_value, reason: str)
# ---------------------------------------------------------------------------

def _validate_positive_int(key: str, val: Any) -> Tuple[bool, Any, str]:
    try:
        v = int(val)
        if math.isfinite(v) and v > 0:
            return True, v, ""
        return False, None, f"{key} must be a positive integer, got {val!r}"
    except (ValueError, TypeError):
        return False, None, f"{key} must be an integer, got {val!r}"


def _validate_positive_float(key: str, val: Any) -> Tuple[bool, Any, str]:
    try:
        v = float(val)
        if v > 0:
            return True, v, ""
        return False, None, f"{key} must be positive, got {val!r}"
    except (ValueError, TypeError):
        return False, None, f"{key} must be a number, got {val!r}"


def _validate_bool(key: str, val: Any) -> Tuple[bool, Any, str]:
    if isinstance(val, bool):
        return True, val, ""
    if isinstance(val, str) and val.lower() in ("true", "false", "1", "0", "yes", "no"):
        return True, val.lower() in ("true", "1", "yes"), ""
    return False, None, f"{key} must be a boolean, got {val!r}"


def _validate_string(key: str, val: Any) -> Tuple[bool, Any, str]:
    if val is None or isinstance(val, str):
        return True, val, ""
    return False, None, f"{key} must be a string, got {val!r}"


def _validate_string_list(key: str, val: Any) -> Tuple[bool, Any, str]:
    if isinstance(val, str):
        return True, [v.strip() for v in val.split(",") if v.strip()], ""
    if isinstance(val, list) and all(isinstance(v, str) for v in val):
        return True, val, ""
    return False, None, f"{key} must be a list of strings, got {val!r}"


def _validate_resources(key: str, val: Any) -> Tuple[bool, Any, str]:
    if not isinstance(val, dict):
        return False, None, f"{key} must be an object, got {val!r}"
    coerced = {}
    for dim in ResourceUsage.DIMENSIONS:
        if dim not in val:
            continue
        try:
            v = float(val[dim])
        except (ValueError, TypeError):
            return False, None, f"{key}.{dim} must be a number, got {val[dim]!r}"
        if not math.isfinite(v) or v < 0:
            return False, None, f"{key}.{dim} must be a finite number >= 0, got {val[dim]!r}"
        coerced[dim] = v
    return True, coerced, ""


# Key → validator function (None = no validation, just pass through)
_KEY_VALIDATORS = {
    "enable_learning":            lambda k, v: _validate_bool(k, v),
    "enable_self_improvement":    lambda k, v: _validate_bool(k, v),
    "experience_cap":             lambda k, v: _validate_positive_int(k, v),
    "learning_update_interval_s": lambda k, v: _validate_positive_float(k, v),
    "working_memory_max_entries": lambda k, v: _validate_positive_int(k, v),
    "use_isolated_branch":        lambda k, v: _validate_bool(k, v),
    "sandbox_root":               lambda k, v: _validate_string(k, v),
    "sandbox_branch_prefix":      lambda k, v: _validate_string(k, v),
    "keep_winning_sandbox":       lambda k, v: _validate_bool(k, v),
    "max_candidates":             lambda k, v: _validate_positive_int(k, v),
    "tool_timeout_s":             lambda k, v: _validate_positive_float(k, v),
    "resource_limits":            lambda k, v: _validate_resources(k, v),
    "default_step_resources":     lambda k, v: _validate_resources(k, v),
    "allowed_commands":           lambda k, v: _validate_string_list(k, v),
}

DEFAULT_CONFIG = {
    "enable_learning": True,
    "enable_self_improvement": False,
    "experience_cap": 10000,
    "learning_update_interval_s": 60,
    "working_memory_max_entries": 1000,
    "use_isolated_branch": True,
    "sandbox_root": None,
    "sandbox_branch_prefix": "goalforge/sandbox-",
    "keep_winning_sandbox": True,
    "max_candidates": 8,
    "tool_timeout_s": 120,
    "resource_limits": {
        "cpu_percent": 100.0,
        "memory_mb": 4096.0,
        "network_mbps": 100.0,
        "storage_mb": 10240.0,
    },
    "default_step_resources": {
        "cpu_percent": 5.0,
        "memory_mb": 64.0,
        "network_mbps": 0.0,
        "storage_mb": 1.0,
    },
    "allowed_commands": [],
}

_NESTED_KEYS = ("resource_limits", "default_step_resources")


@dataclass
class EngineConfig:
    """Typed view of the effective configuration consumed by the engine."""

    enable_learning: bool = True
    enable_self_improvement: bool = False
    experience_cap: int = 10000
    learning_update_interval_s: float = 60.0
    working_memory_max_entries: int = 1000
    use_isolated_branch: bool = True
    sandbox_root: Optional[str] = None
    sandbox_branch_prefix: str = "goalforge/sandbox-"
    keep_winning_sandbox: bool = True
    max_candidates: int = 8
    tool_timeout_s: float = 120.0
    resource_limits: ResourceLimits = field(default_factory=ResourceLimits)
    default_step_resources: ResourceUsage = field(
        default_factory=lambda: ResourceUsage.from_dict(DEFAULT_CONFIG["default_step_resources"])
    )
    allowed_commands: List[str] = field(default_factory=list)


class ConfigManager:
    """
    Centralized configuration manager for goalforge.
    Enforces a tiered strategy: (Overrides > ENV > JSON > Defaults).
    """
    def __init__(self, config_file="goalforge.config.json", overrides: Optional[Dict[str, Any]] = None):
        self.config_file = Path(config_file)
        self.runtime_overrides = overrides or {}
        self.file_config = {}
        self.effective_config = {}

        self.refresh()

    def _load_from_file(self) -> Dict[str, Any]:
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, 'r') as f:
                data = json.load(f)
                log_json("INFO", "config_loaded_from_file", details={"path": str(self.config_file)})
                return data
        except json.JSONDecodeError as e:
            log_json("ERROR", "config_parse_failed", details={"error": str(e)})
            raise ConfigurationError(f"Failed to parse config file: {e}")

    def _load_from_env(self) -> Dict[str, Any]:
        env_config = {}

        # GOALFORGE_* overrides for all top-level keys in DEFAULT_CONFIG
        for key, default_val in DEFAULT_CONFIG.items():
            if key in _NESTED_KEYS:
                continue
            env_key = f"GOALFORGE_{key.upper()}"
            if env_key in os.environ:
                val = os.environ[env_key]
                # Type coercion with error handling
                try:
                    if isinstance(default_val, bool):
                        env_config[key] = val.lower() in ("true", "1", "yes")
                    elif isinstance(default_val, int):
                        env_config[key] = int(val)
                    elif isinstance(default_val, float):
                        env_config[key] = float(val)
                    else:
                        env_config[key] = val
                except (ValueError, TypeError):
                    log_json("WARN", "config_env_coercion_failed", details={"key": key, "val": val})
                    # Skip this key, let it fall back to JSON/Default
                    continue

        # Nested resource overrides: GOALFORGE_RESOURCE_LIMITS_MEMORY_MB=2048
        for key in _NESTED_KEYS:
            overrides = {}
            for dim in ResourceUsage.DIMENSIONS:
                env_name = f"GOALFORGE_{key.upper()}_{dim.upper()}"
                if env_name in os.environ:
                    try:
                        overrides[dim] = float(os.environ[env_name])
                    except ValueError:
                        log_json("WARN", "config_env_coercion_failed",
                                 details={"key": f"{key}.{dim}", "val": os.environ[env_name]})
            if overrides:
                env_config[key] = overrides

        return env_config

    def refresh(self):
        """Re-evaluates the effective configuration based on the tier hierarchy."""
        self.file_config = self._load_from_file()
        env_config = self._load_from_env()

        # Merge hierarchy: Defaults < JSON < ENV < Overrides
        merged = copy.deepcopy(DEFAULT_CONFIG)

        for layer in (self.file_config, env_config, self.runtime_overrides):
            for k, v in layer.items():
                # Deep merge nested resource dicts so partial overrides keep defaults
                if k in _NESTED_KEYS and isinstance(v, dict):
                    merged[k].update(v)
                else:
                    merged[k] = v

        self.effective_config = merged

    def _validate_value(self, key: str, value: Any) -> Any:
        """Validate *value* for *key*; return coerced value or DEFAULT_CONFIG fallback on error."""
        validator = _KEY_VALIDATORS.get(key)
        if validator is None:
            return value
        ok, coerced, reason = validator(key, value)
        if ok:
            if key in _NESTED_KEYS:
                return {**DEFAULT_CONFIG[key], **coerced}
            return coerced
        default = copy.deepcopy(DEFAULT_CONFIG.get(key))
        log_json("ERROR", "config_value_invalid",
                 details={"key": key, "value": value, "reason": reason,
                           "fallback": default})
        return default

    def get(self, key: str, default: Any = None) -> Any:
        """Retrieves a configuration value from the effective config."""
        val = self.effective_config.get(key, default)
        return self._validate_value(key, val) if key in _KEY_VALIDATORS else val

    def show_config(self) -> Dict[str, Any]:
        """Return the effective config dict (for `goalforge config` / diagnostics)."""
        return copy.deepcopy(self.effective_config)

    def set_runtime_override(self, key: str, value: Any):
        """Sets a temporary runtime override."""
        self.runtime_overrides[key] = value
        self.refresh()

    def persist_to_file(self, key: str, value: Any):
        """Sets a configuration value and persists it to the config file."""
        self.file_config[key] = value
        try:
            with open(self.config_file, 'w') as f:
                json.dump(self.file_config, f, indent=4)
            log_json("INFO", "config_persisted", details={"key": key})
            self.refresh()
        except Exception as e:
            log_json("ERROR", "config_save_failed", details={"error": str(e)})
            raise ConfigurationError(f"Failed to save config: {e}")

    def engine_config(self) -> EngineConfig:
        """Build the typed :class:`EngineConfig` from the validated effective config."""
        return EngineConfig(
            enable_learning=self.get("enable_learning"),
            enable_self_improvement=self.get("enable_self_improvement"),
            experience_cap=self.get("experience_cap"),
            learning_update_interval_s=float(self.get("learning_update_interval_s")),
            working_memory_max_entries=self.get("working_memory_max_entries"),
            use_isolated_branch=self.get("use_isolated_branch"),
            sandbox_root=self.get("sandbox_root"),
            sandbox_branch_prefix=self.get("sandbox_branch_prefix") or DEFAULT_CONFIG["sandbox_branch_prefix"],
            keep_winning_sandbox=self.get("keep_winning_sandbox"),
            max_candidates=self.get("max_candidates"),
            tool_timeout_s=float(self.get("tool_timeout_s")),
            resource_limits=ResourceLimits.from_dict(self.get("resource_limits")),
            default_step_resources=ResourceUsage.from_dict(self.get("default_step_resources")),
            allowed_commands=list(self.get("allowed_commands")),
        )

    def bootstrap(self):
        """Generates a default config file if it doesn't exist."""
        if self.config_file.exists():
            log_json("INFO", "config_bootstrap_skipped_exists")
            return

        bootstrap_data = {
            "use_isolated_branch": DEFAULT_CONFIG["use_isolated_branch"],
            "max_candidates": DEFAULT_CONFIG["max_candidates"],
            "resource_limits": DEFAULT_CONFIG["resource_limits"],
        }

        with open(self.config_file, 'w') as f:
            json.dump(bootstrap_data, f, indent=4)
        log_json("INFO", "config_bootstrapped", details={"path": str(self.config_file)})
        self.refresh()
