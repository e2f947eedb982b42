"""
acsparse Config - Engine Configuration System

Provides property-based configuration for workspace sizing, execution
policy and the emulated device. Configuration can be set globally or
overridden thread-locally within a context.

Environment variables (read once at import):
    ACSPARSE_INDEX_DTYPE: Default index dtype ('int32' or 'int64').
    ACSPARSE_MAX_WORKSPACE: Workspace allocation cap in bytes (0 = unlimited).
    ACSPARSE_COMPUTE_CAPABILITY: Device capability, e.g. '6.1'.
    ACSPARSE_ASYNC: New handles get an asynchronous stream ('1', 'true', 'yes').
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, asdict
from typing import Any, Dict, Tuple

from .descr import SolvePolicy

logger = logging.getLogger("acsparse.config")


# =============================================================================
# Configuration Classes
# =============================================================================

@dataclass
class IndexConfig:
    """Configuration for index arrays produced by the engine."""
    dtype: str = "int32"


@dataclass
class MemoryConfig:
    """Configuration for workspace allocation."""
    alignment: int = 128           # Byte alignment of arena views
    max_workspace_bytes: int = 0   # 0 = unlimited


@dataclass
class ExecutionConfig:
    """Configuration for stream execution and solve policy."""
    policy: SolvePolicy = SolvePolicy.USE_LEVEL
    async_streams: bool = False


@dataclass
class DeviceConfig:
    """Configuration of the emulated device."""
    compute_capability: Tuple[int, int] = (7, 0)
    name: str = "acsparse-host"


_SECTIONS = ("index", "memory", "execution", "device")


def _env_flag(key: str) -> bool:
    return os.environ.get(key, "").strip().lower() in ("1", "true", "yes")


def _parse_capability(raw: str) -> Tuple[int, int]:
    major, _, minor = raw.strip().partition(".")
    return int(major), int(minor or 0)


# =============================================================================
# Global Configuration Manager
# =============================================================================

class EngineConfig:
    """
    Global configuration manager for acsparse.

    Example:
        # Global configuration
        acsparse.config.memory.max_workspace_bytes = 1 << 20

        # Local configuration (context manager)
        with acsparse.config.local(index=IndexConfig(dtype='int64')):
            csr = CSRMatrix.from_dense(A)
        # Back to global config
    """

    def __init__(self):
        self._global_index = IndexConfig()
        self._global_memory = MemoryConfig()
        self._global_execution = ExecutionConfig()
        self._global_device = DeviceConfig()

        # Thread-local storage for context overrides
        self._local = threading.local()

    # -------------------------------------------------------------------------
    # Property Accessors (with thread-local override support)
    # -------------------------------------------------------------------------

    def _get(self, name: str):
        value = getattr(self._local, name, None)
        if value is not None:
            return value
        return getattr(self, f"_global_{name}")

    @property
    def index(self) -> IndexConfig:
        """Get index configuration."""
        return self._get("index")

    @index.setter
    def index(self, value: IndexConfig):
        self._global_index = value

    @property
    def memory(self) -> MemoryConfig:
        """Get memory configuration."""
        return self._get("memory")

    @memory.setter
    def memory(self, value: MemoryConfig):
        self._global_memory = value

    @property
    def execution(self) -> ExecutionConfig:
        """Get execution configuration."""
        return self._get("execution")

    @execution.setter
    def execution(self, value: ExecutionConfig):
        self._global_execution = value

    @property
    def device(self) -> DeviceConfig:
        """Get device configuration."""
        return self._get("device")

    @device.setter
    def device(self, value: DeviceConfig):
        self._global_device = value

    # -------------------------------------------------------------------------
    # Context Manager Support
    # -------------------------------------------------------------------------

    def local(self, **kwargs) -> "_LocalConfigContext":
        """
        Create a local configuration context.

        Args:
            **kwargs: Configuration overrides (index, memory, execution, device)

        Returns:
            Context manager
        """
        unknown = set(kwargs) - set(_SECTIONS)
        if unknown:
            raise KeyError(f"Unknown config sections: {sorted(unknown)}")
        return _LocalConfigContext(self, **kwargs)

    def _set_local(self, **kwargs) -> Dict[str, Any]:
        """Apply overrides; returns the overrides they replace."""
        previous = {}
        for key, value in kwargs.items():
            if value is not None:
                previous[key] = getattr(self._local, key, None)
                setattr(self._local, key, value)
        return previous

    def _restore_local(self, previous: Dict[str, Any]):
        for key, value in previous.items():
            setattr(self._local, key, value)

    # -------------------------------------------------------------------------
    # Environment / Reset
    # -------------------------------------------------------------------------

    def load_env(self) -> None:
        """Apply ACSPARSE_* environment variables to the global sections."""
        index_dtype = os.environ.get("ACSPARSE_INDEX_DTYPE")
        if index_dtype:
            if index_dtype not in ("int32", "int64"):
                raise ValueError(
                    f"ACSPARSE_INDEX_DTYPE must be 'int32' or 'int64', got: {index_dtype!r}"
                )
            self._global_index.dtype = index_dtype

        max_ws = os.environ.get("ACSPARSE_MAX_WORKSPACE", "").strip()
        if max_ws:
            self._global_memory.max_workspace_bytes = int(max_ws)

        capability = os.environ.get("ACSPARSE_COMPUTE_CAPABILITY", "").strip()
        if capability:
            self._global_device.compute_capability = _parse_capability(capability)

        if _env_flag("ACSPARSE_ASYNC"):
            self._global_execution.async_streams = True

        logger.debug("Loaded configuration from environment: %s", self.to_dict())

    def reset(self):
        """Reset all configurations to defaults."""
        self._global_index = IndexConfig()
        self._global_memory = MemoryConfig()
        self._global_execution = ExecutionConfig()
        self._global_device = DeviceConfig()

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary."""
        out = {name: asdict(self._get(name)) for name in _SECTIONS}
        out["execution"]["policy"] = self.execution.policy.name
        return out

    def __repr__(self) -> str:
        return f"EngineConfig({self.to_dict()})"


class _LocalConfigContext:
    """Context manager for local configuration override."""

    def __init__(self, config: EngineConfig, **kwargs):
        self._config = config
        self._kwargs = kwargs
        self._previous: Dict[str, Any] = {}

    def __enter__(self):
        self._previous = self._config._set_local(**self._kwargs)
        return self._config

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._config._restore_local(self._previous)
        return False


# =============================================================================
# Global Instance
# =============================================================================

config = EngineConfig()
config.load_env()


def get_config() -> EngineConfig:
    """Get the global configuration instance."""
    return config


__all__ = [
    "IndexConfig",
    "MemoryConfig",
    "ExecutionConfig",
    "DeviceConfig",
    "EngineConfig",
    "config",
    "get_config",
]
