"""Reads ``key = value`` configuration files and builds EngineSettings."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Type, TypeVar

import aiofiles

from .logging_utils import get_module_logger
from .paths import CONFIG_PATH, USER_CONFIG_PATH

logger = get_module_logger("ConfigManager")

E = TypeVar("E", bound=Enum)


class VerifyPolicy(Enum):
    """What happens after a successful mutation."""

    VERIFY = "verify"          # settle only once a re-read confirms the change
    OPTIMISTIC = "optimistic"  # settle immediately, re-read later for logging only


class QueryStrategy(Enum):
    DIRECT = "direct"
    SCRIPTED = "scripted"


class MutationStrategy(Enum):
    HELPER = "helper"
    DIRECT = "direct"


class ConfigManager:

    def __init__(self, search_paths: Optional[Sequence[Path]] = None):
        self.logger = get_module_logger("ConfigManager")
        # Later files override earlier ones key by key
        self.search_paths: List[Path] = list(search_paths or (CONFIG_PATH, USER_CONFIG_PATH))

    @staticmethod
    def _parse_config_lines(lines: Iterable[str]) -> Dict[str, str]:
        config: Dict[str, str] = {}

        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.split("#", 1)[0].strip()

            if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
                value = value[1:-1]

            config[key] = value

        return config

    def _read_file_sync(self, path: Path) -> Dict[str, str]:
        if not path.exists():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return self._parse_config_lines(fh)
        except OSError as exc:
            self.logger.warning("Failed to read config %s: %s", path, exc)
            return {}

    async def _read_file_async(self, path: Path) -> Dict[str, str]:
        if not await asyncio.to_thread(path.exists):
            return {}
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as fh:
                lines = await fh.readlines()
        except OSError as exc:
            self.logger.warning("Failed to read config %s: %s", path, exc)
            return {}
        return self._parse_config_lines(lines)

    def read_config(self, extra: Optional[Path] = None) -> Dict[str, str]:
        """Merge every search path (plus ``extra``, highest priority)."""
        config: Dict[str, str] = {}
        for path in self._paths(extra):
            config.update(self._read_file_sync(path))
        return config

    async def read_config_async(self, extra: Optional[Path] = None) -> Dict[str, str]:
        config: Dict[str, str] = {}
        for path in self._paths(extra):
            config.update(await self._read_file_async(path))
        return config

    def _paths(self, extra: Optional[Path]) -> List[Path]:
        paths = list(self.search_paths)
        if extra is not None:
            paths.append(Path(extra))
        return paths

    # ------------------------------------------------------------------
    # Typed accessors

    def get_bool(self, config: Dict[str, str], key: str, default: bool = False) -> bool:
        if key not in config:
            return default
        value = config[key].strip().lower()
        if value in ("true", "1", "yes", "on"):
            return True
        if value in ("false", "0", "no", "off"):
            return False
        self.logger.warning("Invalid bool value for %s: %s, using default %s", key, config[key], default)
        return default

    def get_int(self, config: Dict[str, str], key: str, default: int = 0) -> int:
        if key not in config:
            return default
        try:
            return int(config[key])
        except ValueError:
            self.logger.warning("Invalid int value for %s: %s, using default %d", key, config[key], default)
            return default

    def get_float(self, config: Dict[str, str], key: str, default: float = 0.0) -> float:
        if key not in config:
            return default
        try:
            return float(config[key])
        except ValueError:
            self.logger.warning("Invalid float value for %s: %s, using default %f", key, config[key], default)
            return default

    def get_str(self, config: Dict[str, str], key: str, default: str = "") -> str:
        return config.get(key, default)

    def get_list(self, config: Dict[str, str], key: str) -> List[str]:
        return [item.strip() for item in config.get(key, "").split(",") if item.strip()]

    def get_enum(self, config: Dict[str, str], key: str, enum_type: Type[E], default: E) -> E:
        if key not in config:
            return default
        try:
            return enum_type(config[key].strip().lower())
        except ValueError:
            self.logger.warning("Invalid value for %s: %s, using default %s", key, config[key], default.value)
            return default


@dataclass
class EngineSettings:
    """Typed engine configuration."""

    verify_policy: VerifyPolicy = VerifyPolicy.VERIFY
    verify_delay: float = 0.2
    verify_attempts: int = 3
    query_strategy: QueryStrategy = QueryStrategy.DIRECT
    mutation_strategy: MutationStrategy = MutationStrategy.HELPER
    max_concurrency: int = 8
    process_timeout: float = 10.0
    helper_paths: List[Path] = field(default_factory=list)
    notify_store: bool = True
    log_level: str = "info"

    @classmethod
    def from_config(cls, config: Dict[str, str], manager: Optional[ConfigManager] = None) -> "EngineSettings":
        cm = manager or ConfigManager()
        defaults = cls()

        delay_ms = cm.get_int(config, "verify_delay_ms", int(defaults.verify_delay * 1000))
        attempts = cm.get_int(config, "verify_attempts", defaults.verify_attempts)
        concurrency = cm.get_int(config, "max_concurrency", defaults.max_concurrency)
        timeout = cm.get_float(config, "process_timeout", defaults.process_timeout)

        if delay_ms < 0:
            logger.warning("verify_delay_ms must not be negative, using %d", int(defaults.verify_delay * 1000))
            delay_ms = int(defaults.verify_delay * 1000)
        if attempts < 1:
            logger.warning("verify_attempts must be at least 1, using %d", defaults.verify_attempts)
            attempts = defaults.verify_attempts
        if concurrency < 1:
            logger.warning("max_concurrency must be at least 1, using %d", defaults.max_concurrency)
            concurrency = defaults.max_concurrency
        if timeout <= 0:
            logger.warning("process_timeout must be positive, using %.1f", defaults.process_timeout)
            timeout = defaults.process_timeout

        return cls(
            verify_policy=cm.get_enum(config, "verify_policy", VerifyPolicy, defaults.verify_policy),
            verify_delay=delay_ms / 1000.0,
            verify_attempts=attempts,
            query_strategy=cm.get_enum(config, "query_strategy", QueryStrategy, defaults.query_strategy),
            mutation_strategy=cm.get_enum(
                config, "mutation_strategy", MutationStrategy, defaults.mutation_strategy
            ),
            max_concurrency=concurrency,
            process_timeout=timeout,
            helper_paths=[Path(p).expanduser() for p in cm.get_list(config, "helper_paths")],
            notify_store=cm.get_bool(config, "notify_store", defaults.notify_store),
            log_level=cm.get_str(config, "log_level", defaults.log_level).lower(),
        )


_config_manager = ConfigManager()


def get_config_manager() -> ConfigManager:
    return _config_manager


__all__ = [
    "ConfigManager",
    "EngineSettings",
    "MutationStrategy",
    "QueryStrategy",
    "VerifyPolicy",
    "get_config_manager",
]
