"""Configuration for taskledger.

Settings Management:
    The module provides both global singleton and context-based settings:

    1. Global singleton (simple cases):
        set_settings(my_settings)
        settings = get_settings()

    2. Context-based (isolated contexts, tests):
        with SettingsContext(my_settings):
            settings = get_settings()  # Returns my_settings

Settings Loading Priority (highest to lowest):
    1. Constructor arguments
    2. Environment variables (TASKLEDGER_* prefix)
    3. Project config (./.taskledger/settings.json)
    4. User config (~/.taskledger/settings.json)
    5. .env file
    6. Default values
"""

from contextlib import contextmanager
from contextvars import ContextVar, Token
from pathlib import Path
from typing import Generator, Tuple, Type

from pydantic_settings import (
    BaseSettings as PydanticBaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from taskledger.logging import Loggers
from taskledger.settings_mixins import (
    ContextSettingsMixin,
    LoggingSettingsMixin,
    StorageSettingsMixin,
)

logger = Loggers.config()

__all__ = [
    "TaskLedgerSettings",
    "SettingsContext",
    "SettingsValidationError",
    "get_settings",
    "set_settings",
    "set_context_settings",
    "get_context_settings",
    "validate_settings",
    "reload_settings",
]

APP_NAME = "taskledger"


def _get_json_config_source(
    settings_cls: Type[PydanticBaseSettings],
    json_file: Path,
) -> PydanticBaseSettingsSource | None:
    """Create a JSON config source if the file exists."""
    if not json_file.exists():
        return None
    return JsonConfigSettingsSource(settings_cls, json_file=json_file)


class TaskLedgerSettings(
    StorageSettingsMixin,
    ContextSettingsMixin,
    LoggingSettingsMixin,
    PydanticBaseSettings,
):
    """Settings for the task store and context resolver.

    Mixins provide organized settings:
    - StorageSettingsMixin: Replica paths, lock, retry, undo, sync
    - ContextSettingsMixin: Taskrc path and undefined-context policy
    - LoggingSettingsMixin: Log level and format
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKLEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[PydanticBaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Layer JSON configuration files between env vars and .env.

        Note: JSON sources are only included if the files exist.
        """
        sources: list[PydanticBaseSettingsSource] = [init_settings, env_settings]

        for json_file in (
            Path.cwd() / f".{APP_NAME}" / "settings.json",
            Path.home() / f".{APP_NAME}" / "settings.json",
        ):
            source = _get_json_config_source(settings_cls, json_file)
            if source:
                sources.append(source)

        sources.append(dotenv_settings)
        return tuple(sources)


# Context variable for settings (takes precedence over global singleton)
_settings_context: ContextVar[TaskLedgerSettings | None] = ContextVar(
    "settings_context", default=None
)

_settings_instance: TaskLedgerSettings | None = None


def get_settings() -> TaskLedgerSettings:
    """Get the current settings instance.

    Settings resolution order:
    1. Context variable (set via SettingsContext or set_context_settings)
    2. Global singleton (set via set_settings)
    3. Fresh TaskLedgerSettings instance (created on first access)
    """
    context_settings = _settings_context.get()
    if context_settings is not None:
        return context_settings

    global _settings_instance
    if _settings_instance is None:
        _settings_instance = TaskLedgerSettings()
    return _settings_instance


def set_settings(settings: TaskLedgerSettings) -> None:
    """Set the global settings instance.

    Args:
        settings: Settings instance to use globally
    """
    global _settings_instance
    _settings_instance = settings


def set_context_settings(settings: TaskLedgerSettings | None) -> Token:
    """Set settings for the current context.

    Args:
        settings: Settings to use in current context, or None to clear

    Returns:
        Token that can be used to reset the context variable.
    """
    return _settings_context.set(settings)


def get_context_settings() -> TaskLedgerSettings | None:
    """Get settings from current context (if any)."""
    return _settings_context.get()


@contextmanager
def SettingsContext(
    settings: TaskLedgerSettings,
) -> Generator[TaskLedgerSettings, None, None]:
    """Context manager for isolated settings.

    Example:
        with SettingsContext(test_settings) as s:
            store = TaskStore.from_settings()  # Uses test_settings

    Args:
        settings: Settings to use within the context

    Yields:
        The settings instance
    """
    token = _settings_context.set(settings)
    try:
        yield settings
    finally:
        _settings_context.reset(token)


def reload_settings() -> TaskLedgerSettings:
    """Reload settings (clears global singleton and context cache).

    Returns:
        Fresh TaskLedgerSettings instance
    """
    global _settings_instance
    _settings_instance = None
    _settings_context.set(None)
    return get_settings()


class SettingsValidationError(Exception):
    """Raised when settings validation fails."""

    pass


def validate_settings(settings: TaskLedgerSettings) -> None:
    """Validate settings for runtime use.

    Performs checks that depend on the filesystem or on several fields:
    - The data directory, if present, must be a directory
    - The retry base delay must not exceed the max delay

    Args:
        settings: Settings to validate

    Raises:
        SettingsValidationError: If validation fails
    """
    errors = []

    if settings.data_dir.exists() and not settings.data_dir.is_dir():
        errors.append(f"Data directory {settings.data_dir} is not a directory.")

    if settings.retry_base_delay > settings.retry_max_delay:
        errors.append(
            f"retry_base_delay ({settings.retry_base_delay}) exceeds "
            f"retry_max_delay ({settings.retry_max_delay})."
        )

    if not settings.sync_command:
        errors.append("sync_command must not be empty.")

    if errors:
        logger.warning("settings_invalid", errors=errors)
        raise SettingsValidationError("\n".join(errors))
