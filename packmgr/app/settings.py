# packmgr/app/settings.py
from __future__ import annotations
import json5, os, tempfile
from pathlib import Path
from typing import Any, cast

from pydantic import BaseModel, ConfigDict, Field, JsonValue, ValidationError

from packmgr.core.errors import ConfigError

import logging
logger = logging.getLogger(__name__)

__all__ = [
    "SETTINGS_DEFAULT_PATH", "DownloadSettings", "LoggingSettings",
    "PackManagerConfig", "loadUserSettings", "loadConfig", "saveConfig",
    "deepMerge",
]


SETTINGS_DEFAULT_PATH = Path(os.path.expanduser("~/.packmgr/settings.json5"))



def _defaultInstanceLocation() -> Path:
    return Path(os.path.expanduser("~")) / "Downloads" / "instances"



class DownloadSettings(BaseModel):
    """Transfer policy for the bulk retrieval and archive fetch adapters."""
    model_config = ConfigDict(extra="forbid")

    maxConcurrent: int = Field(default=8, ge=1)
    timeoutMs: int = Field(default=30_000, ge=1)
    retries: int = Field(default=2, ge=0)
    backoffBaseMs: int = Field(default=250, ge=0)
    backoffMaxMs: int = Field(default=1_000, ge=0)
    chunkSize: int = Field(default=64 * 1024, ge=1)



class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: str = "INFO"
    file: Path | None = None
    maxBytes: int = 10 * 1024 * 1024
    backupCount: int = 5



class PackManagerConfig(BaseModel):
    """
    Process-wide configuration, constructed once at startup and handed to
    the engine, the adapters and the discovery routines.
    """
    model_config = ConfigDict(extra="ignore")

    # Root directory holding one subdirectory per installed pack
    instanceLocation: Path = Field(default_factory=_defaultInstanceLocation)
    # Delete previously recorded override files before applying new ones on update
    removeOverridesOnUpdate: bool = True
    # When False the CLI reports failed mod downloads with a non-zero exit code
    ignoreFailedDownloads: bool = True
    # Where remote pack archives are downloaded before being opened
    tempDir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    downloads: DownloadSettings = Field(default_factory=DownloadSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)



def loadUserSettings(path: Path | None = None) -> JsonValue:
    filePath = Path(path) if path is not None else SETTINGS_DEFAULT_PATH
    if filePath.exists():
        try:
            data = json5.loads(filePath.read_text(encoding="utf-8"))
        except Exception as err:
            logger.error("Failed to parse '%s': %s", filePath, err)
            return {}
        if isinstance(data, dict):
            return cast(JsonValue, data)
        logger.error("Ignoring '%s': top level must be an object", filePath)
    return {}



def loadConfig(path: Path | None = None, **overrides: Any) -> PackManagerConfig:
    """
    Returns the defaults merged with the user settings file and `overrides`.

    Raises ConfigError when the merged settings do not validate.
    """
    defaults = PackManagerConfig().model_dump(mode="json")
    merged = deepMerge(cast(JsonValue, defaults), loadUserSettings(path))
    merged = deepMerge(merged, cast(JsonValue, {k: v for k, v in overrides.items() if v is not None}))
    try:
        return PackManagerConfig.model_validate(merged)
    except ValidationError as err:
        raise ConfigError(f"Invalid settings: {err}") from err



def saveConfig(config: PackManagerConfig, path: Path | None = None) -> Path:
    filePath = Path(path) if path is not None else SETTINGS_DEFAULT_PATH
    filePath.parent.mkdir(parents=True, exist_ok=True)
    payload = config.model_dump(mode="json")
    filePath.write_text(json5.dumps(payload, ensure_ascii=False, indent=2, quote_keys=True), encoding="utf-8")
    logger.info("Settings saved to '%s'", filePath)
    return filePath



def deepMerge(first: JsonValue, second: JsonValue) -> JsonValue:
    """
    Returns a new JsonValue where keys from `second` override/extend `first`.
    Only merges recursively when BOTH sides are JSON objects (dicts).
    For all other JSON types the right-hand value `second` replaces `first`.
    """
    if isinstance(first, dict) and isinstance(second, dict):
        out: dict[str, JsonValue] = dict(first)
        for key, value in second.items():
            if key in out:
                out[key] = deepMerge(out[key], cast(JsonValue, value))
            else:
                out[key] = cast(JsonValue, value)
        return cast(JsonValue, out)

    # If not both dicts, replace with right-hand side
    return cast(JsonValue, second)
