# packmgr/modpacks/instance_cfg.py
from __future__ import annotations
import logging

from packmgr.modpacks.models import ModPack

logger = logging.getLogger(__name__)

__all__ = ["renderInstanceCfg", "ensureInstanceDescriptor"]

# Launcher settings the engine never wants to override on behalf of the user
_DEFAULT_FLAGS = (
    ("LogPrePostOutput", "true"),
    ("OverrideCommands", "false"),
    ("OverrideConsole", "false"),
    ("OverrideJavaArgs", "false"),
    ("OverrideJavaLocation", "false"),
    ("OverrideMemory", "false"),
    ("OverrideWindow", "false"),
)



def renderInstanceCfg(pack: ModPack) -> str:
    lines = [
        "InstanceType=OneSix",
        f"IntendedVersion={pack.mcVersion}",
        f"ForgeVersion={pack.forgeVersion}",
        *(f"{key}={value}" for key, value in _DEFAULT_FLAGS),
        "iconKey=default",
        "lastLaunchTime=0",
        f"name={pack.name}",
        "totalTimePlayed=0",
    ]
    return "\n".join(lines)



def ensureInstanceDescriptor(pack: ModPack) -> bool:
    """
    Writes `instance.cfg` unless one already exists.

    An existing file is assumed to hold user customizations and is left alone.
    Returns True when a new file was written. OSError propagates to the caller.
    """
    cfgPath = pack.instanceCfgPath
    if cfgPath.exists():
        logger.info("%s already exists for '%s'", cfgPath.name, pack.name)
        return False

    cfgPath.parent.mkdir(parents=True, exist_ok=True)
    cfgPath.write_text(renderInstanceCfg(pack), encoding="utf-8")
    logger.info("%s created for '%s'", cfgPath.name, pack.name)
    return True
