from pathlib import Path

from stretch.config.general import GeneralConfig


def write_default_configs(path: Path | None = None) -> Path:
    """Write out config defaults, returning where they were written."""
    target = path or Path("config/config.default.yaml").resolve()
    GeneralConfig.write_default(target)
    return target
