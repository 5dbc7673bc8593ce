import yaml
from pathlib import Path
from typing import Optional
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r', encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    # Allow a flat file with only the general keys at the root
    if "general" not in data and not ({"ui", "presets"} & set(data)):
        data = {"general": data}

    return AppConfig(**data)

def load_config_or_default(config_path: Optional[Path]) -> AppConfig:
    """Like load_config, but a missing file means built-in defaults."""
    if config_path is None or not config_path.exists():
        return AppConfig()
    return load_config(config_path)
