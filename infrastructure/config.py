"""
ARCHGRAPH CONFIG - TOML Configuration as Typed Structs

Configuration is loaded once from config/archgraph.toml and converted into
msgspec structs. Components receive the section they need rather than
reading files themselves.

Usage:
    from infrastructure.config import get_config

    config = get_config()
    config.layout.row_height        # 100.0
    config.interaction.debounce_ms  # 100
"""
import msgspec
import logging
import warnings
from typing import Optional, Dict, Any
from pathlib import Path

from infrastructure.logger import LoggerConfig, configure_logger


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "archgraph.toml"


# =============================================================================
# CONFIG SECTIONS
# =============================================================================

class ColumnX(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """X coordinate of each layer column."""
    persona: float = 50.0
    use_case: float = 400.0
    tool: float = 750.0
    data_model: float = 1100.0


class LayoutSection(msgspec.Struct, kw_only=True, frozen=True):
    column_x: ColumnX = msgspec.field(default_factory=ColumnX)
    row_height: float = 100.0
    margin: float = 50.0
    append_offset: float = 55.0         # Centers the append button under a node


class InteractionSection(msgspec.Struct, kw_only=True, frozen=True):
    debounce_ms: int = 100


class SyncSection(msgspec.Struct, kw_only=True, frozen=True):
    reconcile_on_load: bool = True


class LoggingSection(msgspec.Struct, kw_only=True, frozen=True):
    level: str = "INFO"
    journal: bool = False
    journal_path: str = "./workspace/logs"
    buffer_size: int = 10000

    def to_logger_config(self) -> LoggerConfig:
        return LoggerConfig(
            enable_file_log=self.journal,
            log_path=Path(self.journal_path),
            buffer_size=self.buffer_size,
        )


class ArchgraphConfig(msgspec.Struct, kw_only=True, frozen=True):
    """All configuration sections."""
    layout: LayoutSection = msgspec.field(default_factory=LayoutSection)
    interaction: InteractionSection = msgspec.field(default_factory=InteractionSection)
    sync: SyncSection = msgspec.field(default_factory=SyncSection)
    logging: LoggingSection = msgspec.field(default_factory=LoggingSection)


# =============================================================================
# LOADING
# =============================================================================

def load_toml_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load the raw TOML document.

    Returns an empty dict (and warns) when the file is missing or unreadable.
    """
    import tomllib

    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        warnings.warn(f"Failed to load config from {config_path}: {e}")
        return {}


def parse_config(raw: Dict[str, Any]) -> ArchgraphConfig:
    """
    Convert a raw config dict into ArchgraphConfig.

    Each section is converted on its own: a malformed section falls back to
    its defaults with a warning and the other sections are kept.
    """
    sections = {}
    for field in msgspec.structs.fields(ArchgraphConfig):
        if field.encode_name not in raw:
            continue
        try:
            sections[field.name] = msgspec.convert(raw[field.encode_name], type=field.type)
        except msgspec.ValidationError as e:
            warnings.warn(f"Invalid [{field.encode_name}] configuration, using defaults: {e}")
    return ArchgraphConfig(**sections)


_config: Optional[ArchgraphConfig] = None


def get_config() -> ArchgraphConfig:
    """Get the global configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = parse_config(load_toml_config())
    return _config


def set_config(config: Optional[ArchgraphConfig]) -> None:
    """Replace (or with None, drop) the global configuration."""
    global _config
    _config = config


def configure_logging(config: Optional[ArchgraphConfig] = None) -> None:
    """Apply the [logging] section: the standard logging tree and, if enabled, the journal file."""
    section = (config or get_config()).logging
    logging.basicConfig(
        level=getattr(logging, section.level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    if section.journal:
        configure_logger(section.to_logger_config())
