"""Runtime configuration for the sidecar annotation engine."""

from dataclasses import dataclass, field
from pathlib import Path


def _default_data_dir() -> Path:
    return Path.home() / ".local" / "share" / "sidecar-annotator"


@dataclass
class SidecarConfig:
    """Tunable constants shared by the anchoring, storage and session layers."""

    # Characters of surrounding text captured on each side of a highlight quote
    context_chars: int = 64

    # Re-anchoring searches at most this many pages either side of the estimate
    reanchor_radius_pages: int = 48
    # Anchored highlights scoring below this are left in their old layout
    reanchor_min_context_score: int = 6

    # Undo entries kept per session; the oldest entry is dropped beyond this
    max_undo_depth: int = 50

    data_dir: Path = field(default_factory=_default_data_dir)
    database_filename: str = "sidecar_annotations.db"

    @property
    def database_path(self) -> Path:
        return self.data_dir / self.database_filename


# Global configuration instance
CONFIG = SidecarConfig()


def default_database_url(config: SidecarConfig = CONFIG) -> str:
    """SQLite URL for the configured on-disk store."""
    return f"sqlite:///{config.database_path}"
