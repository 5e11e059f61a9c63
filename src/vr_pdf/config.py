"""
Run configuration: defaults, YAML loading and the frozen RunConfig value.
"""

from __future__ import annotations

from copy import deepcopy
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .utils import UserError, ensure_file_exists, validate_positive_int


IMAGE_FORMATS = {"jpg", "jpeg", "png"}
PAGE_ORDERS = {"listing", "numeric"}
CONFIG_SECTION = "vr_pdf"

DEFAULT_RUN: dict[str, Any] = {
    "full_width": 5314,
    "full_height": 4016,
    "render_dpi": 300,
    "image_format": "jpg",
    "source_glob": "*.png",
    "workers": 1,
    "page_order": "listing",
    "title": None,
    "keep_scratch": False,
}


@dataclass(frozen=True)
class RunConfig:
    """
    Per-run constants shared by every stage.

    Built once by the CLI/orchestrator; stages only read it.
    """

    full_width: int = DEFAULT_RUN["full_width"]
    full_height: int = DEFAULT_RUN["full_height"]
    render_dpi: int = DEFAULT_RUN["render_dpi"]
    image_format: str = DEFAULT_RUN["image_format"]
    source_glob: str = DEFAULT_RUN["source_glob"]
    workers: int = DEFAULT_RUN["workers"]
    page_order: str = DEFAULT_RUN["page_order"]
    title: Optional[str] = DEFAULT_RUN["title"]
    keep_scratch: bool = DEFAULT_RUN["keep_scratch"]

    def __post_init__(self) -> None:
        validate_positive_int(self.full_width, "full_width")
        validate_positive_int(self.full_height, "full_height")
        validate_positive_int(self.render_dpi, "render_dpi")
        validate_positive_int(self.workers, "workers")
        if self.full_width % 2 != 0:
            raise UserError("full_width must be even so both eyes get the same width.")
        if self.image_format.lower() not in IMAGE_FORMATS:
            allowed = ", ".join(sorted(IMAGE_FORMATS))
            raise UserError(f"image_format must be one of: {allowed}.")
        if self.page_order not in PAGE_ORDERS:
            raise UserError("page_order must be one of: listing, numeric.")
        if not isinstance(self.keep_scratch, bool):
            raise UserError("keep_scratch must be true or false.")

    @property
    def half_width(self) -> int:
        return self.full_width // 2

    @property
    def image_suffix(self) -> str:
        return f".{self.image_format.lower()}"

    @classmethod
    def from_mapping(cls, values: Dict[str, Any]) -> "RunConfig":
        validate_keys(values, set(DEFAULT_RUN), "config")
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file into a dictionary."""

    ensure_file_exists(path, "Config file")
    try:
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise UserError(f"Failed to parse YAML config {path}: {exc}") from exc
    except OSError as exc:
        raise UserError(f"Failed to read config {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise UserError(f"Config {path} must contain a YAML mapping/object at top level.")
    return loaded


def extract_run_section(loaded: Dict[str, Any]) -> Dict[str, Any]:
    """Support either root config keys or a vr_pdf wrapper."""

    if CONFIG_SECTION in loaded:
        section = loaded[CONFIG_SECTION]
        if not isinstance(section, dict):
            raise UserError(f"config.{CONFIG_SECTION} must be a mapping/object.")
        validate_keys(section, set(DEFAULT_RUN), f"config.{CONFIG_SECTION}")
        return section

    validate_keys(loaded, set(DEFAULT_RUN), "config")
    return loaded


def deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """
    Recursively merge dictionaries where overlay values win.
    """

    merged = deepcopy(base)
    for key, value in overlay.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(value, dict)
        ):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def validate_keys(cfg: dict[str, Any], allowed: set[str], ctx: str) -> None:
    """
    Validate dictionary keys and fail fast on unknown entries.
    """

    unknown = sorted(key for key in cfg.keys() if key not in allowed)
    if unknown:
        allowed_list = ", ".join(sorted(allowed))
        unknown_list = ", ".join(unknown)
        raise UserError(
            f"Unknown keys in {ctx}: {unknown_list}. Allowed keys: {allowed_list}."
        )


def build_run_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> RunConfig:
    """Resolve defaults < YAML config < explicit overrides into a RunConfig."""

    effective = deep_merge(DEFAULT_RUN, {})
    if config_path is not None:
        effective = deep_merge(effective, extract_run_section(load_yaml(config_path)))
    if overrides:
        effective = deep_merge(effective, overrides)
    return RunConfig.from_mapping(effective)


def dump_default_run_yaml() -> str:
    """Serialize wrapped run defaults as YAML."""

    return yaml.safe_dump({CONFIG_SECTION: DEFAULT_RUN}, sort_keys=False).rstrip()
