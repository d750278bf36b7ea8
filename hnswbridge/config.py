"""Configuration loading and adapter factory.

Reads a YAML config file into dataclass sections, overlays environment
variables, and builds the engine factory, executor and index the rest of
the package needs.

Env vars take precedence over YAML values.
Env var naming: HNSWBRIDGE__{section}__{key} (double underscore separator)
e.g., HNSWBRIDGE__INDEX__DIM overrides index.dim
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from hnswbridge.client import HnswIndex
from hnswbridge.domain.errors import InvalidConfigurationError
from hnswbridge.ports.ann_engine import AnnEngineFactory
from hnswbridge.services.parallel import ParallelExecutor

log = logging.getLogger(__name__)

ENV_PREFIX = "HNSWBRIDGE__"


@dataclass
class EngineConfig:
    adapter: str = "hnswlib"


@dataclass
class IndexConfig:
    space: str = "l2"
    dim: int = 128
    max_elements: int = 10000
    M: int = 16
    ef_construction: int = 200
    seed: int = 100
    allow_replace_deleted: bool = False
    ef: int = 10


@dataclass
class BatchConfig:
    num_threads: int = 0
    small_batch_factor: int = 4


@dataclass
class Settings:
    engine: EngineConfig = field(default_factory=EngineConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)


def load_settings(path: str | os.PathLike = "config.yaml", env_file: str | None = ".env") -> Settings:
    """Load settings from YAML (missing file → defaults) with env var overlay."""
    if env_file:
        load_dotenv(Path(env_file), override=False)

    settings = Settings()
    config_file = Path(path)
    if config_file.exists():
        with open(config_file) as f:
            yaml_config = yaml.safe_load(f) or {}
        _apply_yaml(settings, yaml_config)
    else:
        log.debug("Config file %s not found; using defaults", config_file)

    _apply_env_vars(settings)
    return settings


def _sections(settings: Settings) -> dict[str, Any]:
    return {f.name: getattr(settings, f.name) for f in fields(settings)}


def _apply_yaml(settings: Settings, yaml_config: dict[str, Any]) -> None:
    for section, section_obj in _sections(settings).items():
        values = yaml_config.get(section)
        if not values:
            continue
        known = {f.name for f in fields(section_obj)}
        for key, value in values.items():
            if key not in known:
                log.warning("Ignoring unknown config key %s.%s", section, key)
                continue
            setattr(section_obj, key, value)


def _apply_env_vars(settings: Settings) -> None:
    """Apply environment variable overrides. Format: HNSWBRIDGE__SECTION__KEY."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        parts = key[len(ENV_PREFIX):].split("__")
        if len(parts) != 2:
            continue

        section, field_name = parts
        _set_field(settings, section.lower(), field_name, value)


def _set_field(settings: Settings, section: str, field_name: str, value: str) -> None:
    section_obj = _sections(settings).get(section)
    if section_obj is None:
        return

    # Field names are matched case-insensitively so HNSWBRIDGE__INDEX__M works.
    names = {f.name.lower(): f.name for f in fields(section_obj)}
    name = names.get(field_name.lower())
    if name is None:
        return

    current_value = getattr(section_obj, name)

    # Type coercion based on current type
    try:
        if isinstance(current_value, bool):
            setattr(section_obj, name, value.lower() in ("true", "1", "yes"))
        elif isinstance(current_value, int):
            setattr(section_obj, name, int(value))
        elif isinstance(current_value, float):
            setattr(section_obj, name, float(value))
        else:
            setattr(section_obj, name, value)
    except ValueError as exc:
        raise InvalidConfigurationError(
            f"{ENV_PREFIX}{section.upper()}__{field_name}={value!r}: {exc}"
        ) from exc


# ── Factories ──


def build_engine_factory(settings: Settings) -> AnnEngineFactory:
    adapter = settings.engine.adapter

    if adapter == "hnswlib":
        from hnswbridge.adapters.engines.hnswlib_engine import HnswlibEngineFactory
        return HnswlibEngineFactory()

    elif adapter == "numpy":
        from hnswbridge.adapters.engines.numpy_engine import NumpyEngineFactory
        return NumpyEngineFactory()

    raise InvalidConfigurationError(f"Unknown engine adapter: {adapter}")


def build_executor(settings: Settings) -> ParallelExecutor:
    return ParallelExecutor(small_batch_factor=settings.batch.small_batch_factor)


def build_index(settings: Settings) -> HnswIndex:
    """Create an empty index from the ``index`` section."""
    cfg = settings.index
    index = HnswIndex.new(
        cfg.space,
        cfg.dim,
        cfg.max_elements,
        M=cfg.M,
        ef_construction=cfg.ef_construction,
        seed=cfg.seed,
        allow_replace_deleted=cfg.allow_replace_deleted,
        engine_factory=build_engine_factory(settings),
        executor=build_executor(settings),
    )
    index.set_ef(cfg.ef)
    return index


def open_index(settings: Settings, path: str | os.PathLike) -> HnswIndex:
    """Load a saved index; space and dim come from the ``index`` section."""
    cfg = settings.index
    index = HnswIndex.load(
        path,
        cfg.space,
        cfg.dim,
        cfg.max_elements,
        allow_replace_deleted=cfg.allow_replace_deleted,
        engine_factory=build_engine_factory(settings),
        executor=build_executor(settings),
    )
    index.set_ef(cfg.ef)
    return index
