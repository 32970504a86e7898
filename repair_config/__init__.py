"""
repair_config -- single public entrypoint for the workflow catalog.

Responsibility:
    Provides the ONLY way to obtain the state catalog at runtime through
    ``get_active_catalog()``.  The YAML file is read and validated once per
    path and the resulting frozen ``StateCatalog`` is shared by every
    engine, executor and sweeper in the process.

Architecture position:
    Configuration -- sits above ``repair_kernel`` and below
    ``repair_services``.  The kernel MUST NEVER import from
    ``repair_config``.

Failure modes:
    - ``FileNotFoundError`` -- catalog file missing.
    - ``ValueError`` / ``KeyError`` -- catalog fails validation.

Audit relevance:
    Every load emits a ``REPAIR_CATALOG_TRACE`` log entry with the catalog
    name, version and checksum, tying transitions to the exact rules that
    governed them.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from repair_config.loader import build_catalog, compute_checksum, load_catalog, load_yaml_file
from repair_kernel.domain.workflow import StateCatalog
from repair_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CATALOG_PATH = Path(__file__).parent / "sets" / "job_sheet_workflow.yaml"


@lru_cache(maxsize=8)
def _load_cached(path: Path) -> StateCatalog:
    catalog = load_catalog(path)
    _logger.info(
        "REPAIR_CATALOG_TRACE",
        extra={
            "trace_type": "REPAIR_CATALOG_TRACE",
            "catalog_name": catalog.name,
            "catalog_version": catalog.version,
            "checksum": catalog.checksum,
            "source": str(path),
            "state_count": len(catalog.states),
        },
    )
    return catalog


def get_active_catalog(path: Path | None = None) -> StateCatalog:
    """The ONLY public catalog entrypoint.

    Guarantees:
        - The returned catalog has passed structural validation.
        - Repeated calls for the same path return the same instance.

    Args:
        path: Override the catalog file.  Defaults to
            ``repair_config/sets/job_sheet_workflow.yaml``.
    """
    return _load_cached(Path(path or DEFAULT_CATALOG_PATH).resolve())


def clear_catalog_cache() -> None:
    """Forget loaded catalogs. FOR TESTING ONLY."""
    _load_cached.cache_clear()


__all__ = [
    "DEFAULT_CATALOG_PATH",
    "build_catalog",
    "clear_catalog_cache",
    "compute_checksum",
    "get_active_catalog",
    "load_catalog",
    "load_yaml_file",
]
