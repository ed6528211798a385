from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from reportflow.errors import CatalogError


def load_yaml(path: Path) -> dict[str, Any]:
    loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    return loaded if isinstance(loaded, dict) else {}


def load_catalog_document(path: Path) -> dict[str, Any]:
    """Read a stage catalog YAML file.

    The file must hold a mapping with a non-empty ``stages`` list; the
    optional ``gate``, ``fan_out`` and ``final`` entries name stage keys.
    """
    try:
        document = load_yaml(path)
    except yaml.YAMLError as e:
        raise CatalogError(f"catalog file {path} is not valid YAML: {e}") from e
    stages = document.get("stages")
    if not isinstance(stages, list) or not stages:
        raise CatalogError(f"catalog file {path} has no 'stages' list")
    for name in ("gate", "fan_out", "final"):
        value = document.get(name)
        if value is not None and not isinstance(value, str):
            raise CatalogError(f"catalog file {path}: '{name}' must be a stage key")
    return document
