# schedule_chat/catalog_loader.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

import commentjson
from dotenv import load_dotenv

from schedule_chat.entities import Catalog

load_dotenv()
CATALOG_PATH = os.getenv("CATALOG_PATH")

logger = logging.getLogger("schedule_chat")


def catalog_from_payload(data: Any) -> Catalog:
    """
    Accepts either a bare list of courses or {"courses": [...]}, in the shape the
    planner front-end sends (groupId / courseType / week codes ...).
    """
    if isinstance(data, dict):
        if "courses" not in data or not isinstance(data["courses"], list):
            raise ValueError("Catalog object missing or invalid key: courses")
        data = data["courses"]
    if not isinstance(data, list):
        raise ValueError(f"Catalog must be a list of courses, got {type(data).__name__}")
    return Catalog.model_validate({"courses": data})


def load_catalog(path: Optional[str | Path] = None) -> Catalog:
    """
    Load a catalog from a JSON-with-comments file.
    Falls back to CATALOG_PATH; fails fast if neither points at a file.
    """
    if path is None:
        path = CATALOG_PATH
    if not path:
        raise FileNotFoundError("No catalog path given and CATALOG_PATH is not set.")

    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Catalog file not found at '{cfg_path}'.")

    with cfg_path.open("r", encoding="utf-8") as f:
        data = commentjson.load(f)

    catalog = catalog_from_payload(data)
    logger.info(
        f"Loaded catalog from {cfg_path}: {len(catalog.courses)} courses, "
        f"{sum(len(c.groups) for c in catalog.courses)} groups"
    )
    return catalog
