"""Loads the bundled material catalog that seeds the local store."""
import json
import logging
import os
from typing import Optional

from estima.models.schemas import CatalogSeed

logger = logging.getLogger("estima.local")

DEFAULT_SEED_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data", "materials.json")


def load_seed(path: Optional[str] = None) -> CatalogSeed:
    """Parse and validate a seed file (``{"materials": [...], "categories": [...]}``)."""
    seed_path = path or DEFAULT_SEED_PATH
    with open(seed_path, "r", encoding="utf-8") as f:
        seed = CatalogSeed.model_validate(json.load(f))
    logger.debug(f"Loaded seed: {len(seed.materials)} materials, {len(seed.categories)} categories from {seed_path}")
    return seed
