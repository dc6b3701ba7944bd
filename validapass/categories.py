from __future__ import annotations
import json
import logging
import os
from typing import Dict, Mapping, Optional

from .errors import CategoryMapError
from .model.db import CATEGORIES

logger = logging.getLogger(__name__)

CAT_GOLD = "Wolf Gold"
CAT_BLACK = "Wolf Black"
CAT_VIP = "VIP Wolf"

# substring -> category, checked in this order
NAME_RULES = (
    ("vip", CAT_VIP),
    ("black", CAT_BLACK),
    ("gold", CAT_GOLD),
)


def load_offer_map(
    path: Optional[str] = None, inline: Optional[str] = None
) -> Dict[str, str]:
    """
    Read the operator-maintained {offer_id: category} table from a JSON file,
    or from an inline JSON string. Neither given -> empty table.
    """
    raw = None
    if path:
        try:
            with open(path, encoding="utf-8") as f:
                raw = f.read()
        except OSError as e:
            raise CategoryMapError(f"cannot read {path}: {e}") from e
    elif inline:
        raw = inline
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CategoryMapError(f"offer map is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise CategoryMapError("offer map must be a JSON object")
    out: Dict[str, str] = {}
    for offer_id, category in data.items():
        if category not in CATEGORIES:
            raise CategoryMapError(
                f"offer {offer_id}: unknown category {category!r}"
            )
        out[str(offer_id)] = category
    return out


class CategoryMapper:
    def __init__(
        self, offer_map: Optional[Mapping[str, str]] = None,
        default: str = CAT_GOLD,
    ) -> None:
        if default not in CATEGORIES:
            raise CategoryMapError(f"unknown default category {default!r}")
        self.offer_map: Dict[str, str] = dict(offer_map or {})
        self.default = default

    @classmethod
    def from_env(cls) -> "CategoryMapper":
        offer_map = load_offer_map(
            path=os.getenv("OFFER_CATEGORY_MAP_FILE"),
            inline=os.getenv("OFFER_CATEGORY_MAP"),
        )
        return cls(offer_map, default=os.getenv("DEFAULT_CATEGORY", CAT_GOLD))

    def reload(self) -> int:
        """Re-read the table from the environment sources; returns its size."""
        offer_map = load_offer_map(
            path=os.getenv("OFFER_CATEGORY_MAP_FILE"),
            inline=os.getenv("OFFER_CATEGORY_MAP"),
        )
        # swap in one assignment: in-flight lookups see old or new, never mixed
        self.offer_map = offer_map
        logger.info("offer category map reloaded (%d entries)", len(offer_map))
        return len(offer_map)

    def map(
        self,
        offer_id: Optional[str] = None,
        offer_name: Optional[str] = None,
        offer_name_v2: Optional[str] = None,
        product_name: Optional[str] = None,
    ) -> str:
        if offer_id:
            category = self.offer_map.get(str(offer_id).strip())
            if category:
                return category
        haystack = " ".join(
            s for s in (offer_name, offer_name_v2, product_name) if s
        ).lower()
        for needle, category in NAME_RULES:
            if needle in haystack:
                return category
        return self.default
