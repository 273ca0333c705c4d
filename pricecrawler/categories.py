"""Category taxonomy parsing and selection."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import ConfigError
from .models import CATEGORY_SEPARATOR, Category

EXCLUDED_CATEGORIES = ("Featured",)


def parse_categories(tree: Sequence[Dict[str, Any]]) -> List[Category]:
    """
    Flatten a category tree into crawlable (top level, subcategory) pairs.

    Top-level categories listed in EXCLUDED_CATEGORIES are skipped, and only
    level-1 children become crawl targets.
    """
    result: List[Category] = []
    for top in tree:
        name = top.get("name")
        if not name or name in EXCLUDED_CATEGORIES:
            continue
        for child in top.get("children") or []:
            child_name = child.get("name")
            if child_name:
                result.append(Category(category0=name, category1=child_name))
    return result


def load_categories(path: str) -> List[Category]:
    """
    Load and flatten a categories JSON file.

    Raises:
        ConfigError: If the file is missing or not a JSON list
    """
    file_path = Path(path)
    if not file_path.exists():
        raise ConfigError(f"Categories file not found: {path}")

    try:
        tree = json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in categories file {path}: {e}") from e

    if not isinstance(tree, list):
        raise ConfigError(f"Categories file {path} must contain a list")
    return parse_categories(tree)


def parse_category_spec(spec: str) -> Tuple[str, Optional[str]]:
    """Split "Top > Sub" into ("Top", "Sub"); "Top" gives ("Top", None)."""
    parts = [part.strip() for part in spec.split(CATEGORY_SEPARATOR.strip())]
    if len(parts) == 2:
        return parts[0], parts[1]
    return parts[0], None


def select_categories(
    categories: Sequence[Category],
    specs: Optional[Sequence[str]] = None,
) -> List[Category]:
    """
    Filter categories by user-supplied specs.

    With no specs every category is selected. "Top > Sub" must match both
    levels exactly; "Top" selects all of its subcategories.
    """
    if not specs:
        return list(categories)

    parsed = [parse_category_spec(spec) for spec in specs]
    selected: List[Category] = []
    for category in categories:
        for top, sub in parsed:
            if category.category0 == top and (sub is None or category.category1 == sub):
                selected.append(category)
                break
    return selected
