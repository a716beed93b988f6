from __future__ import annotations

import os
import re
import unicodedata
from typing import Dict, Iterable, List, Optional, Sequence

from backend import Category, Product

ALL_CATEGORIES = "All"
IMAGE_EXTS = (".png", ".jpg", ".jpeg", ".webp")


# -------------------------
# Helpers
# -------------------------
def format_price(value: float) -> str:
    """Rupee formatting: ₹185 for whole amounts, ₹185.50 otherwise."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        v = 0.0
    if v == int(v):
        return f"₹{int(v)}"
    return f"₹{v:.2f}"


def slugify(name: str, max_len: int = 80) -> str:
    norm = unicodedata.normalize("NFKD", (name or "").strip())
    chars = []
    for ch in norm:
        if unicodedata.category(ch) == "Mn":
            continue
        chars.append(ch if ord(ch) < 128 else "-")
    s = "".join(chars).lower()
    s = re.sub(r"[^a-z0-9]+", "-", s)
    s = re.sub(r"-{2,}", "-", s).strip("-")
    s = s or "item"
    return s[:max_len] if len(s) > max_len else s


# -------------------------
# Filtering
# -------------------------
def matches_query(p: Product, query: str) -> bool:
    ql = (query or "").strip().lower()
    if not ql:
        return True
    return any(ql in (field or "").lower() for field in (p.name, p.brand, p.category))


def filter_products(products: Iterable[Product], query: str = "", category: str = "") -> List[Product]:
    """Category filter (exact name, "All" or blank disables it) plus substring search."""
    cat = (category or "").strip()
    if cat == ALL_CATEGORIES:
        cat = ""
    return [
        p
        for p in products
        if (not cat or p.category == cat) and matches_query(p, query)
    ]


def category_choices(categories: Sequence[Category]) -> List[str]:
    ordered = sorted(categories, key=lambda c: c.sort_order)
    return [ALL_CATEGORIES] + [c.name for c in ordered]


def resolve_category(value: str, categories: Sequence[Category]) -> str:
    """Accept either a category name or its slug from the query string."""
    value = (value or "").strip()
    if not value or value == ALL_CATEGORIES:
        return ""
    for c in categories:
        if c.name == value or slugify(c.name) == value:
            return c.name
    return value


def products_in_category(products: Iterable[Product], name: str) -> int:
    return sum(1 for p in products if p.category == name)


def catalog_stats(products: Sequence[Product], categories: Sequence[Category]) -> Dict[str, object]:
    avg = round(sum(p.price for p in products) / len(products)) if products else 0
    return {
        "total_products": len(products),
        "categories": len(categories),
        "avg_price": avg,
        "brands": len({p.brand for p in products}),
    }


def find_product(products: Iterable[Product], product_id: str) -> Optional[Product]:
    return next((p for p in products if p.id == product_id), None)


# -------------------------
# Images
# -------------------------
def scan_listing_images(listing_dir: str) -> Dict[str, List[str]]:
    """Map lower-cased file base name -> file names in the listing folder."""
    image_map: Dict[str, List[str]] = {}
    if not listing_dir or not os.path.isdir(listing_dir):
        return image_map
    for fn in sorted(os.listdir(listing_dir)):
        base, ext = os.path.splitext(fn)
        if ext.lower() not in IMAGE_EXTS:
            continue
        image_map.setdefault(base.lower(), []).append(fn)
    return image_map


def product_images(p: Product, image_map: Optional[Dict[str, List[str]]] = None, prefix: str = "") -> List[str]:
    """Explicit gallery, then the single image, then listing files named after the product."""
    if p.images:
        return list(p.images)
    if p.image:
        return [p.image]
    if image_map:
        return [prefix + fn for fn in image_map.get(p.name.lower(), [])]
    return []
