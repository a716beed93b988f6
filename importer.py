"""
Bulk product import.

Spreadsheet price lists are sparse: brand, category and unit are written
once and left blank on the following rows. Those columns are forward-filled
from the last accepted row before a row is validated.

Usage:
    python importer.py price-list.xlsx     # import a file
    python importer.py --seed              # seed from data/products.json
"""
from __future__ import annotations

import argparse
import json
import logging
import math
import os
from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd
from dotenv import load_dotenv

from backend import BackendError, create_backend

logger = logging.getLogger(__name__)

STATIC_PRODUCTS_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data", "products.json")

FILLED_COLUMNS = ("brand", "category", "unit")


class ImportFileError(Exception):
    pass


def _field(row: Dict[str, Any], keys: Sequence[str]) -> str:
    for key in keys:
        v = row.get(key)
        if isinstance(v, str) and v.strip():
            return v.strip()
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return _cell_text(v)
    return ""


def _cell_text(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, float):
        if math.isnan(v):
            return ""
        if v.is_integer():
            return str(int(v))
    return str(v).strip()


def _price(v: Any) -> float:
    if isinstance(v, bool):
        return math.nan
    if isinstance(v, (int, float)):
        return float(v)
    text = _cell_text(v)
    if not text:
        return math.nan
    try:
        return float(text)
    except ValueError:
        return math.nan


class ForwardFill:
    """Remembers the last accepted brand/category/unit."""

    def __init__(self):
        self.last = {key: "" for key in FILLED_COLUMNS}

    def accept(self, name: str, brand: str, category: str, unit: str, price: float) -> Optional[Dict[str, Any]]:
        values = {"brand": brand, "category": category, "unit": unit}
        for key in FILLED_COLUMNS:
            if not values[key]:
                values[key] = self.last[key]

        if not name or not all(values.values()) or not math.isfinite(price) or price <= 0:
            return None

        self.last.update(values)
        return {
            "name": name,
            "price": price,
            "image": None,
            "description": None,
            **values,
        }


def rows_to_products(rows: Iterable[Any]) -> List[Dict[str, Any]]:
    """Object-shaped rows, e.g. a JSON array of {"Name": ..., "Brand": ...}."""
    fill = ForwardFill()
    out: List[Dict[str, Any]] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        rec = fill.accept(
            name=_field(row, ("Name", "name")),
            brand=_field(row, ("Brand", "brand")),
            category=_field(row, ("Category", "category")),
            unit=_field(row, ("Unit", "unit")),
            price=_price(_field(row, ("Price", "price"))),
        )
        if rec:
            out.append(rec)
    return out


def matrix_to_products(matrix: Sequence[Sequence[Any]]) -> List[Dict[str, Any]]:
    """Array-shaped rows with a header row and columns name, brand, category, price, unit."""
    fill = ForwardFill()
    out: List[Dict[str, Any]] = []
    for row in list(matrix)[1:]:
        cells = list(row)[:5]
        cells += [""] * (5 - len(cells))
        name_raw, brand_raw, category_raw, price_raw, unit_raw = cells
        rec = fill.accept(
            name=_cell_text(name_raw),
            brand=_cell_text(brand_raw),
            category=_cell_text(category_raw),
            unit=_cell_text(unit_raw),
            price=_price(price_raw),
        )
        if rec:
            out.append(rec)
    return out


def _kind(filename: str) -> str:
    name = (filename or "").lower()
    if name.endswith(".json"):
        return "JSON"
    if name.endswith(".csv"):
        return "CSV"
    return "Excel"


def read_import_file(filename: str, data: bytes) -> List[Dict[str, Any]]:
    """Parse an uploaded file into product rows ready for insert."""
    kind = _kind(filename)

    if kind == "JSON":
        try:
            parsed = json.loads(data.decode("utf-8-sig"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ImportFileError("Invalid JSON file") from e
        return rows_to_products(parsed if isinstance(parsed, list) else [])

    try:
        if kind == "CSV":
            df = pd.read_csv(
                BytesIO(data),
                header=None,
                dtype=str,
                keep_default_na=False,
                engine="python",
                on_bad_lines=lambda fields: fields[:5],
            )
        else:
            df = pd.read_excel(BytesIO(data), sheet_name=0, header=None, dtype=object)
    except pd.errors.EmptyDataError:
        return []
    except Exception as e:
        raise ImportFileError(f"Could not read {kind} file: {e}") from e

    df = df.astype(object).where(pd.notna(df), "")
    return matrix_to_products(df.values.tolist())


def import_products(backend, filename: str, data: bytes) -> int:
    rows = read_import_file(filename, data)
    if not rows:
        kind = _kind(filename)
        suffix = "file" if kind == "Excel" else f"{kind} file"
        raise ImportFileError(f"No valid product rows found in {suffix}")
    count = backend.insert_products(rows)
    logger.info("imported %d products from %s", count, filename)
    return count


def load_static_products(path: str = STATIC_PRODUCTS_PATH) -> List[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f) or []
    return [x for x in raw if isinstance(x, dict)]


def import_static_products(backend, products: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Seed the store, skipping products whose (name, brand) already exists."""
    if products is None:
        products = load_static_products()

    try:
        existing = backend.fetch_products()
    except BackendError as e:
        raise BackendError(f"Failed to fetch existing products: {e.message}") from e
    existing_keys = {f"{p.name}|{p.brand}".lower() for p in existing}

    imported = 0
    skipped = 0
    errors: List[str] = []
    for rec in products:
        key = f"{rec.get('name', '')}|{rec.get('brand', '')}".lower()
        if key in existing_keys:
            skipped += 1
            continue
        try:
            backend.create_product(rec)
        except BackendError as e:
            errors.append(f"{rec.get('name', '')}: {e.message}")
            continue
        existing_keys.add(key)
        imported += 1

    logger.info("static import: %d imported, %d skipped, %d errors", imported, skipped, len(errors))
    return {"imported": imported, "skipped": skipped, "errors": errors}


def main():
    ap = argparse.ArgumentParser(description="Import products into the store")
    ap.add_argument("file", nargs="?", help="Excel, CSV or JSON price list")
    ap.add_argument("--seed", action="store_true", help="Import the bundled data/products.json")
    ap.add_argument("--dry-run", action="store_true", help="Parse and print rows without inserting")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))

    if not args.file and not args.seed:
        ap.error("give a FILE or --seed")

    if args.file and args.dry_run:
        with open(args.file, "rb") as f:
            rows = read_import_file(args.file, f.read())
        for row in rows:
            print(json.dumps(row, ensure_ascii=False))
        print(f"Rows: {len(rows)}")
        return

    backend = create_backend(os.getenv("SUPABASE_URL", ""), os.getenv("SUPABASE_KEY", ""))

    try:
        if args.seed:
            result = import_static_products(backend)
            print(f"Imported: {result['imported']}  Skipped: {result['skipped']}")
            for err in result["errors"]:
                print(f"  ERROR: {err}")
        if args.file:
            with open(args.file, "rb") as f:
                count = import_products(backend, os.path.basename(args.file), f.read())
            print(f"Imported: {count}")
    except (BackendError, ImportFileError) as e:
        raise SystemExit(f"Import failed: {e}")


if __name__ == "__main__":
    main()
