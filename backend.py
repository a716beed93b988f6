from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from supabase import Client, create_client

logger = logging.getLogger(__name__)

PRODUCT_COLUMNS = ("name", "brand", "category", "price", "unit", "image", "description")


class BackendError(Exception):
    """A request to the hosted backend failed; ``message`` is shown to the user."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# -------------------------
# Model
# -------------------------
@dataclass(frozen=True)
class Product:
    id: str
    name: str
    brand: str
    category: str
    price: float
    unit: str
    image: Optional[str] = None
    description: Optional[str] = None
    mrp: Optional[float] = None
    images: Tuple[str, ...] = field(default_factory=tuple)

    def has_discount(self) -> bool:
        return self.mrp is not None and self.mrp > self.price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "brand": self.brand,
            "category": self.category,
            "price": self.price,
            "unit": self.unit,
            "image": self.image,
            "description": self.description,
            "mrp": self.mrp,
            "images": list(self.images),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Product":
        mrp = row.get("mrp")
        images = row.get("images") or ()
        if isinstance(images, str):
            images = (images,)
        return cls(
            id=str(row["id"]),
            name=str(row.get("name") or ""),
            brand=str(row.get("brand") or ""),
            category=str(row.get("category") or ""),
            price=float(row.get("price") or 0),
            unit=str(row.get("unit") or ""),
            image=row.get("image") or None,
            description=row.get("description") or None,
            mrp=float(mrp) if mrp not in (None, "") else None,
            images=tuple(str(x) for x in images if x),
        )


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    sort_order: int = 0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Category":
        return cls(
            id=str(row["id"]),
            name=str(row.get("name") or ""),
            sort_order=int(row.get("sort_order") or 0),
        )


@dataclass(frozen=True)
class User:
    id: str
    email: str


def product_payload(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Columns written on insert/update. Blank image/description become null."""
    payload = {key: fields.get(key) for key in PRODUCT_COLUMNS}
    payload["price"] = float(payload["price"] or 0)
    for key in ("image", "description"):
        value = payload.get(key)
        payload[key] = value.strip() if isinstance(value, str) and value.strip() else None
    return payload


def _error_message(exc: Exception) -> str:
    msg = getattr(exc, "message", None) or str(exc)
    return str(msg) or exc.__class__.__name__


# -------------------------
# Supabase gateway
# -------------------------
class SupabaseBackend:
    """Products, categories, auth and roles on a Supabase project.

    ``access_token`` is the signed-in user's JWT; when set, table requests
    run as that user so row level security applies to admin writes.
    """

    def __init__(self, url: str, key: str, access_token: Optional[str] = None):
        if not url or not key:
            raise BackendError("Supabase is not configured (SUPABASE_URL / SUPABASE_KEY).")
        self.url = url
        self.key = key
        self.access_token = access_token
        self._client: Optional[Client] = None

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = create_client(self.url, self.key)
            if self.access_token:
                self._client.postgrest.auth(self.access_token)
        return self._client

    def for_token(self, access_token: Optional[str]) -> "SupabaseBackend":
        if access_token == self.access_token:
            return self
        return SupabaseBackend(self.url, self.key, access_token=access_token)

    def _execute(self, what: str, query) -> List[Dict[str, Any]]:
        try:
            res = query.execute()
        except Exception as e:
            logger.warning("supabase %s failed: %s", what, e)
            raise BackendError(_error_message(e)) from e
        return list(getattr(res, "data", None) or [])

    # ---------- products ----------
    def fetch_products(self) -> List[Product]:
        rows = self._execute("fetch products", self.client.table("products").select("*").order("name"))
        return [Product.from_row(r) for r in rows]

    def create_product(self, fields: Dict[str, Any]) -> Product:
        rows = self._execute("create product", self.client.table("products").insert(product_payload(fields)))
        if not rows:
            raise BackendError("Product was not saved")
        return Product.from_row(rows[0])

    def update_product(self, product_id: str, fields: Dict[str, Any]) -> Product:
        query = self.client.table("products").update(product_payload(fields)).eq("id", product_id)
        rows = self._execute("update product", query)
        if not rows:
            raise BackendError("Product not found")
        return Product.from_row(rows[0])

    def delete_product(self, product_id: str) -> None:
        self._execute("delete product", self.client.table("products").delete().eq("id", product_id))

    def insert_products(self, rows: Iterable[Dict[str, Any]]) -> int:
        payload = [product_payload(r) for r in rows]
        if not payload:
            return 0
        self._execute("insert products", self.client.table("products").insert(payload))
        return len(payload)

    # ---------- categories ----------
    def fetch_categories(self) -> List[Category]:
        rows = self._execute("fetch categories", self.client.table("categories").select("*").order("sort_order"))
        return [Category.from_row(r) for r in rows]

    def create_category(self, name: str) -> Category:
        query = self.client.table("categories").insert({"name": name, "sort_order": 999})
        rows = self._execute("create category", query)
        if not rows:
            raise BackendError("Category was not saved")
        return Category.from_row(rows[0])

    def update_category(self, category_id: str, name: str) -> None:
        self._execute("update category", self.client.table("categories").update({"name": name}).eq("id", category_id))

    def delete_category(self, category_id: str) -> None:
        self._execute("delete category", self.client.table("categories").delete().eq("id", category_id))

    # ---------- auth ----------
    def sign_in(self, email: str, password: str) -> Tuple[User, str]:
        """Password sign-in. Returns the user and its access token."""
        # A separate client keeps the auth session off the shared one.
        client = create_client(self.url, self.key)
        try:
            res = client.auth.sign_in_with_password({"email": email, "password": password})
        except Exception as e:
            logger.info("sign-in failed for %s: %s", email, e)
            raise BackendError(_error_message(e)) from e
        if not res.user or not res.session:
            raise BackendError("Invalid login credentials")
        return User(id=str(res.user.id), email=res.user.email or email), res.session.access_token

    def sign_out(self) -> None:
        if not self.access_token:
            return
        try:
            self.client.auth.admin.sign_out(self.access_token)
        except Exception as e:
            # The local session is dropped regardless.
            logger.info("remote sign-out failed: %s", e)

    def is_admin(self, user_id: str) -> bool:
        query = (
            self.client.table("user_roles")
            .select("role")
            .eq("user_id", user_id)
            .eq("role", "admin")
            .limit(1)
        )
        return bool(self._execute("check role", query))


def create_backend(url: str, key: str) -> SupabaseBackend:
    return SupabaseBackend(url, key)
