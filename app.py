from __future__ import annotations

import logging
import math
import os
from functools import wraps
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from flask import (
    Flask,
    abort,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    send_file,
    send_from_directory,
    session,
    url_for,
)
from werkzeug.utils import secure_filename

from backend import BackendError, Category, Product, create_backend
from cart import Cart
from catalog import (
    ALL_CATEGORIES,
    catalog_stats,
    category_choices,
    filter_products,
    find_product,
    format_price,
    product_images,
    products_in_category,
    resolve_category,
    scan_listing_images,
    slugify,
)
from checkout import build_order_message, default_customer_name, whatsapp_url
from importer import ImportFileError, import_products, import_static_products

logger = logging.getLogger(__name__)

BASE_DIR = os.path.abspath(os.path.dirname(__file__))
PLACEHOLDER_THUMB = "img/placeholder.svg"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def safe_redirect_target(target: Optional[str]) -> Optional[str]:
    """Only local absolute paths are accepted as post-login redirects."""
    target = (target or "").strip()
    if target.startswith("/") and not target.startswith("//") and "\\" not in target:
        return target
    return None


# -------------------------
# App factory
# -------------------------
def create_app(config: Optional[Dict[str, Any]] = None, backend=None) -> Flask:
    load_dotenv(os.path.join(BASE_DIR, ".env"))

    app = Flask(__name__)
    app.secret_key = os.getenv("SECRET_KEY", "dev-secret-change-me")
    app.config.update(
        SUPABASE_URL=os.getenv("SUPABASE_URL", ""),
        SUPABASE_KEY=os.getenv("SUPABASE_KEY", ""),
        WHATSAPP_NUMBER=os.getenv("WHATSAPP_NUMBER", "919929873530"),
        STORE_NAME=os.getenv("STORE_NAME", "Karnani HoReCa"),
        DELIVERY_LOCATION=os.getenv("DELIVERY_LOCATION", "Jaipur"),
        LISTING_DIR=os.getenv("LISTING_DIR", os.path.join(app.static_folder, "listing")),
        MAX_CONTENT_LENGTH=int(os.getenv("MAX_IMPORT_BYTES", str(5 * 1024 * 1024))),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )
    if config:
        app.config.update(config)
        if "SECRET_KEY" in config:
            app.secret_key = config["SECRET_KEY"]

    configure_logging(app.config["LOG_LEVEL"])

    app.add_template_filter(format_price, name="price")
    app.add_template_filter(slugify, name="slug")

    # -------------------------
    # Backend
    # -------------------------
    def base_backend():
        if "backend" not in app.extensions:
            app.extensions["backend"] = backend or create_backend(
                app.config["SUPABASE_URL"], app.config["SUPABASE_KEY"]
            )
        return app.extensions["backend"]

    def get_backend():
        return base_backend().for_token(session.get("access_token"))

    def load_catalog() -> tuple[List[Product], List[Category]]:
        """Products and categories, or empty lists with an error toast."""
        try:
            be = get_backend()
            return be.fetch_products(), be.fetch_categories()
        except BackendError as e:
            flash(e.message, "error")
            return [], []

    # -------------------------
    # Images
    # -------------------------
    def image_urls(p: Product) -> List[str]:
        image_map = scan_listing_images(app.config["LISTING_DIR"])
        urls = []
        for src in product_images(p, image_map):
            if src.startswith(("http://", "https://", "/")):
                urls.append(src)
            else:
                urls.append(url_for("listing_image", filename=src))
        return urls

    app.add_template_global(image_urls, name="product_images")

    # -------------------------
    # Cart
    # -------------------------
    def get_cart() -> Cart:
        return Cart.from_session(session.get("cart"))

    def save_cart(cart: Cart) -> Dict[str, Any]:
        session["cart"] = cart.to_session()
        return cart.summary()

    def cart_json(cart: Cart):
        summ = save_cart(cart)
        return jsonify({"ok": True, "count": summ["count"], "total": summ["total"]})

    # -------------------------
    # Auth gate
    # -------------------------
    def current_user() -> Optional[Dict[str, str]]:
        user = session.get("user")
        return user if isinstance(user, dict) and user.get("id") else None

    def login_required(return_to: str):
        """Anonymous users are sent to the login page, then back to ``return_to``."""

        def decorator(view):
            @wraps(view)
            def wrapped(*args, **kwargs):
                if not current_user():
                    return redirect(url_for("login", redirect=url_for(return_to)))
                return view(*args, **kwargs)

            return wrapped

        return decorator

    def admin_required(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not current_user() or not session.get("is_admin"):
                return redirect(url_for("login", redirect=request.path))
            return view(*args, **kwargs)

        return wrapped

    # -------------------------
    # Cache headers
    # -------------------------
    @app.after_request
    def add_no_cache_headers(resp):
        if resp.mimetype in ("text/html", "application/json"):
            resp.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
        return resp

    # -------------------------
    # Globals for templates
    # -------------------------
    @app.context_processor
    def inject_globals():
        summ = get_cart().summary()
        return dict(
            cart_count=summ["count"],
            cart_total=format_price(summ["total"]),
            store_name=app.config["STORE_NAME"],
            current_user=current_user(),
            is_admin=bool(session.get("is_admin")),
        )

    # -------------------------
    # Listing images
    # -------------------------
    @app.get("/listing/<path:filename>")
    def listing_image(filename: str):
        listing_dir = app.config["LISTING_DIR"]
        if os.path.isfile(os.path.join(listing_dir, filename)):
            return send_from_directory(listing_dir, filename)
        return send_file(
            os.path.join(app.static_folder, PLACEHOLDER_THUMB),
            mimetype="image/svg+xml",
        )

    # -------------------------
    # Catalog
    # -------------------------
    @app.get("/")
    def shop():
        products, categories = load_catalog()

        q = (request.args.get("q") or "").strip()
        category = resolve_category(request.args.get("category") or "", categories)

        filtered = filter_products(products, q, category)
        cart = get_cart()
        return render_template(
            "index.html",
            title="Products",
            products=filtered,
            q=q,
            categories=category_choices(categories),
            active_category=category or ALL_CATEGORIES,
            quantities={i.product.id: i.quantity for i in cart},
        )

    @app.get("/product/<pid>")
    def product(pid: str):
        products, _ = load_catalog()
        p = find_product(products, pid)
        if not p:
            return redirect(url_for("shop"))
        return render_template(
            "product.html",
            title=p.name,
            p=p,
            quantity=get_cart().quantity_of(p.id),
        )

    # -------------------------
    # Cart page + checkout
    # -------------------------
    @app.get("/cart")
    def cart_page():
        cart = get_cart()
        user = current_user()
        return render_template(
            "cart.html",
            title="Your Cart",
            lines=list(cart),
            total=cart.total_price(),
            customer_name=default_customer_name(user["email"]) if user else "",
            whatsapp_number=app.config["WHATSAPP_NUMBER"],
            delivery=app.config["DELIVERY_LOCATION"],
        )

    @app.post("/cart/<action>")
    def cart_form(action: str):
        """Form fallback for the JSON cart API."""
        cart = get_cart()
        pid = (request.form.get("id") or "").strip()

        if action == "add":
            products, _ = load_catalog()
            p = find_product(products, pid)
            if not p:
                flash("Unknown product", "error")
            else:
                cart.add(p)
        elif action == "update":
            try:
                cart.update_quantity(pid, int(request.form.get("qty", "")))
            except ValueError:
                flash("Invalid quantity", "error")
        elif action == "remove":
            cart.remove(pid)
        elif action == "clear":
            cart.clear()
        else:
            abort(404)

        save_cart(cart)
        return redirect(safe_redirect_target(request.form.get("next")) or url_for("cart_page"))

    @app.post("/checkout")
    @login_required("cart_page")
    def checkout():
        cart = get_cart()
        if not len(cart):
            flash("Your cart is empty", "error")
            return redirect(url_for("cart_page"))

        customer_name = (request.form.get("customer_name") or "").strip()
        if not customer_name:
            flash("Please enter your name", "error")
            return redirect(url_for("cart_page"))

        message = build_order_message(
            cart,
            customer_name=customer_name,
            store_name=app.config["STORE_NAME"],
            delivery=app.config["DELIVERY_LOCATION"],
        )
        url = whatsapp_url(app.config["WHATSAPP_NUMBER"], message)
        logger.info(
            "checkout by %s: %d item(s), total %s",
            current_user()["email"], cart.total_items(), format_price(cart.total_price()),
        )

        cart.clear()
        save_cart(cart)
        return redirect(url)

    # -------------------------
    # Auth
    # -------------------------
    @app.route("/login", methods=["GET", "POST"])
    def login():
        target = safe_redirect_target(request.values.get("redirect"))

        if request.method == "POST":
            email = (request.form.get("email") or "").strip()
            password = request.form.get("password") or ""
            if not email or not password:
                flash("Enter your e-mail and password", "error")
                return render_template("login.html", title="Sign in", redirect_to=target, email=email)

            try:
                be = base_backend()
                user, token = be.sign_in(email, password)
                is_admin = be.for_token(token).is_admin(user.id)
            except BackendError as e:
                flash(e.message, "error")
                return render_template("login.html", title="Sign in", redirect_to=target, email=email)

            session["user"] = {"id": user.id, "email": user.email}
            session["access_token"] = token
            session["is_admin"] = is_admin
            logger.info("signed in %s (admin=%s)", user.email, is_admin)

            if target:
                return redirect(target)
            return redirect(url_for("admin") if is_admin else url_for("shop"))

        if current_user() and session.get("is_admin") and not target:
            return redirect(url_for("admin"))
        return render_template("login.html", title="Sign in", redirect_to=target, email="")

    @app.post("/logout")
    def logout():
        if session.get("access_token"):
            try:
                get_backend().sign_out()
            except BackendError as e:
                logger.info("sign-out skipped: %s", e.message)
        for key in ("user", "access_token", "is_admin"):
            session.pop(key, None)
        return redirect(url_for("shop"))

    # -------------------------
    # Admin
    # -------------------------
    @app.route("/admin", methods=["GET", "POST"])
    @admin_required
    def admin():
        if request.method == "POST":
            return admin_action()

        products, categories = load_catalog()
        editing = find_product(products, request.args.get("edit") or "")
        editing_category = next(
            (c for c in categories if c.id == (request.args.get("edit_category") or "")), None
        )
        return render_template(
            "admin.html",
            title="Admin",
            products=products,
            categories=sorted(categories, key=lambda c: c.sort_order),
            stats=catalog_stats(products, categories),
            editing=editing,
            editing_category=editing_category,
        )

    def admin_action():
        action = (request.form.get("action") or "").strip()
        wants_json = (request.form.get("ajax") == "1") or (
            (request.headers.get("X-Requested-With") or "").lower() == "xmlhttprequest"
        )

        def _ok(message: str, **extra):
            if wants_json:
                return jsonify({"ok": True, "message": message, **extra})
            flash(message, "success")
            return redirect(url_for("admin"))

        def _fail(message: str, status: int = 400, **extra):
            if wants_json:
                payload = {"ok": False, "error": message}
                payload.update(extra)
                return jsonify(payload), status
            flash(message, "error")
            return redirect(url_for("admin"))

        try:
            be = get_backend()
            # ---------- Product: add / edit ----------
            if action == "save_product":
                form = {
                    key: (request.form.get(key) or "").strip()
                    for key in ("name", "brand", "category", "price", "unit", "image", "description")
                }
                if not all(form[key] for key in ("name", "brand", "category", "price", "unit")):
                    return _fail("Please fill all required fields")
                try:
                    price = float(form["price"])
                except ValueError:
                    return _fail("Invalid price")
                if not math.isfinite(price) or price < 0:
                    return _fail("Invalid price")
                form["price"] = price

                pid = (request.form.get("id") or "").strip()
                if pid:
                    p = be.update_product(pid, form)
                    return _ok("Product updated", id=p.id)
                p = be.create_product(form)
                return _ok("Product added", id=p.id)

            # ---------- Product: delete ----------
            if action == "delete_product":
                pid = (request.form.get("id") or "").strip()
                if not pid:
                    return _fail("Missing product id")
                be.delete_product(pid)
                return _ok("Product deleted")

            # ---------- Category: add / rename ----------
            if action == "save_category":
                name = (request.form.get("name") or "").strip()
                if not name:
                    return _fail("Category name is required")
                cid = (request.form.get("id") or "").strip()
                if cid:
                    be.update_category(cid, name)
                    return _ok("Category updated")
                c = be.create_category(name)
                return _ok("Category added", id=c.id)

            # ---------- Category: delete ----------
            if action == "delete_category":
                cid = (request.form.get("id") or "").strip()
                cat = next((c for c in be.fetch_categories() if c.id == cid), None)
                if not cat:
                    return _fail("Category not found", 404)
                used = products_in_category(be.fetch_products(), cat.name)
                if used > 0:
                    return _fail(
                        f"Cannot delete: {used} product(s) use this category. Change their category first."
                    )
                be.delete_category(cid)
                return _ok("Category deleted")

            # ---------- Import ----------
            if action == "import_file":
                f = request.files.get("file")
                if not f or not f.filename:
                    return _fail("Choose a file to import")
                count = import_products(be, secure_filename(f.filename) or f.filename, f.read())
                return _ok(f"Imported {count} products", imported=count)

            if action == "import_static":
                result = import_static_products(be)
                if result["errors"] and not wants_json:
                    for err in result["errors"]:
                        flash(err, "error")
                return _ok(
                    f"Imported {result['imported']} products, skipped {result['skipped']}",
                    **result,
                )
        except ImportFileError as e:
            return _fail(str(e))
        except BackendError as e:
            logger.warning("admin action %s failed: %s", action, e.message)
            return _fail(e.message, 502)

        return _fail("Unknown action")

    # -------------------------
    # Cart API
    # -------------------------
    @app.post("/api/cart/add")
    def api_cart_add():
        payload = request.get_json(silent=True) or {}
        pid = str(payload.get("id") or "").strip()
        if not pid:
            return jsonify({"ok": False, "error": "Invalid payload"}), 400

        try:
            products = get_backend().fetch_products()
        except BackendError as e:
            return jsonify({"ok": False, "error": e.message}), 502
        p = find_product(products, pid)
        if not p:
            return jsonify({"ok": False, "error": "Unknown product"}), 404

        cart = get_cart()
        cart.add(p)
        return cart_json(cart)

    @app.post("/api/cart/update")
    def api_cart_update():
        payload = request.get_json(silent=True) or {}
        pid = str(payload.get("id") or "").strip()
        if not pid:
            return jsonify({"ok": False, "error": "Invalid payload"}), 400
        raw_qty = payload.get("qty")
        if isinstance(raw_qty, bool):
            return jsonify({"ok": False, "error": "Invalid payload"}), 400
        try:
            qty = int(raw_qty)
        except (TypeError, ValueError):
            return jsonify({"ok": False, "error": "Invalid payload"}), 400
        # whole numbers only; 1.7 must not become 1
        if isinstance(raw_qty, float) and raw_qty != qty:
            return jsonify({"ok": False, "error": "Invalid payload"}), 400

        cart = get_cart()
        cart.update_quantity(pid, qty)
        return cart_json(cart)

    @app.post("/api/cart/remove")
    def api_cart_remove():
        payload = request.get_json(silent=True) or {}
        pid = str(payload.get("id") or "").strip()
        if not pid:
            return jsonify({"ok": False, "error": "Invalid payload"}), 400
        cart = get_cart()
        cart.remove(pid)
        return cart_json(cart)

    @app.post("/api/cart/clear")
    def api_cart_clear():
        cart = get_cart()
        cart.clear()
        return cart_json(cart)

    return app


app = create_app()

if __name__ == "__main__":
    app.run(debug=os.getenv("FLASK_DEBUG") == "1", port=int(os.getenv("PORT", "5000")))
