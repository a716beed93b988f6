from backend import Category, Product
from catalog import (
    catalog_stats,
    category_choices,
    filter_products,
    format_price,
    product_images,
    resolve_category,
    scan_listing_images,
    slugify,
)


def _p(pid, name, brand, category, price=100.0, **kw):
    return Product(id=pid, name=name, brand=brand, category=category, price=price, unit="1 Kg", **kw)


PRODUCTS = [
    _p("1", "Classic Mayonnaise", "Veeba", "Mayonnaise", 185),
    _p("2", "Tomato Ketchup", "Veeba", "Ketchup", 120),
    _p("3", "Mozzarella Cheese Block", "Lactilas", "Cheese", 380),
    _p("4", "Cream Cheese", "Lactilas", "Cream", 290),
]


def test_no_filters_returns_everything_in_order():
    assert filter_products(PRODUCTS) == PRODUCTS
    assert filter_products(PRODUCTS, "", "All") == PRODUCTS


def test_query_matches_name_brand_or_category_case_insensitively():
    assert [p.id for p in filter_products(PRODUCTS, "CHEESE")] == ["3", "4"]
    assert [p.id for p in filter_products(PRODUCTS, "veeba")] == ["1", "2"]
    assert [p.id for p in filter_products(PRODUCTS, "ketch")] == ["2"]
    assert filter_products(PRODUCTS, "nothing here") == []


def test_category_filter_is_exact():
    assert [p.id for p in filter_products(PRODUCTS, category="Cheese")] == ["3"]
    assert filter_products(PRODUCTS, category="cheese") == []


def test_category_and_query_combine():
    assert [p.id for p in filter_products(PRODUCTS, "lactilas", "Cream")] == ["4"]


def test_category_choices_follow_sort_order():
    cats = [Category("a", "Sauce", 2), Category("b", "Cheese", 0), Category("c", "Spread", 1)]
    assert category_choices(cats) == ["All", "Cheese", "Spread", "Sauce"]


def test_resolve_category_accepts_name_or_slug():
    cats = [Category("a", "Sauces & Dips", 0)]
    assert resolve_category("sauces-dips", cats) == "Sauces & Dips"
    assert resolve_category("Sauces & Dips", cats) == "Sauces & Dips"
    assert resolve_category("All", cats) == ""
    assert resolve_category("", cats) == ""


def test_catalog_stats():
    cats = [Category("a", "Cheese"), Category("b", "Cream")]
    stats = catalog_stats(PRODUCTS, cats)
    assert stats == {"total_products": 4, "categories": 2, "avg_price": 244, "brands": 2}
    assert catalog_stats([], [])["avg_price"] == 0


def test_format_price():
    assert format_price(185) == "₹185"
    assert format_price(185.5) == "₹185.50"
    assert format_price(12000) == "₹12000"
    assert format_price(None) == "₹0"


def test_slugify():
    assert slugify("Sauces & Dips") == "sauces-dips"
    assert slugify("  ") == "item"


def test_product_images_prefers_explicit_gallery():
    p = _p("1", "Mint Mayo", "Veeba", "Mayonnaise", images=("a.png", "b.png"), image="c.png")
    assert product_images(p, {"mint mayo": ["Mint Mayo.jpg"]}) == ["a.png", "b.png"]


def test_product_images_falls_back_to_single_image():
    p = _p("1", "Mint Mayo", "Veeba", "Mayonnaise", image="https://cdn.example.com/mint.png")
    assert product_images(p, {"mint mayo": ["Mint Mayo.jpg"]}) == ["https://cdn.example.com/mint.png"]


def test_product_images_from_listing_folder(tmp_path):
    for fn in ("Mint Mayo.JPG", "mint mayo.webp", "Other.png", "Mint Mayo.txt"):
        (tmp_path / fn).write_bytes(b"x")

    image_map = scan_listing_images(str(tmp_path))
    p = _p("1", "MINT MAYO", "Veeba", "Mayonnaise")

    assert product_images(p, image_map) == ["Mint Mayo.JPG", "mint mayo.webp"]
    assert product_images(p, image_map, prefix="/listing/")[0] == "/listing/Mint Mayo.JPG"
    assert product_images(_p("2", "Unknown", "X", "Y"), image_map) == []


def test_scan_missing_listing_dir(tmp_path):
    assert scan_listing_images(str(tmp_path / "nope")) == {}
