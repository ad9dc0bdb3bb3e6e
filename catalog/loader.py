"""
catalog/loader.py
-----------------
Loads the seed product catalog (JSON) used to populate an empty store,
and checks that every entry carries the fields the store expects.
"""

import json
from pathlib import Path

from catalog.store import PRODUCT_FIELDS

REQUIRED_FIELDS = ["unit_number", "name", "price"]

DEFAULT_PRODUCTS = [
    ("2316", "Anduze de Lys Pot Medium", "Medium size pot with lys design", 150.00, "Pottery Planet", "Planter", '27"H x 24"W x 13" Dia Base'),
    ("2315", "Anduze de Lys Pot Large", "Large size pot with lys design", 250.00, "Pottery Planet", "Planter", '33"H x 29"W x 17" Dia Base'),
    ("2317", "Anduze de Lys Pot Small", "Small size pot with lys design", 95.00, "Pottery Planet", "Planter", "Small"),
    ("2094", "Estate Urn", "Classic estate urn", 120.00, "Pottery Planet", "Urn", '26"H x 26"W x 13" sq base'),
    ("2095", "Venetian Urn", "Venetian style urn", 180.00, "Pottery Planet", "Urn", '28"H x 23"W x 13" sq base'),
    ("2092", "Rolled Rim Square Pot", "Square pot with rolled rim", 110.00, "Pottery Planet", "Planter", '24"H x 24"W'),
    ("871", "Garden Ball", "Decorative garden ball", 45.00, "Pottery Planet", "Ornament", '10" diam'),
    ("2093", "Commercial Tree Planter", "Large commercial planter", 350.00, "Pottery Planet", "Planter", '31"H x 38"W'),
    ("2450", "Venetian Lion Wall Plaque", "Lion head wall plaque", 85.00, "Campia", "Wall Ornament", '8"x15"x17"'),
    ("2467", "Rams Head Wall Plaque", "Rams head wall plaque", 75.00, "Campia", "Wall Ornament", '3"x8"x9"'),
    ("2019", "Deruta Lemon Planter", "Lemon design planter", 160.00, "Campia", "Planter", '12"b x 16"w'),
    ("2020", "Deruta Lemon Planter Box", "Lemon design planter box", 220.00, "Campia", "Planter", '18"b x 41"l x 15"w'),
]


def default_catalog():
    """The demo garden-ornament catalog, with placeholder photos."""
    keys = PRODUCT_FIELDS[:-1]
    return [
        {**dict(zip(keys, row)), "image_url": f"https://picsum.photos/seed/{row[0]}/400/400"}
        for row in DEFAULT_PRODUCTS
    ]


def validate_catalog(items):
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise TypeError(f"Catalog item {idx} must be an object")
        for field in REQUIRED_FIELDS:
            if field not in item:
                raise ValueError(f"Missing field '{field}' in item {idx}")
        unknown = set(item) - set(PRODUCT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown fields {sorted(unknown)} in item {idx}")
    return items


def load_catalog(path=None):
    """Return the seed catalog as a list of dicts (JSON file if given, else defaults)."""
    if path is None:
        return default_catalog()
    with open(Path(path), "r", encoding="utf-8") as f:
        return validate_catalog(json.load(f))
