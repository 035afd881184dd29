import logging
from typing import List

from sqlalchemy.orm import Session, joinedload

from . import models, schemas
from .database import Database

logger = logging.getLogger(__name__)

STARTER_CATEGORIES = [
    ("Hamburguesas", 1),
    ("Tortas", 2),
    ("Papas", 3),
    ("Alitas", 4),
    ("Snacks", 5),
]

# (name, category, description, price_cents, station, sort_order)
STARTER_PRODUCTS = [
    ("Hamburguesa clásica", "Hamburguesas", "Res, lechuga, tomate, queso", 9900, "PLANCHA", 1),
    ("Hamburguesa doble", "Hamburguesas", "Doble carne, queso", 12900, "PLANCHA", 2),
    ("Torta de res", "Tortas", "Res guisada, frijoles, queso", 10500, "PLANCHA", 1),
    ("Papas", "Papas", "Papas fritas clásicas", 4500, "FREIDORA", 1),
    ("Alitas", "Alitas", "Alitas crujientes", 8900, "FREIDORA", 1),
    ("Dedos de queso", "Snacks", "Deditos empanizados", 6200, "FREIDORA", 2),
    ("Aros", "Snacks", "Aros de cebolla", 5900, "FREIDORA", 3),
]


def seed_catalog(db: Database) -> int:
    """Insert the starter menu into an empty catalog, returns the number of products added"""
    with db.session() as session:
        if session.query(models.Product).count():
            return 0
        categories = {}
        for name, sort_order in STARTER_CATEGORIES:
            category = session.query(models.Category).filter(models.Category.name == name).first()
            if category is None:
                category = models.Category(name=name, sort_order=sort_order)
                session.add(category)
            categories[name] = category
        for name, category, description, price_cents, station, sort_order in STARTER_PRODUCTS:
            session.add(
                models.Product(
                    name=name,
                    category=categories[category],
                    description=description,
                    price_cents=price_cents,
                    station=station,
                    is_available=True,
                    sort_order=sort_order,
                )
            )
    logger.info(f"Seeded catalog with {len(STARTER_PRODUCTS)} products")
    return len(STARTER_PRODUCTS)


def list_products(session: Session) -> List[schemas.ProductRead]:
    products = (
        session.query(models.Product)
        .options(joinedload(models.Product.category))
        .order_by(models.Product.id)
        .all()
    )
    return [schemas.ProductRead.model_validate(product) for product in products]
