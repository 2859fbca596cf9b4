# Overview: Tenant-scoped lookups of products and customers used by the stock engine.

from __future__ import annotations

from ..extensions import db
from ..models import Product, Customer


def find_product(company_id: int, product_id: int) -> Product | None:
    return Product.query.filter_by(id=product_id, company_id=company_id).first()


def find_products(company_id: int, product_ids) -> dict[int, Product]:
    product_ids = list(set(product_ids))
    if not product_ids:
        return {}
    rows = db.session.query(Product).filter(
        Product.company_id == company_id,
        Product.id.in_(product_ids),
    ).all()
    return {p.id: p for p in rows}


def find_customers(company_id: int, customer_ids) -> list[dict]:
    """
    Resolve customer references for a company.

    Returns one {"id", "valid"} entry per requested id, in request order.
    A customer from another company is reported invalid exactly like a
    missing one, so the response never reveals other tenants' ids.
    """
    customer_ids = list(dict.fromkeys(customer_ids))
    if not customer_ids:
        return []
    found = {
        cid for (cid,) in db.session.query(Customer.id).filter(
            Customer.company_id == company_id,
            Customer.id.in_(customer_ids),
        ).all()
    }
    return [{"id": cid, "valid": cid in found} for cid in customer_ids]


def invalid_customer_ids(company_id: int, customer_ids) -> list[int]:
    return [c["id"] for c in find_customers(company_id, customer_ids) if not c["valid"]]
