"""
Product catalog, search and reviews.

The catalog is small enough to be fetched whole; collection tags and search
terms are matched here rather than in the store.
"""
import logging
from typing import List, Optional

from pymongo.errors import PyMongoError

from database import create_document, find_newest_first, get_documents, serialize, to_object_id
from errors import PersistenceError, ProductNotFoundError, ValidationFailed
from schemas import AccountContext, Product, Review

logger = logging.getLogger(__name__)

PRODUCTS = "products"
REVIEWS = "reviews"


def _product(doc: dict) -> Product:
    return Product(**serialize(doc))


def _in_collection(product: Product, collection_type: str) -> bool:
    # tags are a list now, older products carry a single string
    return collection_type in product.collection_types or product.collection_type == collection_type


def list_products(db, collection_type: Optional[str] = None) -> List[Product]:
    try:
        products = [_product(doc) for doc in get_documents(db, PRODUCTS)]
    except PyMongoError as e:
        logger.error(f"Failed to fetch products: {e}")
        raise PersistenceError()
    if collection_type:
        products = [p for p in products if _in_collection(p, collection_type)]
    return products


def search_products(db, query: str) -> List[Product]:
    terms = [term for term in query.lower().split() if term]

    def matches(product: Product) -> bool:
        fields = [
            (product.name or "").lower(),
            (product.category or "").lower(),
            (product.description or "").lower(),
        ]
        # "black shirt" matches "Black Cotton Shirt"
        return all(any(term in field for field in fields) for term in terms)

    return [p for p in list_products(db) if matches(p)]


def get_product(db, product_id: str) -> Product:
    oid = to_object_id(product_id)
    if oid is None:
        raise ProductNotFoundError()
    try:
        doc = db[PRODUCTS].find_one({"_id": oid})
    except PyMongoError as e:
        logger.error(f"Error fetching product {product_id}: {e}")
        raise PersistenceError()
    if not doc:
        raise ProductNotFoundError()
    return _product(doc)


def list_reviews(db, product_id: str) -> List[dict]:
    try:
        docs = find_newest_first(db[REVIEWS], {"product_id": product_id})
    except PyMongoError as e:
        logger.error(f"Error fetching reviews for {product_id}: {e}")
        raise PersistenceError()
    return [serialize(doc) for doc in docs]


def add_review(db, product_id: str, account: AccountContext, rating: int, comment: str) -> str:
    get_product(db, product_id)
    if not comment.strip():
        raise ValidationFailed("Please write a review before submitting.", {"comment": "Required"})

    review = Review(
        product_id=product_id,
        user_id=account.uid,
        user_name=account.display_name or "Anonymous",
        rating=rating,
        comment=comment.strip(),
    )
    try:
        return create_document(db, REVIEWS, review)
    except PyMongoError as e:
        logger.error(f"Error submitting review for {product_id}: {e}")
        raise PersistenceError()
