"""
Product mutations: rating aggregation, ownership checks and per-product locking.

Every edit of a product reads the current document, merges the change,
recomputes the rating and writes everything back with one update_one call.
The read-modify-write runs under a lock keyed by the product id, so two edits
of the same product never interleave.
"""

import logging
import threading
import weakref
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from bson import ObjectId

from errors import AuthorizationError, NotFoundError

logger = logging.getLogger(__name__)

_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


def average_rating(reviews: Iterable[Mapping[str, Any]]) -> float:
    """Mean of the review ratings, or 0.0 for a product with no reviews."""
    ratings = [float(r["rating"]) for r in reviews]
    if not ratings:
        return 0.0
    return sum(ratings) / len(ratings)


def product_lock(product_id: str) -> threading.Lock:
    """Return the lock for a product, creating it on first use.

    Callers must hold a reference to the returned lock while using it; the
    registry only keeps locks alive for as long as someone holds them.
    """
    with _locks_guard:
        lock = _locks.get(product_id)
        if lock is None:
            lock = threading.Lock()
            _locks[product_id] = lock
        return lock


def require_owner(document: Optional[Dict[str, Any]], caller_id: str, field: str, resource: str = "Product") -> Dict[str, Any]:
    """Check a document exists and belongs to the caller.

    Existence is checked first so a missing document is reported as not found
    rather than as a permissions problem.
    """
    if document is None:
        raise NotFoundError(resource)
    if str(document.get(field)) != str(caller_id):
        logger.warning("Caller %s denied access to %s %s", caller_id, resource.lower(), document.get("_id"))
        raise AuthorizationError(f"You are not authorized to access this {resource.lower()}")
    return document


def _load(products, product_id: ObjectId, owner_id: Optional[str]) -> Dict[str, Any]:
    current = products.find_one({"_id": product_id})
    if owner_id is not None:
        return require_owner(current, owner_id, "seller")
    if current is None:
        raise NotFoundError("Product")
    return current


def update_product(products, product_id: ObjectId, changes: Dict[str, Any], owner_id: Optional[str] = None) -> Dict[str, Any]:
    """Apply field changes to a product and refresh its rating in one write.

    When owner_id is given the caller must be the product's seller.
    """
    with product_lock(str(product_id)):
        current = _load(products, product_id, owner_id)
        updates = dict(changes)
        updates["rating"] = average_rating(updates.get("reviews", current.get("reviews", [])))
        updates["updated_at"] = datetime.now(timezone.utc)
        products.update_one({"_id": product_id}, {"$set": updates})
        return {**current, **updates}


def add_review(products, product_id: ObjectId, review: Dict[str, Any]) -> Dict[str, Any]:
    """Append a review and refresh the rating in one write."""
    with product_lock(str(product_id)):
        current = _load(products, product_id, None)
        reviews = list(current.get("reviews", [])) + [review]
        updates = {
            "reviews": reviews,
            "rating": average_rating(reviews),
            "updated_at": datetime.now(timezone.utc),
        }
        products.update_one({"_id": product_id}, {"$set": updates})
        return {**current, **updates}


def delete_product(products, product_id: ObjectId, owner_id: Optional[str] = None) -> None:
    with product_lock(str(product_id)):
        _load(products, product_id, owner_id)
        products.delete_one({"_id": product_id})
