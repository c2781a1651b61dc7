"""Tests for rating aggregation, the ownership guard and product locking."""

import math
import threading

import mongomock
import pytest

import catalog
from errors import AuthorizationError, NotFoundError


class TestAverageRating:
    def test_mean_of_two(self):
        assert catalog.average_rating([{"rating": 4}, {"rating": 2}]) == 3

    def test_mean_within_tolerance(self):
        reviews = [{"rating": r} for r in (5, 4, 4, 3.5, 1)]
        assert math.isclose(catalog.average_rating(reviews), 17.5 / 5)

    def test_single_review(self):
        assert catalog.average_rating([{"rating": 4.5}]) == 4.5

    def test_empty_reviews_is_zero(self):
        rating = catalog.average_rating([])
        assert rating == 0.0
        assert not math.isnan(rating)


class TestRequireOwner:
    def test_missing_document_is_not_found(self):
        with pytest.raises(NotFoundError):
            catalog.require_owner(None, "abc", "seller")

    def test_foreign_caller_is_rejected(self):
        with pytest.raises(AuthorizationError):
            catalog.require_owner({"_id": 1, "seller": "abc"}, "xyz", "seller")

    def test_owner_passes(self):
        doc = {"_id": 1, "tour_guide": "abc"}
        assert catalog.require_owner(doc, "abc", "tour_guide", "Itinerary") is doc


class TestProductLock:
    def test_same_id_shares_lock(self):
        lock = catalog.product_lock("p1")
        assert catalog.product_lock("p1") is lock

    def test_different_ids_do_not_block(self):
        first = catalog.product_lock("p1")
        second = catalog.product_lock("p2")
        with first:
            assert second.acquire(blocking=False)
            second.release()


@pytest.fixture
def products():
    return mongomock.MongoClient()["catalog_test"]["product"]


def insert(products, **fields):
    doc = {"name": "Tote", "price": 5.0, "seller": "s1", "rating": 0, "reviews": [], "quantity": 1, **fields}
    return products.insert_one(doc).inserted_id


class TestUpdateProduct:
    def test_rating_recomputed_with_fields(self, products):
        pid = insert(products)
        result = catalog.update_product(products, pid, {"reviews": [{"rating": 4}, {"rating": 2}], "price": 7.0})
        stored = products.find_one({"_id": pid})
        assert result["rating"] == 3
        assert stored["rating"] == 3
        assert stored["price"] == 7.0

    def test_clearing_reviews_resets_rating(self, products):
        pid = insert(products, reviews=[{"rating": 5}], rating=5)
        catalog.update_product(products, pid, {"reviews": []})
        assert products.find_one({"_id": pid})["rating"] == 0.0

    def test_foreign_owner_does_not_mutate(self, products):
        pid = insert(products)
        with pytest.raises(AuthorizationError):
            catalog.update_product(products, pid, {"name": "Stolen"}, owner_id="s2")
        assert products.find_one({"_id": pid})["name"] == "Tote"

    def test_missing_product_with_owner(self, products):
        from bson import ObjectId

        with pytest.raises(NotFoundError):
            catalog.update_product(products, ObjectId(), {"name": "x"}, owner_id="s1")

    def test_delete_by_foreign_owner_keeps_product(self, products):
        pid = insert(products)
        with pytest.raises(AuthorizationError):
            catalog.delete_product(products, pid, owner_id="s2")
        assert products.count_documents({"_id": pid}) == 1


class TestAddReview:
    def test_concurrent_reviews_all_counted(self, products):
        pid = insert(products)
        threads = [
            threading.Thread(target=catalog.add_review, args=(products, pid, {"rating": r}))
            for r in (1, 2, 3, 4, 5, 5, 4, 3, 2, 1)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        stored = products.find_one({"_id": pid})
        assert len(stored["reviews"]) == 10
        assert stored["rating"] == 3
