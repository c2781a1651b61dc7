"""
Database helpers for the tourism marketplace.

A single MongoClient is shared by the whole app. It connects lazily, so
importing this module never touches the network. Collections are named after
the lowercase schema class (Product -> "product").
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pymongo import ASCENDING, DESCENDING, MongoClient

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "tourism_marketplace")

client = MongoClient(DATABASE_URL)
db = client[DATABASE_NAME]


def create_document(collection_name: str, data: Dict[str, Any]) -> str:
    """Insert a document with timestamps and return its id as a string."""
    now = datetime.now(timezone.utc)
    doc = {**data, "created_at": now, "updated_at": now}
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    return list(db[collection_name].find(filter_dict or {}))


def ensure_indexes(database=None) -> None:
    """Create the unique and lookup indexes the API relies on."""
    database = database if database is not None else db
    for name in ("tourist", "seller", "tourguide", "admin"):
        database[name].create_index([("email", ASCENDING)], unique=True)
        database[name].create_index([("username", ASCENDING)], unique=True)
    database["promocode"].create_index([("code", ASCENDING)], unique=True)
    database["product"].create_index([("rating", DESCENDING)])
    database["product"].create_index([("seller", ASCENDING)])
    database["purchase"].create_index([("tourist", ASCENDING)])
    database["purchase"].create_index([("product", ASCENDING)])
    database["itinerary"].create_index([("tour_guide", ASCENDING)])
    database["touristitinerary"].create_index([("tourist", ASCENDING)])
    database["itinerarybooking"].create_index([("itinerary", ASCENDING)])
    database["itinerarybooking"].create_index([("tourist", ASCENDING)])
    database["itinerary"].create_index([("price", ASCENDING)])
