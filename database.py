"""
Database Helper Functions

MongoDB store handle for the Bistro API. A single Store is created at
process start (see main.create_app), shared by every request through the
get_store dependency, and closed at shutdown.
"""

import logging
from pymongo import MongoClient
from bson import ObjectId
from bson.errors import InvalidId
from datetime import datetime, timezone
from typing import Union, Optional, Dict, Any, List, Iterable
from fastapi import Request
from pydantic import BaseModel

from errors import InvalidRequest, StorageError
from schemas import Role
from settings import Settings

logger = logging.getLogger(__name__)

USERS = "users"
MENU = "menu"
REVIEWS = "reviews"
CARTS = "carts"
PAYMENTS = "payments"
RECONCILIATIONS = "reconciliations"


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump(exclude_none=True)
    return dict(data)


def to_object_id(id_str: Union[str, ObjectId]) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise InvalidRequest(f"Invalid id: {id_str}")


def _session_kwargs(session) -> dict:
    # only pass session through when one is active
    return {"session": session} if session is not None else {}


def serialize_doc(doc: Any) -> Any:
    """Convert ObjectIds (including ones nested in lists/dicts) to strings."""
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, dict):
        return {k: serialize_doc(v) for k, v in doc.items()}
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    return doc


class Store:
    def __init__(self, client: MongoClient, database_name: str):
        self.client = client
        self.db = client[database_name]

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["Store"]:
        if not (settings.database_url and settings.database_name):
            logger.warning("DATABASE_URL or DATABASE_NAME not set; store unavailable")
            return None
        return cls(MongoClient(settings.database_url), settings.database_name)

    def close(self) -> None:
        self.client.close()

    def ping(self) -> None:
        self.client.admin.command("ping")

    def ensure_indexes(self) -> None:
        self.db[USERS].create_index("email", unique=True)
        self.db[CARTS].create_index("email")

    def collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    # CRUD helpers

    def create_document(self, collection_name: str, data: Union[BaseModel, dict], session=None) -> str:
        payload = _to_dict(data)
        now = datetime.now(timezone.utc)
        payload['created_at'] = now
        payload['updated_at'] = now
        result = self.db[collection_name].insert_one(payload, **_session_kwargs(session))
        return str(result.inserted_id)

    def get_documents(self, collection_name: str, filter_dict: Optional[dict] = None, sort: Optional[list] = None) -> List[dict]:
        cursor = self.db[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        return [serialize_doc(doc) for doc in cursor]

    def get_document_by_id(self, collection_name: str, _id: str) -> Optional[dict]:
        doc = self.db[collection_name].find_one({"_id": to_object_id(_id)})
        return serialize_doc(doc) if doc else None

    def update_document(self, collection_name: str, _id: str, update_data: Dict[str, Any]) -> bool:
        update = {"$set": _to_dict(update_data)}
        update["$set"]["updated_at"] = datetime.now(timezone.utc)
        result = self.db[collection_name].update_one({"_id": to_object_id(_id)}, update)
        return result.matched_count > 0

    def delete_document(self, collection_name: str, _id: str) -> bool:
        result = self.db[collection_name].delete_one({"_id": to_object_id(_id)})
        return result.deleted_count > 0

    def aggregate(self, collection_name: str, pipeline: List[dict]) -> List[dict]:
        return [serialize_doc(doc) for doc in self.db[collection_name].aggregate(pipeline)]

    def estimated_count(self, collection_name: str) -> int:
        return self.db[collection_name].estimated_document_count()

    # Users

    def list_users(self) -> List[dict]:
        return self.get_documents(USERS)

    def find_user_by_email(self, email: str) -> Optional[dict]:
        doc = self.db[USERS].find_one({"email": email})
        return serialize_doc(doc) if doc else None

    def insert_user(self, user: Union[BaseModel, dict]) -> str:
        return self.create_document(USERS, user)

    def promote_to_admin(self, _id: str) -> bool:
        return self.update_document(USERS, _id, {"role": Role.ADMIN.value})

    # Menu & reviews

    def list_menu_items(self) -> List[dict]:
        return self.get_documents(MENU)

    def insert_menu_item(self, item: Union[BaseModel, dict]) -> str:
        return self.create_document(MENU, item)

    def delete_menu_item_by_id(self, _id: str) -> bool:
        return self.delete_document(MENU, _id)

    def list_reviews(self) -> List[dict]:
        return self.get_documents(REVIEWS)

    # Carts

    def find_cart_items_by_email(self, email: str) -> List[dict]:
        return self.get_documents(CARTS, {"email": email})

    def find_cart_item(self, _id: str) -> Optional[dict]:
        return self.get_document_by_id(CARTS, _id)

    def insert_cart_item(self, item: Union[BaseModel, dict]) -> str:
        return self.create_document(CARTS, item)

    def delete_cart_item_by_id(self, _id: str) -> bool:
        return self.delete_document(CARTS, _id)

    def delete_cart_items_by_ids(self, ids: Iterable[ObjectId], session=None) -> int:
        result = self.db[CARTS].delete_many({"_id": {"$in": list(ids)}}, **_session_kwargs(session))
        return result.deleted_count

    # Payments

    def insert_payment(self, payment: Union[BaseModel, dict], session=None) -> str:
        return self.create_document(PAYMENTS, payment, session=session)

    def list_payments(self, filter_dict: Optional[dict] = None) -> List[dict]:
        return self.get_documents(PAYMENTS, filter_dict, sort=[("created_at", -1)])

    def insert_reconciliation(self, record: Union[BaseModel, dict]) -> str:
        return self.create_document(RECONCILIATIONS, record)

    def run_in_transaction(self, callback):
        """Run ``callback(session)`` inside one multi-document transaction.

        Requires a replica set or sharded cluster.
        """
        with self.client.start_session() as session:
            return session.with_transaction(callback)


def get_store(request: Request) -> Store:
    store = request.app.state.store
    if store is None:
        raise StorageError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return store
