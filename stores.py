"""
Collection access for products, carts, orders and users.

Each store wraps one MongoDB collection and hands back public dicts
(`_id` replaced by a string `id`). Ids that are not valid ObjectIds are
treated as absent.
"""
import re
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, now, to_object_id, to_public
from errors import NotFoundError, ValidationError
from schemas import Cart, CartLine, Order, OrderStatus, Product, User

logger = structlog.get_logger(__name__)

PRODUCT_SORT_FIELDS = {"name", "price", "stock", "category", "created_at"}


class CatalogStore:
    collection_name = "product"

    def __init__(self, db: Database):
        self.db = db
        self.collection = db[self.collection_name]

    def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        return to_public(self.collection.find_one({"_id": oid}))

    def list_products(self, category: Optional[str] = None, search: Optional[str] = None, sort: Optional[str] = None, page: int = 1, limit: int = 10) -> Tuple[int, List[Dict[str, Any]]]:
        query: Dict[str, Any] = {}
        if category:
            query["category"] = category
        if search:
            query["name"] = {"$regex": re.escape(search), "$options": "i"}

        cursor = self.collection.find(query)
        if sort:
            field = sort.lstrip("-")
            if field in PRODUCT_SORT_FIELDS:
                cursor = cursor.sort(field, DESCENDING if sort.startswith("-") else ASCENDING)
        cursor = cursor.skip((page - 1) * limit).limit(limit)

        total = self.collection.count_documents(query)
        return total, [to_public(d) for d in cursor]

    def create_product(self, product: Product) -> Dict[str, Any]:
        new_id = create_document(self.collection_name, product, database=self.db)
        logger.info("Product created", product_id=new_id, name=product.name)
        return self.get_product(new_id)

    def update_product(self, product_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        doc = self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": {**updates, "updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
        return to_public(doc)

    def delete_product(self, product_id: str) -> bool:
        oid = to_object_id(product_id)
        if oid is None:
            return False
        return self.collection.delete_one({"_id": oid}).deleted_count == 1

    def decrement_stock(self, product_id: str, quantity: int) -> bool:
        """Take `quantity` units only if that many are available.

        The availability check and the decrement are one server-side update,
        so concurrent checkouts can never push stock below zero.
        """
        oid = to_object_id(product_id)
        if oid is None:
            return False
        doc = self.collection.find_one_and_update(
            {"_id": oid, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
        return doc is not None

    def restock(self, product_id: str, quantity: int) -> bool:
        oid = to_object_id(product_id)
        if oid is None:
            return False
        result = self.collection.update_one(
            {"_id": oid},
            {"$inc": {"stock": quantity}, "$set": {"updated_at": now()}},
        )
        return result.matched_count == 1

    def low_stock(self, threshold: int) -> List[Dict[str, Any]]:
        docs = self.collection.find(
            {"stock": {"$lte": threshold}},
            {"name": 1, "stock": 1, "category": 1},
        ).sort("stock", ASCENDING)
        return [to_public(d) for d in docs]


class CartStore:
    collection_name = "cart"

    def __init__(self, db: Database):
        self.db = db
        self.collection = db[self.collection_name]

    def find(self, user_id: str) -> Optional[Dict[str, Any]]:
        return to_public(self.collection.find_one({"user_id": user_id}))

    def get_cart(self, user_id: str) -> List[Dict[str, Any]]:
        cart = self.collection.find_one({"user_id": user_id})
        if not cart:
            return []
        return [{"product_id": i["product_id"], "quantity": int(i["quantity"])} for i in cart.get("items", [])]

    def _save(self, user_id: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        cart = Cart(user_id=user_id, items=[CartLine(**i) for i in items])
        doc = self.collection.find_one_and_update(
            {"user_id": user_id},
            {"$set": {"items": [line.model_dump() for line in cart.items], "updated_at": now()}, "$setOnInsert": {"created_at": now()}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return to_public(doc)

    def add_item(self, user_id: str, product_id: str, quantity: int = 1) -> Dict[str, Any]:
        """Add `quantity` units, merging into an existing line for the product.

        Each path is a single server-side update, so concurrent adds for the
        same user never overwrite one another.
        """
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        line = CartLine(product_id=product_id, quantity=quantity).model_dump()
        while True:
            merged = self.collection.update_one(
                {"user_id": user_id, "items.product_id": product_id},
                {"$inc": {"items.$.quantity": quantity}, "$set": {"updated_at": now()}},
            )
            if merged.matched_count:
                break
            pushed = self.collection.update_one(
                {"user_id": user_id, "items.product_id": {"$ne": product_id}},
                {"$push": {"items": line}, "$set": {"updated_at": now()}},
            )
            if pushed.matched_count:
                break
            try:
                created = self.collection.update_one(
                    {"user_id": user_id},
                    {"$setOnInsert": {"items": [line], "created_at": now(), "updated_at": now()}},
                    upsert=True,
                )
            except DuplicateKeyError:
                continue
            if created.upserted_id is not None:
                break
        return self.find(user_id)

    def set_quantity(self, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        if self.find(user_id) is None:
            raise NotFoundError("Cart not found")
        items = self.get_cart(user_id)
        for item in items:
            if item["product_id"] == product_id:
                item["quantity"] = quantity
                break
        else:
            raise NotFoundError("Product not in cart")
        return self._save(user_id, items)

    def remove_item(self, user_id: str, product_id: str) -> Dict[str, Any]:
        if self.find(user_id) is None:
            raise NotFoundError("Cart not found")
        items = [i for i in self.get_cart(user_id) if i["product_id"] != product_id]
        return self._save(user_id, items)

    def clear(self, user_id: str) -> Optional[Dict[str, Any]]:
        doc = self.collection.find_one_and_update(
            {"user_id": user_id},
            {"$set": {"items": [], "updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
        return to_public(doc)


class OrderStore:
    collection_name = "order"

    def __init__(self, db: Database):
        self.db = db
        self.collection = db[self.collection_name]

    def create(self, order: Order) -> Dict[str, Any]:
        new_id = create_document(self.collection_name, order, database=self.db)
        return self.get(new_id)

    def get(self, order_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(order_id)
        if oid is None:
            return None
        return to_public(self.collection.find_one({"_id": oid}))

    def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        docs = self.collection.find({"user_id": user_id}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        return [to_public(d) for d in docs]

    def list_all(self) -> List[Dict[str, Any]]:
        docs = self.collection.find().sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        return [to_public(d) for d in docs]

    def update(self, order_id: str, fields: Dict[str, Any], expected_statuses: Optional[List[OrderStatus]] = None) -> Optional[Dict[str, Any]]:
        """Set mutable order fields.

        With `expected_statuses` the write only applies while the stored
        status is still one of them; None is returned otherwise.
        """
        oid = to_object_id(order_id)
        if oid is None:
            return None
        query: Dict[str, Any] = {"_id": oid}
        if expected_statuses is not None:
            query["status"] = {"$in": [s.value for s in expected_statuses]}
        doc = self.collection.find_one_and_update(
            query,
            {"$set": {**fields, "updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
        return to_public(doc)

    def claim_restock(self, order_id: str) -> bool:
        """Mark the order's items as returned to stock, at most once."""
        oid = to_object_id(order_id)
        if oid is None:
            return False
        result = self.collection.update_one(
            {"_id": oid, "restocked": {"$ne": True}},
            {"$set": {"restocked": True, "updated_at": now()}},
        )
        return result.modified_count == 1


class UserStore:
    collection_name = "user"
    private_fields = {"password_hash": 0, "salt": 0}

    def __init__(self, db: Database):
        self.db = db
        self.collection = db[self.collection_name]

    def ensure_indexes(self) -> None:
        self.collection.create_index("email", unique=True)

    def get(self, user_id: str, include_private: bool = False) -> Optional[Dict[str, Any]]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        projection = None if include_private else self.private_fields
        return to_public(self.collection.find_one({"_id": oid}, projection))

    def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return to_public(self.collection.find_one({"email": email.lower()}))

    def create(self, user: User) -> Dict[str, Any]:
        user = user.model_copy(update={"email": user.email.lower()})
        new_id = create_document(self.collection_name, user, database=self.db)
        logger.info("User registered", user_id=new_id)
        return self.get(new_id)

    def update(self, user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        doc = self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": {**fields, "updated_at": now()}},
            projection=self.private_fields,
            return_document=ReturnDocument.AFTER,
        )
        return to_public(doc)

    def list_all(self) -> List[Dict[str, Any]]:
        docs = self.collection.find({}, self.private_fields).sort("created_at", DESCENDING)
        return [to_public(d) for d in docs]

    def contacts(self, user_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """Map user id -> {name, email} for the given ids."""
        oids = [oid for oid in (to_object_id(u) for u in set(user_ids)) if oid is not None]
        if not oids:
            return {}
        docs = self.collection.find({"_id": {"$in": oids}}, {"name": 1, "email": 1})
        return {str(d["_id"]): {"name": d.get("name"), "email": d.get("email")} for d in docs}
