from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import Identity, get_identity
from database import create_document, doc_to_public, get_db, to_object_id, utcnow
from routers.products import load_product
from schemas import Cart as CartSchema, CartItem

router = APIRouter(prefix="/cart", tags=["cart"])

CART_PRODUCT_FIELDS = {"name": 1, "price": 1, "image": 1, "brand": 1, "stock": 1}


class AddCartRequest(BaseModel):
    productId: str
    quantity: int = Field(1, ge=1)


class UpdateCartRequest(BaseModel):
    productId: str
    quantity: int = Field(..., ge=1)


def load_cart(db: Database, user_id: str) -> Optional[Dict[str, Any]]:
    return db["cart"].find_one({"userId": user_id})


def require_cart(db: Database, user_id: str) -> Dict[str, Any]:
    cart = load_cart(db, user_id)
    if not cart:
        raise HTTPException(status_code=404, detail="Cart not found")
    return cart


def save_items(db: Database, cart: Dict[str, Any], items: List[Dict[str, Any]]) -> None:
    """Write the item list only if nobody else wrote the cart since it was read."""
    res = db["cart"].update_one(
        {"_id": cart["_id"], "version": cart.get("version", 0)},
        {"$set": {"items": items, "updated_at": utcnow()}, "$inc": {"version": 1}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=409, detail="Cart was modified concurrently, please retry")


def find_item(items: List[Dict[str, Any]], product_id: str) -> int:
    for index, item in enumerate(items):
        if item["productId"] == product_id:
            return index
    return -1


def resolve_products(db: Database, product_ids: List[str], projection=None) -> Dict[str, Dict[str, Any]]:
    oids = [oid for oid in (to_object_id(pid) for pid in product_ids) if oid is not None]
    return {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": oids}}, projection)}


def cart_view(db: Database, cart: Dict[str, Any]) -> Dict[str, Any]:
    products = resolve_products(db, [i["productId"] for i in cart.get("items", [])], CART_PRODUCT_FIELDS)
    items = []
    subtotal = 0.0
    for item in cart.get("items", []):
        product = products.get(item["productId"])
        if product:
            subtotal += product["price"] * item["quantity"]
        items.append({
            "productId": item["productId"],
            "quantity": item["quantity"],
            "product": doc_to_public(product) if product else None,
        })
    view = doc_to_public(cart)
    view["items"] = items
    view["subtotal"] = round(subtotal, 2)
    return view


@router.post("", status_code=201)
def add_to_cart(body: AddCartRequest, identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    product = load_product(db, body.productId)
    product_id = str(product["_id"])

    cart = load_cart(db, identity.user_id)
    if not cart:
        new_cart = CartSchema(userId=identity.user_id, items=[CartItem(productId=product_id, quantity=body.quantity)])
        try:
            create_document("cart", new_cart, db)
        except DuplicateKeyError:
            raise HTTPException(status_code=409, detail="Cart was modified concurrently, please retry")
    else:
        items = list(cart.get("items", []))
        index = find_item(items, product_id)
        if index >= 0:
            items[index] = {**items[index], "quantity": items[index]["quantity"] + body.quantity}
        else:
            items.append(CartItem(productId=product_id, quantity=body.quantity).model_dump())
        save_items(db, cart, items)

    return {"message": "Product added to cart", "cart": cart_view(db, load_cart(db, identity.user_id))}


@router.get("")
def get_cart(identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    cart = load_cart(db, identity.user_id)
    if not cart:
        return {"message": "Cart is empty", "items": [], "subtotal": 0}
    return cart_view(db, cart)


@router.patch("")
@router.patch("/update")
def update_cart_item(body: UpdateCartRequest, identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    cart = require_cart(db, identity.user_id)
    items = list(cart.get("items", []))
    index = find_item(items, body.productId)
    if index == -1:
        raise HTTPException(status_code=404, detail="Product not found in cart")

    items[index] = {**items[index], "quantity": body.quantity}
    save_items(db, cart, items)
    return {"message": "Cart updated successfully", "cart": cart_view(db, load_cart(db, identity.user_id))}


@router.delete("/{product_id}")
def remove_from_cart(product_id: str, identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    cart = require_cart(db, identity.user_id)
    items = list(cart.get("items", []))
    index = find_item(items, product_id)
    if index == -1:
        raise HTTPException(status_code=404, detail="Product not found in cart")

    del items[index]
    save_items(db, cart, items)
    return {"message": "Product removed from cart", "cart": cart_view(db, load_cart(db, identity.user_id))}


@router.delete("")
def clear_cart(identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    cart = require_cart(db, identity.user_id)
    save_items(db, cart, [])
    return {"message": "Cart cleared", "cart": cart_view(db, load_cart(db, identity.user_id))}
