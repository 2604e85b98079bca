"""
Order placement and lifecycle.

Placing an order touches three collections (cart, product stock, order)
with no multi-document transaction. Each completed step registers how to
undo itself; if a later step fails the completed ones are undone in
reverse order and the original error is re-raised.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from auth import Identity, get_identity
from database import create_document, doc_to_public, get_db, to_object_id, utcnow
from lifecycle import CANCELLABLE, check_order_transition, check_payment_transition
from permissions import authorize, can, require
from routers.cart import load_cart, resolve_products, save_items
from routers.users import load_address
from schemas import AddressFields, Order as OrderSchema, OrderItem, OrderStatus, PaymentMethod

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/order", tags=["order"])


class PlaceOrderRequest(BaseModel):
    paymentMethod: PaymentMethod
    addressId: Optional[str] = None
    shippingAddress: Optional[AddressFields] = None
    transactionId: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str
    trackingId: Optional[str] = None


class PaymentUpdateRequest(BaseModel):
    paymentStatus: str
    transactionId: Optional[str] = None


class Compensation:
    """Collects undo steps and runs them, newest first, if the block raises."""

    def __init__(self, label: str):
        self.label = label
        self._undo: List[Tuple[Callable[..., Any], tuple]] = []

    def on_failure(self, fn: Callable[..., Any], *args) -> None:
        self._undo.append((fn, args))

    def __enter__(self) -> "Compensation":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            return False
        logger.warning("%s failed (%s), undoing %d step(s)", self.label, exc_type.__name__, len(self._undo))
        for fn, args in reversed(self._undo):
            try:
                fn(*args)
            except PyMongoError:
                logger.exception("Undo step %s failed during %s", fn.__name__, self.label)
        return False


# ----------------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------------

def load_order(db: Database, order_id: str) -> Dict[str, Any]:
    oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": oid}) if oid else None
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def shipping_snapshot(db: Database, user_id: str, body: PlaceOrderRequest) -> AddressFields:
    if body.addressId:
        address = load_address(db, user_id, body.addressId)
        return AddressFields(**{k: address.get(k) for k in AddressFields.model_fields if address.get(k) is not None})
    if body.shippingAddress:
        return body.shippingAddress
    raise HTTPException(status_code=400, detail="Shipping address and payment method are required")


def reserve_stock(db: Database, item: OrderItem) -> None:
    res = db["product"].update_one(
        {"_id": to_object_id(item.product), "stock": {"$gte": item.quantity}},
        {"$inc": {"stock": -item.quantity}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=400, detail=f"Insufficient stock for {item.name}")


def release_stock(db: Database, product_id: str, quantity: int) -> None:
    db["product"].update_one({"_id": to_object_id(product_id)}, {"$inc": {"stock": quantity}})


def restock_order(db: Database, order: Dict[str, Any]) -> None:
    for item in order.get("items", []):
        release_stock(db, item["product"], item["quantity"])


def restore_cart_items(db: Database, cart_id, items: List[Dict[str, Any]]) -> None:
    """Put lines back into the cart, merging with lines added in the meantime."""
    stamp = {"$set": {"updated_at": utcnow()}}
    for item in items:
        res = db["cart"].update_one(
            {"_id": cart_id, "items.productId": item["productId"]},
            {"$inc": {"items.$.quantity": item["quantity"], "version": 1}, **stamp},
        )
        if res.matched_count:
            continue
        db["cart"].update_one(
            {"_id": cart_id, "items.productId": {"$ne": item["productId"]}},
            {"$push": {"items": item}, "$inc": {"version": 1}, **stamp},
        )


def transition_order(db: Database, order: Dict[str, Any], target: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    current = order.get("orderStatus", "Pending")
    check_order_transition(current, target)
    update = {"orderStatus": target, "updated_at": utcnow(), **(extra or {})}
    res = db["order"].update_one({"_id": order["_id"], "orderStatus": current}, {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(status_code=409, detail="Order was modified concurrently, please retry")
    if target == "Cancelled":
        restock_order(db, order)
        if order.get("paymentStatus") == "Paid":
            logger.warning("Order %s cancelled after payment, refund due", order["_id"])
    logger.info("Order %s: %s -> %s", order["_id"], current, target)
    return db["order"].find_one({"_id": order["_id"]})


# ----------------------------------------------------------------------------
# Routes
# ----------------------------------------------------------------------------

@router.post("", status_code=201)
def place_order(body: PlaceOrderRequest, identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    user_id = identity.user_id
    cart = load_cart(db, user_id)
    if not cart or not cart.get("items"):
        raise HTTPException(status_code=400, detail="Cart is empty")

    address = shipping_snapshot(db, user_id, body)

    products = resolve_products(db, [i["productId"] for i in cart["items"]])
    items: List[OrderItem] = []
    for entry in cart["items"]:
        product = products.get(entry["productId"])
        if not product:
            raise HTTPException(status_code=400, detail="Product in cart no longer exists")
        items.append(OrderItem(
            product=str(product["_id"]),
            name=product["name"],
            image=product.get("image"),
            price=product["price"],
            quantity=entry["quantity"],
        ))
    total = round(sum(i.price * i.quantity for i in items), 2)

    # ONLINE orders are only Paid when a gateway transaction accompanies them
    paid = body.paymentMethod == "ONLINE" and bool(body.transactionId)
    order = OrderSchema(
        userId=user_id,
        items=items,
        shippingAddress=address,
        paymentMethod=body.paymentMethod,
        paymentStatus="Paid" if paid else "Pending",
        totalAmount=total,
        transactionId=body.transactionId,
    )

    with Compensation(f"Order placement for user {user_id}") as unit:
        save_items(db, cart, [])
        unit.on_failure(restore_cart_items, db, cart["_id"], cart["items"])
        for item in items:
            reserve_stock(db, item)
            unit.on_failure(release_stock, db, item.product, item.quantity)
        oid = create_document("order", order, db)

    logger.info("Placed order %s for user %s, total %.2f", oid, user_id, total)
    return {"message": "Order placed successfully", "order": doc_to_public(db["order"].find_one({"_id": to_object_id(oid)}))}


@router.get("")
def my_orders(identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    cursor = db["order"].find({"userId": identity.user_id}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
    orders = [doc_to_public(o) for o in cursor]
    return {"count": len(orders), "orders": orders}


@router.get("/all")
def all_orders(status: Optional[OrderStatus] = None, identity: Identity = Depends(require("order", "list_all")),
               db: Database = Depends(get_db)):
    query = {"orderStatus": status} if status else {}
    cursor = db["order"].find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
    orders = [doc_to_public(o) for o in cursor]
    return {"count": len(orders), "orders": orders}


@router.get("/{order_id}")
def get_order(order_id: str, identity: Identity = Depends(require("order", "read")), db: Database = Depends(get_db)):
    order = load_order(db, order_id)
    if not can(identity, "order", "read", order["userId"]):
        # other users' orders do not exist as far as the caller can tell
        raise HTTPException(status_code=404, detail="Order not found")
    return doc_to_public(order)


@router.patch("/{order_id}/status")
def update_order_status(order_id: str, body: StatusUpdateRequest,
                        identity: Identity = Depends(require("order", "update_status")),
                        db: Database = Depends(get_db)):
    order = load_order(db, order_id)
    extra = {"trackingId": body.trackingId} if body.trackingId else None
    updated = transition_order(db, order, body.status, extra)
    return {"message": "Order status updated successfully", "order": doc_to_public(updated)}


@router.delete("/{order_id}")
def cancel_order(order_id: str, identity: Identity = Depends(require("order", "cancel")), db: Database = Depends(get_db)):
    order = load_order(db, order_id)
    authorize(identity, "order", "cancel", order["userId"])

    if order.get("orderStatus") not in CANCELLABLE:
        if order.get("orderStatus") in ("Shipped", "Delivered"):
            raise HTTPException(status_code=400, detail="Cannot cancel an order that has already been shipped or delivered")
        raise HTTPException(status_code=400, detail=f"Cannot cancel an order that is {order.get('orderStatus')}")

    updated = transition_order(db, order, "Cancelled")
    message = "Order cancelled successfully"
    if updated.get("paymentStatus") == "Paid":
        message += ", refund pending"
    return {"message": message, "order": doc_to_public(updated)}


@router.patch("/{order_id}/payment")
def update_payment_status(order_id: str, body: PaymentUpdateRequest,
                          identity: Identity = Depends(require("order", "confirm_payment")),
                          db: Database = Depends(get_db)):
    order = load_order(db, order_id)
    current = order.get("paymentStatus", "Pending")

    if not can(identity, "order", "update_payment"):
        authorize(identity, "order", "confirm_payment", order["userId"])
        if body.paymentStatus != "Paid":
            raise HTTPException(status_code=403, detail=f"Only an admin can set payment status to {body.paymentStatus}")
        if not (body.transactionId or "").strip():
            raise HTTPException(status_code=400, detail="A transaction id is required to confirm payment")

    check_payment_transition(current, body.paymentStatus)

    update = {"paymentStatus": body.paymentStatus, "updated_at": utcnow()}
    if body.transactionId:
        update["transactionId"] = body.transactionId
    res = db["order"].update_one({"_id": order["_id"], "paymentStatus": current}, {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(status_code=409, detail="Order was modified concurrently, please retry")
    logger.info("Order %s payment: %s -> %s", order["_id"], current, body.paymentStatus)
    return {"message": "Payment status updated successfully", "order": doc_to_public(db["order"].find_one({"_id": order["_id"]}))}
