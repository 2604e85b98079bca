from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import Identity, get_identity
from database import create_document, doc_to_public, get_db, utcnow
from routers.cart import resolve_products
from routers.products import load_product
from schemas import Wishlist as WishlistSchema

router = APIRouter(prefix="/wishlist", tags=["wishlist"])


class AddWishlistRequest(BaseModel):
    productId: str


def wishlist_view(db: Database, wishlist: Dict[str, Any]) -> Dict[str, Any]:
    products = resolve_products(db, wishlist.get("products", []))
    view = doc_to_public(wishlist)
    # products deleted since they were saved drop out of the view
    view["products"] = [doc_to_public(products[pid]) for pid in wishlist.get("products", []) if pid in products]
    return view


def require_wishlist(db: Database, user_id: str) -> Dict[str, Any]:
    wishlist = db["wishlist"].find_one({"userId": user_id})
    if not wishlist:
        raise HTTPException(status_code=404, detail="Wishlist not found")
    return wishlist


@router.post("")
def add_to_wishlist(body: AddWishlistRequest, identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    product_id = str(load_product(db, body.productId)["_id"])

    wishlist = db["wishlist"].find_one({"userId": identity.user_id})
    if not wishlist:
        try:
            create_document("wishlist", WishlistSchema(userId=identity.user_id), db)
        except DuplicateKeyError:
            pass  # created by a concurrent request, re-read below
        wishlist = db["wishlist"].find_one({"userId": identity.user_id})

    if product_id in wishlist.get("products", []):
        raise HTTPException(status_code=400, detail="Product already in wishlist")

    res = db["wishlist"].update_one(
        {"_id": wishlist["_id"], "products": {"$ne": product_id}},
        {"$push": {"products": product_id}, "$set": {"updated_at": utcnow()}},
    )
    if res.modified_count == 0:
        raise HTTPException(status_code=400, detail="Product already in wishlist")

    return {"message": "Product added to wishlist", "wishlist": wishlist_view(db, db["wishlist"].find_one({"_id": wishlist["_id"]}))}


@router.get("")
def get_wishlist(identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    wishlist = db["wishlist"].find_one({"userId": identity.user_id})
    if not wishlist:
        return {"message": "Wishlist is empty", "wishlist": {"userId": identity.user_id, "products": []}}
    return {"wishlist": wishlist_view(db, wishlist)}


@router.delete("/{product_id}")
def remove_from_wishlist(product_id: str, identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    wishlist = require_wishlist(db, identity.user_id)
    db["wishlist"].update_one(
        {"_id": wishlist["_id"]},
        {"$pull": {"products": product_id}, "$set": {"updated_at": utcnow()}},
    )
    return {"message": "Product removed from wishlist", "wishlist": wishlist_view(db, db["wishlist"].find_one({"_id": wishlist["_id"]}))}


@router.delete("")
def clear_wishlist(identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    wishlist = require_wishlist(db, identity.user_id)
    db["wishlist"].update_one({"_id": wishlist["_id"]}, {"$set": {"products": [], "updated_at": utcnow()}})
    return {"message": "Wishlist cleared", "wishlist": wishlist_view(db, db["wishlist"].find_one({"_id": wishlist["_id"]}))}
