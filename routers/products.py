import math
import re
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from auth import Identity
from database import create_document, doc_to_public, get_db, to_object_id, utcnow
from permissions import require
from schemas import Product as ProductSchema
from storage import ImageStore, get_image_store

router = APIRouter(prefix="/products", tags=["products"])

SORTABLE_FIELDS = ("name", "brand", "price", "rating", "volume", "stock", "created_at")


class ProductCreateRequest(BaseModel):
    name: str
    brand: str
    description: Optional[str] = None
    category: str
    fragranceType: Optional[str] = None
    volume: float = Field(..., ge=0)
    price: float = Field(..., ge=0)
    originalPrice: Optional[float] = Field(None, ge=0)
    stock: int = Field(..., ge=0)
    ingredients: List[str] = Field(default_factory=list)
    topNotes: List[str] = Field(default_factory=list)
    middleNotes: List[str] = Field(default_factory=list)
    baseNotes: List[str] = Field(default_factory=list)
    image: str
    isFeatured: bool = False


class ProductUpdateRequest(BaseModel):
    name: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    fragranceType: Optional[str] = None
    volume: Optional[float] = Field(None, ge=0)
    price: Optional[float] = Field(None, ge=0)
    originalPrice: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    ingredients: Optional[List[str]] = None
    topNotes: Optional[List[str]] = None
    middleNotes: Optional[List[str]] = None
    baseNotes: Optional[List[str]] = None
    image: Optional[str] = None
    isFeatured: Optional[bool] = None


def load_product(db: Database, product_id: str) -> Dict[str, Any]:
    oid = to_object_id(product_id)
    product = db["product"].find_one({"_id": oid}) if oid else None
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def build_query(search, category, brand, fragrance_type, is_featured, min_price, max_price) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"brand": {"$regex": pattern, "$options": "i"}},
            {"fragranceType": {"$regex": pattern, "$options": "i"}},
        ]
    if category:
        query["category"] = category
    if brand:
        query["brand"] = brand
    if fragrance_type:
        query["fragranceType"] = fragrance_type
    if is_featured is not None:
        query["isFeatured"] = is_featured
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    return query


@router.get("")
def list_products(
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    brand: Optional[str] = Query(None),
    fragranceType: Optional[str] = Query(None),
    isFeatured: Optional[bool] = Query(None),
    minPrice: Optional[float] = Query(None, ge=0),
    maxPrice: Optional[float] = Query(None, ge=0),
    sortBy: Optional[Literal[SORTABLE_FIELDS]] = Query(None),
    order: Literal["asc", "desc"] = Query("asc"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    query = build_query(search, category, brand, fragranceType, isFeatured, minPrice, maxPrice)
    total = db["product"].count_documents(query)

    cursor = db["product"].find(query)
    if sortBy:
        cursor = cursor.sort([(sortBy, DESCENDING if order == "desc" else ASCENDING), ("_id", ASCENDING)])
    cursor = cursor.skip((page - 1) * limit).limit(limit)

    return {
        "total": total,
        "page": page,
        "totalPages": math.ceil(total / limit),
        "products": [doc_to_public(p) for p in cursor],
    }


@router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return doc_to_public(load_product(db, product_id))


# ----------------------------------------------------------------------------
# Admin: Product Management
# ----------------------------------------------------------------------------

@router.post("", status_code=201)
def create_product(body: ProductCreateRequest, identity: Identity = Depends(require("product", "create")),
                   db: Database = Depends(get_db)):
    pid = create_document("product", ProductSchema(**body.model_dump()), db)
    return {"message": "Product created successfully", "product": doc_to_public(db["product"].find_one({"_id": to_object_id(pid)}))}


@router.patch("/{product_id}")
def update_product(product_id: str, body: ProductUpdateRequest, identity: Identity = Depends(require("product", "update")),
                   db: Database = Depends(get_db)):
    product = load_product(db, product_id)
    update = body.model_dump(exclude_none=True)
    update["updated_at"] = utcnow()
    db["product"].update_one({"_id": product["_id"]}, {"$set": update})
    return {"message": "Product updated successfully", "product": doc_to_public(db["product"].find_one({"_id": product["_id"]}))}


@router.delete("/{product_id}")
def delete_product(product_id: str, identity: Identity = Depends(require("product", "delete")),
                   db: Database = Depends(get_db)):
    product = load_product(db, product_id)
    db["product"].delete_one({"_id": product["_id"]})
    return {"message": "Product deleted successfully", "product": doc_to_public(product)}


@router.post("/{product_id}/image")
def upload_product_image(
    product_id: str,
    image: UploadFile = File(...),
    identity: Identity = Depends(require("product", "update")),
    db: Database = Depends(get_db),
    store: ImageStore = Depends(get_image_store),
):
    product = load_product(db, product_id)
    image_url = store.upload(image, "products")
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"image": image_url, "updated_at": utcnow()}})
    return {"message": "Product image updated", "imageUrl": image_url}
