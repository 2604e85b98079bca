from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import Identity, get_identity
from database import create_document, doc_to_public, get_db, to_object_id, utcnow
from permissions import authorize, require
from routers.products import load_product
from routers.users import load_user
from schemas import Review as ReviewSchema

router = APIRouter(prefix="/review", tags=["review"])


class ReviewCreateRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class ReviewUpdateRequest(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = None


def refresh_product_rating(db: Database, product_id: str) -> None:
    """Recompute the product's average rating from its reviews."""
    oid = to_object_id(product_id)
    if oid is None:
        return
    ratings = [r["rating"] for r in db["review"].find({"productId": product_id}, {"rating": 1})]
    average = round(sum(ratings) / len(ratings), 1) if ratings else 0
    db["product"].update_one({"_id": oid}, {"$set": {"rating": average, "numReviews": len(ratings)}})


def load_review(db: Database, review_id: str):
    oid = to_object_id(review_id)
    review = db["review"].find_one({"_id": oid}) if oid else None
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return review


@router.post("/{product_id}", status_code=201)
def add_review(product_id: str, body: ReviewCreateRequest, identity: Identity = Depends(get_identity),
               db: Database = Depends(get_db)):
    product = load_product(db, product_id)
    user = load_user(db, identity.user_id)
    product_id = str(product["_id"])

    if db["review"].find_one({"productId": product_id, "userId": identity.user_id}):
        raise HTTPException(status_code=400, detail="You have already reviewed this product")

    review = ReviewSchema(
        productId=product_id,
        userId=identity.user_id,
        name=user["name"],
        rating=body.rating,
        comment=body.comment,
    )
    try:
        rid = create_document("review", review, db)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="You have already reviewed this product")
    refresh_product_rating(db, product_id)
    return {"message": "Review added successfully", "review": doc_to_public(db["review"].find_one({"_id": to_object_id(rid)}))}


@router.get("/{product_id}")
def list_reviews(product_id: str, db: Database = Depends(get_db)):
    reviews = db["review"].find({"productId": product_id}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
    reviews = [doc_to_public(r) for r in reviews]
    return {"count": len(reviews), "reviews": reviews}


@router.patch("/{review_id}")
def update_review(review_id: str, body: ReviewUpdateRequest, identity: Identity = Depends(require("review", "update")),
                  db: Database = Depends(get_db)):
    review = load_review(db, review_id)
    authorize(identity, "review", "update", review["userId"])

    update = body.model_dump(exclude_none=True)
    update["updated_at"] = utcnow()
    db["review"].update_one({"_id": review["_id"]}, {"$set": update})
    refresh_product_rating(db, review["productId"])
    return {"message": "Review updated", "review": doc_to_public(db["review"].find_one({"_id": review["_id"]}))}


@router.delete("/{review_id}")
def delete_review(review_id: str, identity: Identity = Depends(require("review", "delete")),
                  db: Database = Depends(get_db)):
    review = load_review(db, review_id)
    authorize(identity, "review", "delete", review["userId"])

    db["review"].delete_one({"_id": review["_id"]})
    refresh_product_rating(db, review["productId"])
    return {"message": "Review deleted successfully"}
