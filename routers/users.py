import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, EmailStr, Field
from pymongo import ASCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import settings
from auth import Identity, create_access_token, get_identity, hash_password, verify_password
from database import create_document, doc_to_public, get_db, to_object_id, utcnow
from mailer import Mailer, get_mailer
from permissions import require
from schemas import Address as AddressSchema, AddressFields, Role, User as UserSchema
from storage import ImageStore, get_image_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/user", tags=["user"])


# ----------------------------------------------------------------------------
# Models (request bodies)
# ----------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    gender: Optional[str] = None


class RoleUpdateRequest(BaseModel):
    role: Role


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    otp: str
    newPassword: str = Field(..., min_length=6)


class AddressCreateRequest(AddressFields):
    isDefault: bool = False


class AddressUpdateRequest(BaseModel):
    label: Optional[str] = None
    fullName: Optional[str] = None
    phone: Optional[str] = None
    pincode: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    addressLine: Optional[str] = None
    landmark: Optional[str] = None
    isDefault: Optional[bool] = None


# ----------------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------------

def load_user(db: Database, user_id: str) -> Dict[str, Any]:
    oid = to_object_id(user_id)
    user = db["user"].find_one({"_id": oid}) if oid else None
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def load_address(db: Database, user_id: str, address_id: str) -> Dict[str, Any]:
    oid = to_object_id(address_id)
    address = db["address"].find_one({"_id": oid, "userId": user_id}) if oid else None
    if not address:
        raise HTTPException(status_code=404, detail="Address not found")
    return address


def list_addresses(db: Database, user_id: str) -> List[Dict[str, Any]]:
    cursor = db["address"].find({"userId": user_id}).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
    return [doc_to_public(a) for a in cursor]


def clear_default(db: Database, user_id: str) -> None:
    db["address"].update_many({"userId": user_id, "isDefault": True}, {"$set": {"isDefault": False}})


# ----------------------------------------------------------------------------
# Account
# ----------------------------------------------------------------------------

@router.post("/register", status_code=201)
def register(body: RegisterRequest, db: Database = Depends(get_db)):
    if db["user"].find_one({"email": body.email}):
        raise HTTPException(status_code=400, detail="User already exists")
    user = UserSchema(name=body.name, email=body.email, password=hash_password(body.password))
    try:
        uid = create_document("user", user, db)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")
    logger.info("Registered user %s", uid)
    return {"message": "User registered successfully", "user": doc_to_public(db["user"].find_one({"_id": to_object_id(uid)}))}


@router.post("/login")
def login(body: LoginRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": body.email})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not verify_password(body.password, user["password"]):
        logger.warning("Failed login for %s", body.email)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_access_token(str(user["_id"]), user.get("role", "user"))
    return {
        "message": "Login successful",
        "token": token,
        "user": {"id": str(user["_id"]), "name": user["name"], "email": user["email"], "role": user.get("role", "user")},
    }


@router.get("/me")
def me(identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    return doc_to_public(load_user(db, identity.user_id))


@router.put("/update-profile")
def update_profile(body: ProfileUpdateRequest, identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    user = load_user(db, identity.user_id)
    update = body.model_dump(exclude_none=True)
    update["updated_at"] = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    return {"message": "Profile updated", "user": doc_to_public(db["user"].find_one({"_id": user["_id"]}))}


@router.post("/upload-profile")
def upload_profile(
    image: UploadFile = File(...),
    identity: Identity = Depends(get_identity),
    db: Database = Depends(get_db),
    store: ImageStore = Depends(get_image_store),
):
    user = load_user(db, identity.user_id)
    image_url = store.upload(image, "users")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"profileImage": image_url, "updated_at": utcnow()}})
    return {"message": "Profile image updated", "imageUrl": image_url}


@router.get("/all-users")
def all_users(identity: Identity = Depends(require("user", "list")), db: Database = Depends(get_db)):
    return [doc_to_public(u) for u in db["user"].find({}).sort("created_at", ASCENDING)]


@router.patch("/{user_id}/role")
def set_role(user_id: str, body: RoleUpdateRequest, identity: Identity = Depends(require("user", "set_role")),
             db: Database = Depends(get_db)):
    user = load_user(db, user_id)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": body.role, "updated_at": utcnow()}})
    logger.info("User %s set role of %s to %s", identity.user_id, user_id, body.role)
    return {"message": "Role updated", "user": doc_to_public(db["user"].find_one({"_id": user["_id"]}))}


# ----------------------------------------------------------------------------
# Password reset
# ----------------------------------------------------------------------------

@router.post("/forgot-password")
def forgot_password(body: ForgotPasswordRequest, db: Database = Depends(get_db), mailer: Mailer = Depends(get_mailer)):
    user = db["user"].find_one({"email": body.email})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    otp = str(100000 + secrets.randbelow(900000))
    expires = utcnow() + timedelta(minutes=settings.OTP_EXPIRE_MINUTES)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"resetOTP": otp, "resetOTPExpires": expires}})
    logger.info("Issued password reset OTP for user %s", user["_id"])

    mailer.send_reset_otp(user["email"], otp)
    return {"message": "OTP sent to your email."}


@router.post("/reset-password")
def reset_password(body: ResetPasswordRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({
        "email": body.email,
        "resetOTP": body.otp,
        "resetOTPExpires": {"$gt": utcnow()},
    })
    if not user:
        raise HTTPException(status_code=400, detail="Invalid or expired OTP")

    db["user"].update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password": hash_password(body.newPassword), "updated_at": utcnow()},
            "$unset": {"resetOTP": "", "resetOTPExpires": ""},
        },
    )
    return {"message": "Password has been reset successfully!"}


# ----------------------------------------------------------------------------
# Addresses
# ----------------------------------------------------------------------------

@router.post("/address", status_code=201)
def add_address(body: AddressCreateRequest, identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    load_user(db, identity.user_id)
    is_default = body.isDefault or db["address"].count_documents({"userId": identity.user_id}) == 0
    if is_default:
        clear_default(db, identity.user_id)
    address = AddressSchema(**body.model_dump(exclude={"isDefault"}), userId=identity.user_id, isDefault=is_default)
    aid = create_document("address", address, db)
    return {
        "message": "Address added successfully",
        "address": doc_to_public(db["address"].find_one({"_id": to_object_id(aid)})),
        "addresses": list_addresses(db, identity.user_id),
    }


@router.get("/address")
@router.get("/addresses")
def get_addresses(identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    return {"addresses": list_addresses(db, identity.user_id)}


@router.get("/address/{address_id}")
def get_address(address_id: str, identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    return doc_to_public(load_address(db, identity.user_id, address_id))


@router.put("/address/{address_id}")
def update_address(address_id: str, body: AddressUpdateRequest, identity: Identity = Depends(get_identity),
                   db: Database = Depends(get_db)):
    address = load_address(db, identity.user_id, address_id)
    update = body.model_dump(exclude_none=True)
    if update.get("isDefault"):
        clear_default(db, identity.user_id)
    update["updated_at"] = utcnow()
    db["address"].update_one({"_id": address["_id"]}, {"$set": update})
    return {
        "message": "Address updated successfully",
        "address": doc_to_public(db["address"].find_one({"_id": address["_id"]})),
        "addresses": list_addresses(db, identity.user_id),
    }


@router.delete("/address/{address_id}")
def delete_address(address_id: str, identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    address = load_address(db, identity.user_id, address_id)
    db["address"].delete_one({"_id": address["_id"]})
    if address.get("isDefault"):
        oldest = db["address"].find_one({"userId": identity.user_id}, sort=[("created_at", ASCENDING), ("_id", ASCENDING)])
        if oldest:
            db["address"].update_one({"_id": oldest["_id"]}, {"$set": {"isDefault": True}})
    return {"message": "Address deleted successfully", "addresses": list_addresses(db, identity.user_id)}
