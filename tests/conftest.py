import os

os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET"] = "test-secret"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("DATABASE_NAME", None)

import cloudinary.uploader
import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token, hash_password
from database import create_document, ensure_indexes, get_db, to_object_id
from mailer import Mailer, get_mailer
from main import app
from schemas import Product as ProductSchema, User as UserSchema


class RecordingMailer(Mailer):
    def __init__(self):
        super().__init__("localhost", 25, "shop@scentara.io", "secret")
        self.outbox = []

    def send(self, to, subject, body):
        self.outbox.append({"to": to, "subject": subject, "body": body})


@pytest.fixture
def db():
    database = mongomock.MongoClient().scentara
    ensure_indexes(database)
    return database


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def uploads(monkeypatch):
    calls = []

    def fake_upload(file, folder=None, **options):
        calls.append({"folder": folder, "data": file.read(), "options": options})
        return {"secure_url": f"https://res.cloudinary.test/{folder}/{len(calls)}.png"}

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)
    return calls


@pytest.fixture
def client(db, mailer, uploads):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(name="Alice", email=None, role="user", password="secret123"):
        email = email or f"{name.lower()}@scentara.io"
        user = UserSchema(name=name, email=email, password=hash_password(password), role=role)
        uid = create_document("user", user, db)
        token = create_access_token(uid, role)
        return {"id": uid, "email": email, "password": password, "role": role,
                "token": token, "headers": {"Authorization": f"Bearer {token}"}}
    return _make


@pytest.fixture
def alice(make_user):
    return make_user("Alice")


@pytest.fixture
def bob(make_user):
    return make_user("Bob")


@pytest.fixture
def admin(make_user):
    return make_user("Admin", role="admin")


@pytest.fixture
def superadmin(make_user):
    return make_user("Root", role="superadmin")


@pytest.fixture
def make_product(db):
    def _make(name="Oud Noir", price=10.0, stock=50, **fields):
        data = {
            "name": name,
            "brand": "Maison Test",
            "category": "Unisex",
            "volume": 100,
            "price": price,
            "stock": stock,
            "image": "https://res.cloudinary.test/products/default.png",
        }
        data.update(fields)
        pid = create_document("product", ProductSchema(**data), db)
        return pid
    return _make


@pytest.fixture
def get_doc(db):
    def _get(collection, doc_id):
        return db[collection].find_one({"_id": to_object_id(doc_id)})
    return _get
