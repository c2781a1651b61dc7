import logging
import os
import re
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Optional, List, Any, Dict, Literal, Type

from fastapi import FastAPI, Depends, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, Field, EmailStr
from pydantic import ValidationError as SchemaError
from jose import jwt, JWTError
from passlib.context import CryptContext
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import catalog
from database import db, create_document, ensure_indexes, get_documents
from errors import (
    ERROR_STATUS_CODES,
    AuthenticationError,
    AuthorizationError,
    MarketplaceError,
    NotFoundError,
    UnexpectedError,
    ValidationError,
)
from schemas import (
    Admin as AdminSchema,
    AvailableDate,
    BookingPaymentType,
    DateRange,
    Itinerary as ItinerarySchema,
    ItineraryBooking as ItineraryBookingSchema,
    PaymentMethod,
    Product as ProductSchema,
    PromoCode as PromoCodeSchema,
    Purchase as PurchaseSchema,
    Review as ReviewSchema,
    Seller as SellerSchema,
    TourGuide as TourGuideSchema,
    Tourist as TouristSchema,
    TouristItinerary as TouristItinerarySchema,
    as_utc,
)

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes()
    yield


# App and CORS
app = FastAPI(title="Tourism Marketplace API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Auth setup
SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(24 * 60)))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

# role -> account collection
ROLE_COLLECTIONS = {
    "tourist": "tourist",
    "seller": "seller",
    "tour-guide": "tourguide",
    "admin": "admin",
}
ROLE_SCHEMAS = {
    "tourist": TouristSchema,
    "seller": SellerSchema,
    "tour-guide": TourGuideSchema,
    "admin": AdminSchema,
}

# Error handling

def error_response(status_code: int, message: str, error_type: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "error_type": error_type})


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    """Map MarketplaceError subclasses to their HTTP status."""
    status_code = next((code for cls, code in ERROR_STATUS_CODES.items() if isinstance(exc, cls)), 500)
    if status_code == 500:
        cause = exc.__cause__ or exc
        logger.error("Unexpected failure on %s %s: %s", request.method, request.url.path, exc, exc_info=cause)
    return error_response(status_code, str(exc), type(exc).__name__)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(400, describe_errors(exc.errors()), "ValidationError")


# framework-raised statuses reuse the taxonomy names
HTTP_ERROR_TYPES = {
    400: ValidationError.__name__,
    401: AuthenticationError.__name__,
    403: AuthorizationError.__name__,
    404: NotFoundError.__name__,
}


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "error_type": HTTP_ERROR_TYPES.get(exc.status_code, "HTTPException")},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError) -> JSONResponse:
    return error_response(400, "Duplicate value for a unique field", "ValidationError")


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    wrapped = UnexpectedError("Database unavailable")
    wrapped.__cause__ = exc
    return await marketplace_error_handler(request, wrapped)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    wrapped = UnexpectedError("Internal server error")
    wrapped.__cause__ = exc
    return await marketplace_error_handler(request, wrapped)

# Helpers

def describe_errors(errors) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", "Invalid input"))
    return "; ".join(parts) or "Invalid input"


def to_obj_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id")


def sanitize(doc: Dict) -> Dict:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def public(doc: Dict) -> Dict:
    """Sanitize an account document and strip its credentials."""
    d = sanitize(doc)
    if d:
        d.pop("password_hash", None)
    return d


def build(schema: Type[BaseModel], **data) -> Dict[str, Any]:
    """Validate a collection document against its schema and dump it."""
    try:
        return schema(**data).model_dump()
    except SchemaError as e:
        raise ValidationError(describe_errors(e.errors()))


def revalidate(schema: Type[BaseModel], doc: Dict[str, Any]) -> None:
    build(schema, **{k: v for k, v in doc.items() if k in schema.model_fields})


def changes_from(payload: BaseModel) -> Dict[str, Any]:
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise ValidationError("No fields to update")
    return changes


def find_or_404(collection: str, doc_id: str, resource: str) -> Dict:
    doc = db[collection].find_one({"_id": to_obj_id(doc_id)})
    if not doc:
        raise NotFoundError(resource)
    return doc


def verify_password_policy(password: str) -> None:
    # 8-16 chars, at least one uppercase and one special char
    if not (8 <= len(password) <= 16):
        raise ValidationError("Password must be 8-16 characters long")
    if not re.search(r"[A-Z]", password):
        raise ValidationError("Password must include at least one uppercase letter")
    if not re.search(r"[^A-Za-z0-9]", password):
        raise ValidationError("Password must include at least one special character")


def hash_password(password: str) -> str:
    verify_password_policy(password)
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


class Caller(BaseModel):
    """The authenticated account behind a request."""
    id: str
    role: str
    username: str


def get_current_user(token: str = Depends(oauth2_scheme)) -> Caller:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthenticationError()
    user_id = payload.get("sub")
    role = payload.get("role")
    if user_id is None or role not in ROLE_COLLECTIONS or not ObjectId.is_valid(user_id):
        raise AuthenticationError()
    user = db[ROLE_COLLECTIONS[role]].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise AuthenticationError()
    return Caller(id=str(user["_id"]), role=role, username=user["username"])


def require_role(*roles: str):
    def role_dep(current_user: Caller = Depends(get_current_user)) -> Caller:
        if current_user.role not in roles:
            raise AuthorizationError("Forbidden: You do not have access to this resource")
        return current_user
    return role_dep


def ensure_unique(collection: str, field: str, value: Any, exclude_id: Optional[ObjectId] = None) -> None:
    q: Dict[str, Any] = {field: value}
    if exclude_id is not None:
        q["_id"] = {"$ne": exclude_id}
    if db[collection].find_one(q):
        raise ValidationError(f"{field.capitalize()} already exists")


def ensure_account_unique(field: str, value: Any, exclude_id: Optional[ObjectId] = None) -> None:
    """Usernames and emails are unique across every role, since login searches all of them."""
    for collection in ROLE_COLLECTIONS.values():
        ensure_unique(collection, field, value, exclude_id=exclude_id)

# Request/Response Models
class SignupRequest(BaseModel):
    role: Literal["tourist", "seller", "tour-guide"]
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=30)
    password: str
    nationality: Optional[str] = None
    mobile: Optional[str] = None
    years_of_experience: Optional[int] = Field(None, ge=0)
    previous_works: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None

class LoginRequest(BaseModel):
    username: str = Field(..., description="Username or email")
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    user: Dict[str, Any]

class ProductCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    picture: Optional[str] = None
    quantity: int = Field(0, ge=0)
    reviews: List[ReviewSchema] = []

class ProductUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    picture: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=0)
    reviews: Optional[List[ReviewSchema]] = None

class ReviewRequest(BaseModel):
    rating: float = Field(..., ge=0, le=5)
    text: Optional[str] = None

class PurchaseRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    payment_method: PaymentMethod
    promo_code: Optional[str] = None

class PromoCodeRequest(BaseModel):
    code: str
    percent_off: float = Field(..., ge=0, le=100)
    date_range: DateRange

class TourGuideUpdateRequest(BaseModel):
    email: Optional[EmailStr] = None
    username: Optional[str] = Field(None, min_length=3, max_length=30)
    nationality: Optional[str] = None
    mobile: Optional[str] = None
    years_of_experience: Optional[int] = Field(None, ge=0)
    previous_works: Optional[str] = None

class ItineraryRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: str
    activities: List[str] = []
    language: str
    price: float = Field(..., ge=0)
    available_dates: List[AvailableDate] = []
    accessibility: bool
    pick_up_location: str
    drop_off_location: str
    is_booked: bool = False

class ItineraryUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    activities: Optional[List[str]] = None
    language: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    available_dates: Optional[List[AvailableDate]] = None
    accessibility: Optional[bool] = None
    pick_up_location: Optional[str] = None
    drop_off_location: Optional[str] = None
    is_booked: Optional[bool] = None

class TouristItineraryRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    activities: List[str] = []
    locations: List[str] = []
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    tags: List[str] = []

class TouristItineraryUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    activities: Optional[List[str]] = None
    locations: Optional[List[str]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    tags: Optional[List[str]] = None

class ItineraryBookingRequest(BaseModel):
    itinerary_id: str
    payment_type: BookingPaymentType
    number_of_tickets: int = Field(1, ge=1)

class ItineraryBookingUpdateRequest(BaseModel):
    payment_type: Optional[BookingPaymentType] = None
    number_of_tickets: Optional[int] = Field(None, ge=1)

# Auth Routes
@app.post("/auth/signup", response_model=TokenResponse, status_code=201)
def signup(payload: SignupRequest):
    collection = ROLE_COLLECTIONS[payload.role]
    ensure_account_unique("email", payload.email)
    ensure_account_unique("username", payload.username)
    profile = payload.model_dump(exclude_none=True, exclude={"role", "password"})
    user_doc = build(ROLE_SCHEMAS[payload.role], password_hash=hash_password(payload.password), **profile)
    uid = create_document(collection, user_doc)
    token = create_access_token({"sub": uid, "role": payload.role})
    return TokenResponse(access_token=token, role=payload.role, user=public(db[collection].find_one({"_id": ObjectId(uid)})))

@app.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest):
    for role, collection in ROLE_COLLECTIONS.items():
        user = db[collection].find_one({"$or": [{"email": payload.username}, {"username": payload.username}]})
        if user:
            break
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise AuthenticationError("Invalid username or password")
    token = create_access_token({"sub": str(user["_id"]), "role": role})
    return TokenResponse(access_token=token, role=role, user=public(user))

@app.get("/me")
def me(current_user: Caller = Depends(get_current_user)):
    return current_user

@app.get("/auth/check-unique")
def check_unique(email: Optional[str] = None, username: Optional[str] = None):
    if not email and not username:
        raise ValidationError("Provide an email or a username to check")
    if email:
        ensure_account_unique("email", email)
    if username:
        ensure_account_unique("username", username)
    return {"message": "Unique"}

# Product Routes
@app.get("/products")
def list_products():
    return [sanitize(p) for p in db["product"].find()]

@app.get("/products/search")
def search_products(name: Optional[str] = None):
    q: Dict[str, Any] = {}
    if name:
        q["name"] = {"$regex": re.escape(name), "$options": "i"}
    return [sanitize(p) for p in db["product"].find(q)]

@app.get("/products/sorted-by-rating")
def sort_products_by_rating():
    return [sanitize(p) for p in db["product"].find().sort([("rating", -1)])]

@app.get("/products/filter")
def filter_products_by_price(
    min_price: float = Query(0, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
):
    if max_price is not None and min_price > max_price:
        return []
    price: Dict[str, Any] = {"$gte": min_price}
    if max_price is not None:
        price["$lte"] = max_price
    return [sanitize(p) for p in db["product"].find({"price": price})]

@app.get("/products/{product_id}")
def get_product(product_id: str):
    return sanitize(find_or_404("product", product_id, "Product"))

@app.post("/products", status_code=201)
def add_product(payload: ProductCreateRequest, seller: Caller = Depends(require_role("seller"))):
    data = payload.model_dump()
    doc = build(ProductSchema, seller=seller.id, rating=catalog.average_rating(data["reviews"]), **data)
    pid = create_document("product", doc)
    return sanitize(db["product"].find_one({"_id": ObjectId(pid)}))

@app.put("/products/{product_id}")
def edit_product(product_id: str, payload: ProductUpdateRequest, admin: Caller = Depends(require_role("admin"))):
    return sanitize(catalog.update_product(db["product"], to_obj_id(product_id), changes_from(payload)))

@app.delete("/products/{product_id}", status_code=204)
def delete_product(product_id: str, admin: Caller = Depends(require_role("admin"))):
    catalog.delete_product(db["product"], to_obj_id(product_id))
    return Response(status_code=204)

@app.post("/products/{product_id}/reviews", status_code=201)
def review_product(product_id: str, payload: ReviewRequest, tourist: Caller = Depends(require_role("tourist"))):
    review = build(ReviewSchema, tourist=tourist.id, **payload.model_dump())
    return sanitize(catalog.add_review(db["product"], to_obj_id(product_id), review))

@app.get("/products/{product_id}/purchases")
def product_purchases(product_id: str, seller: Caller = Depends(require_role("seller"))):
    pid = to_obj_id(product_id)
    product = db["product"].find_one({"_id": pid})
    catalog.require_owner(product, seller.id, "seller")
    purchases = [sanitize(p) for p in db["purchase"].find({"product": str(pid)}).sort([("purchase_date", -1)])]
    tourist_ids = list({to_obj_id(p["tourist"]) for p in purchases})
    tourists = {str(t["_id"]): public(t) for t in db["tourist"].find({"_id": {"$in": tourist_ids}})} if tourist_ids else {}
    for p in purchases:
        p["tourist"] = tourists.get(p["tourist"])
    return purchases

# Seller Routes
@app.put("/seller/products/{product_id}")
def edit_product_of_seller(product_id: str, payload: ProductUpdateRequest, seller: Caller = Depends(require_role("seller"))):
    changes = changes_from(payload)
    return sanitize(catalog.update_product(db["product"], to_obj_id(product_id), changes, owner_id=seller.id))

@app.delete("/seller/products/{product_id}", status_code=204)
def delete_product_of_seller(product_id: str, seller: Caller = Depends(require_role("seller"))):
    catalog.delete_product(db["product"], to_obj_id(product_id), owner_id=seller.id)
    return Response(status_code=204)

# Purchase Routes

def redeemable_promo(code: str) -> Dict:
    promo = db["promocode"].find_one({"code": code.strip().upper()})
    if not promo:
        raise NotFoundError("Promo code")
    if promo.get("is_used"):
        raise ValidationError("Promo code has already been used")
    if not DateRange(**promo["date_range"]).contains(datetime.now(timezone.utc)):
        raise ValidationError("Promo code is not active")
    return promo

def release_reservation(product_id: ObjectId, quantity: int, promo: Optional[Dict] = None) -> None:
    """Give back reserved stock and a claimed promo code after a failed checkout."""
    db["product"].update_one({"_id": product_id}, {"$inc": {"quantity": quantity}})
    if promo:
        db["promocode"].update_one(
            {"_id": promo["_id"]},
            {"$set": {"is_used": False, "updated_at": datetime.now(timezone.utc)}},
        )
    logger.warning("Released %d units of product %s after a failed purchase", quantity, product_id)

@app.post("/purchases", status_code=201)
def create_purchase(payload: PurchaseRequest, tourist: Caller = Depends(require_role("tourist"))):
    pid = to_obj_id(payload.product_id)
    product = db["product"].find_one({"_id": pid})
    if not product:
        raise NotFoundError("Product")
    promo = redeemable_promo(payload.promo_code) if payload.promo_code else None

    # reserve stock; the filter makes the decrement conditional
    reserved = db["product"].find_one_and_update(
        {"_id": pid, "quantity": {"$gte": payload.quantity}},
        {"$inc": {"quantity": -payload.quantity}},
        return_document=ReturnDocument.AFTER,
    )
    if reserved is None:
        raise ValidationError(f"Insufficient stock for {product['name']}")

    total = float(product["price"]) * payload.quantity
    if promo:
        claimed = db["promocode"].find_one_and_update(
            {"_id": promo["_id"], "is_used": False},
            {"$set": {"is_used": True, "updated_at": datetime.now(timezone.utc)}},
        )
        if claimed is None:
            release_reservation(pid, payload.quantity)
            raise ValidationError("Promo code has already been used")
        total *= 1 - float(promo["percent_off"]) / 100
        logger.info("Promo code %s redeemed by tourist %s", promo["code"], tourist.id)

    try:
        doc = build(
            PurchaseSchema,
            tourist=tourist.id,
            product=str(pid),
            quantity=payload.quantity,
            total_price=round(total, 2),
            payment_method=payload.payment_method,
            promo_code=promo["code"] if promo else None,
        )
        purchase_id = create_document("purchase", doc)
    except (MarketplaceError, PyMongoError):
        release_reservation(pid, payload.quantity, promo)
        raise
    return sanitize(db["purchase"].find_one({"_id": ObjectId(purchase_id)}))

@app.get("/purchases/mine")
def my_purchases(tourist: Caller = Depends(require_role("tourist"))):
    purchases = [sanitize(p) for p in db["purchase"].find({"tourist": tourist.id}).sort([("purchase_date", -1)])]
    product_ids = list({to_obj_id(p["product"]) for p in purchases})
    products = {str(d["_id"]): sanitize(d) for d in db["product"].find({"_id": {"$in": product_ids}})} if product_ids else {}
    for p in purchases:
        p["product"] = products.get(p["product"])
    return purchases

@app.get("/purchases/{purchase_id}")
def get_purchase(purchase_id: str, current_user: Caller = Depends(require_role("tourist", "admin"))):
    purchase = find_or_404("purchase", purchase_id, "Purchase")
    if current_user.role == "tourist":
        catalog.require_owner(purchase, current_user.id, "tourist", "Purchase")
    return sanitize(purchase)

# Promo Code Routes (admin)
@app.post("/promo-codes", status_code=201)
def create_promo_code(payload: PromoCodeRequest, admin: Caller = Depends(require_role("admin"))):
    doc = build(PromoCodeSchema, **payload.model_dump())
    ensure_unique("promocode", "code", doc["code"])
    promo_id = create_document("promocode", doc)
    return sanitize(db["promocode"].find_one({"_id": ObjectId(promo_id)}))

@app.get("/promo-codes")
def list_promo_codes(admin: Caller = Depends(require_role("admin"))):
    return [sanitize(p) for p in get_documents("promocode")]

@app.get("/promo-codes/{code}")
def get_promo_code(code: str, admin: Caller = Depends(require_role("admin"))):
    promo = db["promocode"].find_one({"code": code.strip().upper()})
    if not promo:
        raise NotFoundError("Promo code")
    return sanitize(promo)

@app.delete("/promo-codes/{promo_id}", status_code=204)
def delete_promo_code(promo_id: str, admin: Caller = Depends(require_role("admin"))):
    result = db["promocode"].delete_one({"_id": to_obj_id(promo_id)})
    if result.deleted_count == 0:
        raise NotFoundError("Promo code")
    return Response(status_code=204)

# Tour Guide Routes

def update_tour_guide_account(guide_id: ObjectId, payload: TourGuideUpdateRequest) -> Dict:
    current = db["tourguide"].find_one({"_id": guide_id})
    if not current:
        raise NotFoundError("Tour guide")
    changes = changes_from(payload)
    if "username" in changes and changes["username"] != current["username"]:
        ensure_account_unique("username", changes["username"], exclude_id=guide_id)
    if "email" in changes and changes["email"] != current["email"]:
        ensure_account_unique("email", changes["email"], exclude_id=guide_id)
    changes["updated_at"] = datetime.now(timezone.utc)
    updated = db["tourguide"].find_one_and_update(
        {"_id": guide_id}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise NotFoundError("Tour guide")
    return public(updated)

@app.get("/tour-guides")
def list_tour_guides():
    return [public(g) for g in db["tourguide"].find()]

@app.get("/tour-guides/{guide_id}")
def get_tour_guide(guide_id: str):
    return public(find_or_404("tourguide", guide_id, "Tour guide"))

@app.put("/tour-guides/{guide_id}")
def update_tour_guide(guide_id: str, payload: TourGuideUpdateRequest, admin: Caller = Depends(require_role("admin"))):
    return update_tour_guide_account(to_obj_id(guide_id), payload)

@app.delete("/tour-guides/{guide_id}", status_code=204)
def delete_tour_guide(guide_id: str, admin: Caller = Depends(require_role("admin"))):
    oid = to_obj_id(guide_id)
    result = db["tourguide"].delete_one({"_id": oid})
    if result.deleted_count == 0:
        raise NotFoundError("Tour guide")
    # owner fields hold the canonical lowercase hex form
    removed = db["itinerary"].delete_many({"tour_guide": str(oid)})
    logger.info("Deleted tour guide %s and %d itineraries", oid, removed.deleted_count)
    return Response(status_code=204)

@app.get("/tour-guide/profile")
def get_tour_guide_profile(guide: Caller = Depends(require_role("tour-guide"))):
    return public(find_or_404("tourguide", guide.id, "Tour guide"))

@app.put("/tour-guide/profile")
def update_tour_guide_profile(payload: TourGuideUpdateRequest, guide: Caller = Depends(require_role("tour-guide"))):
    return update_tour_guide_account(ObjectId(guide.id), payload)

# Itinerary Routes (shared by guide and tourist itineraries)

def update_owned(collection: str, schema: Type[BaseModel], doc_id: str, owner_field: str, resource: str, caller: Caller, payload: BaseModel) -> Dict:
    oid = to_obj_id(doc_id)
    current = catalog.require_owner(db[collection].find_one({"_id": oid}), caller.id, owner_field, resource)
    changes = changes_from(payload)
    revalidate(schema, {**current, **changes})
    changes["updated_at"] = datetime.now(timezone.utc)
    updated = db[collection].find_one_and_update({"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER)
    if not updated:
        raise NotFoundError(resource)
    return sanitize(updated)

def delete_owned(collection: str, doc_id: str, owner_field: str, resource: str, caller: Caller) -> None:
    oid = to_obj_id(doc_id)
    catalog.require_owner(db[collection].find_one({"_id": oid}), caller.id, owner_field, resource)
    db[collection].delete_one({"_id": oid})

@app.get("/itineraries")
def list_itineraries(tour_guide: Optional[str] = None):
    q = {"tour_guide": str(to_obj_id(tour_guide))} if tour_guide else {}
    return [sanitize(i) for i in db["itinerary"].find(q)]

def offers_day(itinerary: Dict, day: date) -> bool:
    return any(as_utc(slot["date"]).date() == day for slot in itinerary.get("available_dates", []))

@app.get("/itineraries/filter")
def filter_itineraries(
    budget: Optional[float] = Query(None, ge=0),
    on: Optional[date] = Query(None, alias="date"),
    preferences: Optional[str] = Query(None, description="Comma-separated activities"),
    language: Optional[str] = None,
):
    q: Dict[str, Any] = {}
    if budget is not None:
        q["price"] = {"$lte": budget}
    wanted = [p.strip() for p in (preferences or "").split(",") if p.strip()]
    if wanted:
        q["activities"] = {"$in": wanted}
    if language:
        q["language"] = language
    itineraries = db["itinerary"].find(q)
    return [sanitize(i) for i in itineraries if on is None or offers_day(i, on)]

@app.get("/itineraries/{itinerary_id}")
def get_itinerary(itinerary_id: str):
    return sanitize(find_or_404("itinerary", itinerary_id, "Itinerary"))

@app.post("/itineraries", status_code=201)
def create_itinerary(payload: ItineraryRequest, guide: Caller = Depends(require_role("tour-guide"))):
    doc = build(ItinerarySchema, tour_guide=guide.id, **payload.model_dump())
    itinerary_id = create_document("itinerary", doc)
    return sanitize(db["itinerary"].find_one({"_id": ObjectId(itinerary_id)}))

@app.put("/itineraries/{itinerary_id}")
def update_itinerary(itinerary_id: str, payload: ItineraryUpdateRequest, guide: Caller = Depends(require_role("tour-guide"))):
    return update_owned("itinerary", ItinerarySchema, itinerary_id, "tour_guide", "Itinerary", guide, payload)

@app.delete("/itineraries/{itinerary_id}", status_code=204)
def delete_itinerary(itinerary_id: str, guide: Caller = Depends(require_role("tour-guide"))):
    delete_owned("itinerary", itinerary_id, "tour_guide", "Itinerary", guide)
    return Response(status_code=204)

@app.get("/tourist-itineraries")
def list_tourist_itineraries(tourist: Optional[str] = None):
    q = {"tourist": str(to_obj_id(tourist))} if tourist else {}
    return [sanitize(i) for i in db["touristitinerary"].find(q)]

@app.get("/tourist-itineraries/{itinerary_id}")
def get_tourist_itinerary(itinerary_id: str):
    return sanitize(find_or_404("touristitinerary", itinerary_id, "Itinerary"))

@app.post("/tourist-itineraries", status_code=201)
def create_tourist_itinerary(payload: TouristItineraryRequest, tourist: Caller = Depends(require_role("tourist"))):
    doc = build(TouristItinerarySchema, tourist=tourist.id, **payload.model_dump())
    itinerary_id = create_document("touristitinerary", doc)
    return sanitize(db["touristitinerary"].find_one({"_id": ObjectId(itinerary_id)}))

@app.put("/tourist-itineraries/{itinerary_id}")
def update_tourist_itinerary(itinerary_id: str, payload: TouristItineraryUpdateRequest, tourist: Caller = Depends(require_role("tourist"))):
    return update_owned("touristitinerary", TouristItinerarySchema, itinerary_id, "tourist", "Itinerary", tourist, payload)

@app.delete("/tourist-itineraries/{itinerary_id}", status_code=204)
def delete_tourist_itinerary(itinerary_id: str, tourist: Caller = Depends(require_role("tourist"))):
    delete_owned("touristitinerary", itinerary_id, "tourist", "Itinerary", tourist)
    return Response(status_code=204)

# Itinerary Booking Routes
@app.post("/itinerary-bookings", status_code=201)
def book_itinerary(payload: ItineraryBookingRequest, tourist: Caller = Depends(require_role("tourist"))):
    iid = to_obj_id(payload.itinerary_id)
    itinerary = db["itinerary"].find_one({"_id": iid})
    if not itinerary:
        raise NotFoundError("Itinerary")
    doc = build(
        ItineraryBookingSchema,
        itinerary=str(iid),
        tourist=tourist.id,
        payment_type=payload.payment_type,
        payment_amount=round(float(itinerary["price"]) * payload.number_of_tickets, 2),
        number_of_tickets=payload.number_of_tickets,
    )
    booking_id = create_document("itinerarybooking", doc)
    db["itinerary"].update_one({"_id": iid}, {"$set": {"is_booked": True, "updated_at": datetime.now(timezone.utc)}})
    logger.info("Tourist %s booked %d tickets on itinerary %s", tourist.id, payload.number_of_tickets, iid)
    return sanitize(db["itinerarybooking"].find_one({"_id": ObjectId(booking_id)}))

@app.get("/itinerary-bookings")
def list_itinerary_bookings(current_user: Caller = Depends(require_role("tourist", "admin"))):
    q = {"tourist": current_user.id} if current_user.role == "tourist" else {}
    return [sanitize(b) for b in get_documents("itinerarybooking", q)]

@app.get("/itinerary-bookings/{booking_id}")
def get_itinerary_booking(booking_id: str, current_user: Caller = Depends(require_role("tourist", "admin"))):
    booking = find_or_404("itinerarybooking", booking_id, "Booking")
    if current_user.role == "tourist":
        catalog.require_owner(booking, current_user.id, "tourist", "Booking")
    return sanitize(booking)

@app.put("/itinerary-bookings/{booking_id}")
def update_itinerary_booking(booking_id: str, payload: ItineraryBookingUpdateRequest, tourist: Caller = Depends(require_role("tourist"))):
    oid = to_obj_id(booking_id)
    current = catalog.require_owner(db["itinerarybooking"].find_one({"_id": oid}), tourist.id, "tourist", "Booking")
    changes = changes_from(payload)
    if "number_of_tickets" in changes:
        ticket_price = float(current["payment_amount"]) / current["number_of_tickets"]
        changes["payment_amount"] = round(ticket_price * changes["number_of_tickets"], 2)
    changes["updated_at"] = datetime.now(timezone.utc)
    updated = db["itinerarybooking"].find_one_and_update({"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER)
    if not updated:
        raise NotFoundError("Booking")
    return sanitize(updated)

@app.delete("/itinerary-bookings/{booking_id}", status_code=204)
def cancel_itinerary_booking(booking_id: str, current_user: Caller = Depends(require_role("tourist", "admin"))):
    booking = find_or_404("itinerarybooking", booking_id, "Booking")
    if current_user.role == "tourist":
        catalog.require_owner(booking, current_user.id, "tourist", "Booking")
    db["itinerarybooking"].delete_one({"_id": booking["_id"]})
    # an itinerary stays booked while any booking on it remains
    if db["itinerarybooking"].count_documents({"itinerary": booking["itinerary"]}) == 0:
        db["itinerary"].update_one(
            {"_id": ObjectId(booking["itinerary"])},
            {"$set": {"is_booked": False, "updated_at": datetime.now(timezone.utc)}},
        )
    return Response(status_code=204)

# Bootstrap route for demo
@app.post("/init/bootstrap")
def bootstrap_admin():
    """Create a default admin if none exists (username: admin, password: Admin@123)."""
    if db["admin"].count_documents({}) > 0:
        raise ValidationError("Admin already exists")
    ensure_account_unique("username", "admin")
    ensure_account_unique("email", "admin@example.com")
    user_doc = build(
        AdminSchema,
        email="admin@example.com",
        username="admin",
        password_hash=hash_password("Admin@123"),
    )
    create_document("admin", user_doc)
    return {"message": "Admin created", "username": "admin", "password": "Admin@123"}

# Utility endpoints
@app.get("/")
def root():
    return {"message": "Tourism Marketplace API running"}

@app.get("/test")
def test_database():
    try:
        collections = db.list_collection_names() if db is not None else []
        return {"backend": "ok", "database": "ok" if db is not None else "missing", "collections": collections}
    except PyMongoError as e:
        return {"backend": "ok", "database": f"error: {e}"}
