import logging
import os
import re
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import bookings
import database
import quotations
from auth import (
    claim_admin_bootstrap,
    create_token,
    get_current_user,
    get_optional_user,
    has_role,
    hash_password,
    require_role,
    revoke_user_tokens,
    verify_password,
)
from business_settings import get_settings, set_logo, update_settings
from config import LOG_LEVEL, PORT, UPLOAD_DIR
from database import create_document, ensure_indexes, from_mongo, get_db, get_documents, object_id, to_mongo
from documents import render_booking_pdf, render_quotation_pdf
from errors import AuthError, ConflictError, NotFoundError, PermissionDeniedError, RentalError, ValidationError
from pricing import to_money
from schemas import Customer, Equipment, EquipmentStatus, Role, User

logger = logging.getLogger(__name__)

WRITE_ROLES = ["admin", "user"]
ADMIN_ONLY = ["admin"]


# ----------------------------
# Pydantic models (requests)
# ----------------------------
class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    role: Role = "user"


class LoginRequest(BaseModel):
    username: str
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=1)


class EquipmentUpdateRequest(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    daily_rate: Optional[Decimal] = Field(None, ge=0)
    weekly_rate: Optional[Decimal] = Field(None, ge=0)
    monthly_rate: Optional[Decimal] = Field(None, ge=0)
    status: Optional[EquipmentStatus] = None
    description: Optional[str] = None

    @field_validator("daily_rate", "weekly_rate", "monthly_rate")
    @classmethod
    def _to_cents(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return to_money(v) if v is not None else None


class CustomerCreateRequest(BaseModel):
    name: str
    phone: str
    national_id: str
    address: str
    email: Optional[EmailStr] = None


class CustomerUpdateRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    national_id: Optional[str] = None
    address: Optional[str] = None
    email: Optional[EmailStr] = None


class LineItemRequest(BaseModel):
    equipment_id: str
    quantity: int = Field(..., ge=1, strict=True)


class QuotationCreateRequest(BaseModel):
    customer_name: str
    items: List[LineItemRequest] = []
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class BookingCreateRequest(BaseModel):
    customer_name: Optional[str] = None
    quotation_id: Optional[str] = Field(None, description="Accepted quotation to book from")
    items: Optional[List[LineItemRequest]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    # anything unparsable becomes a zero deposit
    security_deposit: Any = None


class StatusRequest(BaseModel):
    status: str


class SettingsUpdateRequest(BaseModel):
    company_name: Optional[str] = None
    company_address: Optional[str] = None
    company_phone: Optional[str] = None
    company_email: Optional[str] = None
    default_currency: Optional[str] = None
    tax_rate: Optional[float] = Field(None, ge=0)
    quotation_validity_days: Optional[int] = Field(None, ge=0)
    theme: Optional[str] = Field(None, pattern="^(light|dark)$")
    email_notifications: Optional[bool] = None
    auto_save_drafts: Optional[bool] = None
    compact_mode: Optional[bool] = None


# ----------------------------
# FastAPI App
# ----------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if database.db is not None:
        ensure_indexes(database.db)
    else:
        logger.warning("DATABASE_URL not set; requests needing the database will fail")
    yield


app = FastAPI(title="Equipment Rental API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Static files for uploads
os.makedirs(UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")


@app.exception_handler(RentalError)
def rental_error_handler(request: Request, exc: RentalError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(PyMongoError)
def database_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Database failure on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ----------------------------
# Health/Test Endpoints
# ----------------------------
@app.get("/")
def root():
    return {"message": "Equipment Rental Backend Running"}


@app.get("/test")
def test_database():
    if database.db is None:
        return {"backend": "ok", "database": "not configured"}
    try:
        collections = database.db.list_collection_names()
        return {
            "backend": "ok",
            "database": "ok",
            "collections": collections,
        }
    except PyMongoError as e:
        logger.warning("Database check failed: %s", e)
        return {"backend": "ok", "database": "error"}


# ----------------------------
# Auth Endpoints
# ----------------------------
def _user_info(user: Dict) -> Dict:
    info = User(username=user.get("username"), role=user.get("role", "user"))
    return {"id": str(user.get("_id")), **info.model_dump()}


@app.post("/auth/register")
def register(payload: RegisterRequest, requester=Depends(get_optional_user), db: Database = Depends(get_db)):
    # Open registration only until the first admin exists; that account becomes the admin
    bootstrap = db["user"].find_one({"role": "admin"}) is None and claim_admin_bootstrap(db)
    if not bootstrap:
        if requester is None:
            raise AuthError("Not authenticated")
        if not has_role(requester, ADMIN_ONLY):
            raise PermissionDeniedError("Insufficient permissions")
    role = "admin" if bootstrap else payload.role

    if db["user"].find_one({"username": payload.username}):
        raise ConflictError("Username already registered")

    user_doc = {
        "username": payload.username,
        "role": role,
        "hashed_password": hash_password(payload.password),
        "created_at": datetime.now(timezone.utc),
        "updated_at": datetime.now(timezone.utc),
    }
    try:
        db["user"].insert_one(user_doc)
    except DuplicateKeyError:
        raise ConflictError("Username already registered")
    logger.info("Registered user %s with role %s", payload.username, role)
    token = create_token(user_doc)
    return {"token": token, **_user_info(user_doc)}


@app.post("/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"username": payload.username})
    if not user or not verify_password(payload.password, user.get("hashed_password")):
        logger.warning("Failed login for %s", payload.username)
        raise AuthError("Invalid credentials")
    token = create_token(user)
    return {"token": token, **_user_info(user)}


@app.get("/auth/me")
def me(user=Depends(get_current_user)):
    return _user_info(user)


@app.put("/auth/change-password")
def change_password(payload: ChangePasswordRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    if not verify_password(payload.current_password, user.get("hashed_password")):
        raise ValidationError("Invalid current password")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"hashed_password": hash_password(payload.new_password), "updated_at": datetime.now(timezone.utc)}},
    )
    # Old sessions end with the old password
    revoke_user_tokens(str(user["_id"]))
    return {"message": "Password updated successfully", "token": create_token(user)}


# ----------------------------
# Equipment
# ----------------------------
def _search(q: Optional[str], fields: List[str]) -> Dict:
    if not q:
        return {}
    pattern = re.escape(q)
    return {"$or": [{f: {"$regex": pattern, "$options": "i"}} for f in fields]}


def _find_or_404(db: Database, collection: str, ref: str, label: str) -> Dict:
    doc = db[collection].find_one({"_id": object_id(ref, label)})
    if not doc:
        raise NotFoundError(f"{label} not found")
    return from_mongo(doc)


def _update_fields(db: Database, collection: str, ref: str, label: str, changes: Dict) -> Dict:
    if not changes:
        raise ValidationError("Nothing to update")
    changes["updated_at"] = datetime.now(timezone.utc)
    res = db[collection].update_one({"_id": object_id(ref, label)}, {"$set": to_mongo(changes)})
    if res.matched_count == 0:
        raise NotFoundError(f"{label} not found")
    return _find_or_404(db, collection, ref, label)


def _delete(db: Database, collection: str, ref: str, label: str) -> Dict:
    res = db[collection].delete_one({"_id": object_id(ref, label)})
    if res.deleted_count == 0:
        raise NotFoundError(f"{label} not found")
    return {"message": f"{label} deleted", "id": ref}


@app.get("/equipment")
def list_equipment(
    q: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    db: Database = Depends(get_db),
):
    query = _search(q, ["name", "category", "description"])
    if status:
        query["status"] = status
    if category:
        query["category"] = category
    return {"items": get_documents(db, "equipment", query)}


@app.get("/equipment/{equipment_id}")
def get_equipment(equipment_id: str, db: Database = Depends(get_db)):
    return _find_or_404(db, "equipment", equipment_id, "Equipment")


@app.post("/equipment")
def create_equipment(payload: Equipment, user=Depends(require_role(WRITE_ROLES)), db: Database = Depends(get_db)):
    doc = create_document(db, "equipment", payload.model_dump())
    logger.info("Equipment %s added by %s", doc["name"], user.get("username"))
    return {"message": "Equipment created", "equipment": doc}


@app.put("/equipment/{equipment_id}")
def update_equipment(
    equipment_id: str,
    payload: EquipmentUpdateRequest,
    user=Depends(require_role(WRITE_ROLES)),
    db: Database = Depends(get_db),
):
    # Status is a manual field; bookings never change it
    changes = payload.model_dump(exclude_unset=True)
    return _update_fields(db, "equipment", equipment_id, "Equipment", changes)


@app.delete("/equipment/{equipment_id}")
def delete_equipment(equipment_id: str, user=Depends(require_role(WRITE_ROLES)), db: Database = Depends(get_db)):
    return _delete(db, "equipment", equipment_id, "Equipment")


# ----------------------------
# Customers
# ----------------------------
@app.get("/customers")
def list_customers(q: Optional[str] = None, db: Database = Depends(get_db)):
    query = _search(q, ["name", "phone", "national_id", "email"])
    return {"items": get_documents(db, "customer", query)}


@app.get("/customers/{customer_id}")
def get_customer(customer_id: str, db: Database = Depends(get_db)):
    return _find_or_404(db, "customer", customer_id, "Customer")


@app.post("/customers")
def create_customer(payload: CustomerCreateRequest, user=Depends(require_role(WRITE_ROLES)), db: Database = Depends(get_db)):
    customer = Customer(**payload.model_dump())
    doc = create_document(db, "customer", customer.model_dump())
    return {"message": "Customer created", "customer": doc}


@app.put("/customers/{customer_id}")
def update_customer(
    customer_id: str,
    payload: CustomerUpdateRequest,
    user=Depends(require_role(WRITE_ROLES)),
    db: Database = Depends(get_db),
):
    return _update_fields(db, "customer", customer_id, "Customer", payload.model_dump(exclude_unset=True))


@app.delete("/customers/{customer_id}")
def delete_customer(customer_id: str, user=Depends(require_role(WRITE_ROLES)), db: Database = Depends(get_db)):
    return _delete(db, "customer", customer_id, "Customer")


# ----------------------------
# Quotations
# ----------------------------
@app.get("/quotations")
def list_quotations(status: Optional[str] = None, db: Database = Depends(get_db)):
    return {"items": quotations.list_quotations(db, status)}


@app.get("/quotations/{ref}")
def get_quotation(ref: str, db: Database = Depends(get_db)):
    return quotations.get_quotation(db, ref)


@app.post("/quotations")
def create_quotation(payload: QuotationCreateRequest, user=Depends(require_role(WRITE_ROLES)), db: Database = Depends(get_db)):
    return quotations.create_quotation(
        db,
        customer_name=payload.customer_name,
        items=[item.model_dump() for item in payload.items],
        start_date=payload.start_date,
        end_date=payload.end_date,
    )


@app.put("/quotations/{ref}/send")
def send_quotation(ref: str, user=Depends(require_role(WRITE_ROLES)), db: Database = Depends(get_db)):
    return quotations.send_quotation(db, ref)


@app.put("/quotations/{ref}/accept")
def accept_quotation(ref: str, user=Depends(require_role(WRITE_ROLES)), db: Database = Depends(get_db)):
    return quotations.accept_quotation(db, ref)


@app.put("/quotations/{ref}/decline")
def decline_quotation(ref: str, user=Depends(require_role(WRITE_ROLES)), db: Database = Depends(get_db)):
    return quotations.decline_quotation(db, ref)


@app.get("/quotations/{ref}/pdf")
def quotation_pdf(ref: str, db: Database = Depends(get_db)):
    quotation = quotations.get_quotation(db, ref)
    content = render_quotation_pdf(quotation, get_settings(db))
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={quotation['quotation_id']}.pdf"},
    )


# ----------------------------
# Bookings
# ----------------------------
@app.get("/bookings")
def list_bookings(status: Optional[str] = None, db: Database = Depends(get_db)):
    return {"items": bookings.list_bookings(db, status)}


@app.get("/bookings/{ref}")
def get_booking(ref: str, db: Database = Depends(get_db)):
    return bookings.get_booking(db, ref)


@app.post("/bookings")
def create_booking(payload: BookingCreateRequest, user=Depends(require_role(WRITE_ROLES)), db: Database = Depends(get_db)):
    items = [item.model_dump() for item in payload.items] if payload.items else None
    return bookings.create_booking(
        db,
        customer_name=payload.customer_name,
        items=items,
        quotation_ref=payload.quotation_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        security_deposit=payload.security_deposit,
    )


@app.put("/bookings/{ref}/start")
def start_rental(ref: str, user=Depends(require_role(WRITE_ROLES)), db: Database = Depends(get_db)):
    return bookings.start_rental(db, ref)


@app.put("/bookings/{ref}/complete")
def complete_booking(ref: str, user=Depends(require_role(WRITE_ROLES)), db: Database = Depends(get_db)):
    return bookings.complete_return(db, ref)


@app.put("/bookings/{ref}/cancel")
def cancel_booking(ref: str, user=Depends(require_role(WRITE_ROLES)), db: Database = Depends(get_db)):
    return bookings.cancel_booking(db, ref)


@app.put("/bookings/{ref}/status")
def override_booking_status(
    ref: str,
    payload: StatusRequest,
    user=Depends(require_role(ADMIN_ONLY)),
    db: Database = Depends(get_db),
):
    return bookings.override_status(db, ref, payload.status)


@app.get("/bookings/{ref}/pdf")
def booking_pdf(ref: str, db: Database = Depends(get_db)):
    booking = bookings.get_booking(db, ref)
    content = render_booking_pdf(booking, get_settings(db))
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={booking['booking_id']}.pdf"},
    )


# ----------------------------
# Settings
# ----------------------------
@app.get("/settings")
def read_settings(db: Database = Depends(get_db)):
    return get_settings(db)


@app.put("/settings")
def write_settings(payload: SettingsUpdateRequest, user=Depends(require_role(ADMIN_ONLY)), db: Database = Depends(get_db)):
    return update_settings(db, payload.model_dump(exclude_unset=True))


@app.post("/settings/logo")
def upload_logo(logo: UploadFile = File(...), user=Depends(require_role(ADMIN_ONLY)), db: Database = Depends(get_db)):
    if not logo.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    # Save file to uploads directory
    safe_name = f"logo_{int(datetime.now().timestamp())}_{os.path.basename(logo.filename)}"
    dest_path = os.path.join(UPLOAD_DIR, safe_name)
    with open(dest_path, "wb") as f:
        f.write(logo.file.read())
    logo_path = f"/uploads/{safe_name}"
    set_logo(db, logo_path)
    return {"logo_path": logo_path}


# ----------------------------
# Dashboard
# ----------------------------
@app.get("/dashboard")
def dashboard(db: Database = Depends(get_db)):
    recent = [
        {
            "type": "quotation",
            "title": f"New quotation {q['quotation_id']}",
            "customer": q["customer_name"],
            "status": q["status"],
            "created_at": q.get("created_at"),
        }
        for q in get_documents(db, "quotation", limit=2)
    ] + [
        {
            "type": "booking",
            "title": f"New booking {b['booking_id']}",
            "customer": b["customer_name"],
            "status": b["status"],
            "created_at": b.get("created_at"),
        }
        for b in get_documents(db, "booking", limit=2)
    ]
    recent.sort(key=lambda a: a["created_at"] or datetime.min, reverse=True)
    return {
        "equipment": db["equipment"].count_documents({}),
        "customers": db["customer"].count_documents({}),
        "pending_quotations": db["quotation"].count_documents({"status": {"$in": ["Draft", "Sent"]}}),
        "bookings_on_rent": db["booking"].count_documents({"status": "On Rent"}),
        "recent_activity": recent,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
