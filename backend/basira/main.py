from __future__ import annotations

import datetime as dt
import logging
import math
from typing import Annotated, Any, Literal

from fastapi import Depends, FastAPI, Path, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AfterValidator, BaseModel, Field
from sqlalchemy import func, or_, select, update as sa_update
from sqlalchemy.orm import Session, selectinload
from starlette.middleware.trustedhost import TrustedHostMiddleware

from basira import approval
from basira.auth import get_current_user, get_optional_user
from basira.cache import CacheKind, PropertyCache
from basira.config import (
    allowed_hosts,
    bootstrap_admin_email,
    bootstrap_admin_name,
    bootstrap_admin_password,
    cors_origins,
    enforce_secure_secrets,
    log_level,
)
from basira.db import get_db, session_scope
from basira.errors import ApiError, Forbidden, NotFound, Unauthenticated, ValidationFailed
from basira.models import (
    PUBLIC_LISTING_STATUSES,
    ApprovalStatus,
    Currency,
    Inquiry,
    InquiryStatus,
    Lead,
    LeadStatus,
    ListingStatus,
    ModerationLog,
    Property,
    PropertyImage,
    PropertyType,
    User,
)
from basira.permissions import (
    actor_hierarchy,
    can_auto_approve,
    can_manage,
    has_permission,
    is_admin_family,
    require_admin_family,
    require_hierarchy,
    require_permission,
    require_property_moderator,
)
from basira.rate_limit import limiter
from basira.roles import PermissionFlag, Role, decode_role, role_display_name
from basira.security import create_access_token, hash_password, verify_password
from basira.users import create_user, delete_user, get_user_or_404, normalize_email, update_user, user_stats
from basira.utils.cloudinary_storage import destroy as cloudinary_destroy


logging.basicConfig(level=log_level(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Basira Real Estate API")

# Production hardening: ensure we don't run with dangerous defaults.
enforce_secure_secrets()

# Optional host protection (recommend configuring ALLOWED_HOSTS in prod).
app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts())


@app.middleware("http")
async def _security_headers(request, call_next):
    resp = await call_next(request)
    resp.headers.setdefault("X-Content-Type-Options", "nosniff")
    resp.headers.setdefault("X-Frame-Options", "DENY")
    resp.headers.setdefault("Referrer-Policy", "no-referrer")
    resp.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    return resp


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One cache per process, dropped on shutdown.
app.state.property_cache = PropertyCache()


# -----------------------
# Error handling
# -----------------------
@app.exception_handler(ApiError)
async def _api_error(request: Request, exc: ApiError):
    if exc.status_code == 401:
        logger.debug("Unauthenticated %s %s: %s", request.method, request.url.path, exc.message)
    elif exc.status_code == 403:
        logger.warning("Forbidden %s %s: %s", request.method, request.url.path, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": "Validation failed", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def _unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# -----------------------
# Lifecycle
# -----------------------
@app.on_event("startup")
def seed_admin_user() -> None:
    """
    Seed the first administrator from BOOTSTRAP_ADMIN_* when no admin exists.
    """
    email = bootstrap_admin_email()
    password = bootstrap_admin_password()
    if not email or not password:
        return
    try:
        with session_scope() as db:
            exists = db.execute(select(User.id).where(User.role == Role.ADMIN.value).limit(1)).first()
            if exists:
                return
            create_user(db, email=email, password=password, name=bootstrap_admin_name(), role=Role.ADMIN)
            logger.info("Seeded bootstrap admin %s", email)
    except Exception:
        # If the DB isn't migrated yet, seed on a later start.
        logger.warning("Bootstrap admin seed skipped", exc_info=True)


@app.on_event("shutdown")
def drop_property_cache() -> None:
    app.state.property_cache.clear()


# -----------------------
# Dependencies
# -----------------------
def get_property_cache(request: Request) -> PropertyCache:
    return request.app.state.property_cache


def get_image_deleter():
    return cloudinary_destroy


require_admin = require_hierarchy(1)
require_team_leader = require_hierarchy(3)


def require_property_submitter(user: Annotated[User, Depends(get_current_user)]) -> User:
    # Staff with property management rights, or plain users submitting for review.
    if has_permission(user, PermissionFlag.CAN_MANAGE_PROPERTIES) or decode_role(user.role) is Role.USER:
        return user
    raise Forbidden("Access denied. You cannot submit properties.")


def _log_moderation(
    db: Session,
    *,
    actor_user_id: int,
    entity_type: str,
    entity_id: int,
    action: str,
    reason: str = "",
) -> None:
    db.add(
        ModerationLog(
            actor_user_id=int(actor_user_id),
            entity_type=(entity_type or "").strip(),
            entity_id=int(entity_id),
            action=(action or "").strip(),
            reason=(reason or "").strip(),
        )
    )


# -----------------------
# Serialization / pagination
# -----------------------
PUBLIC_DEFAULT_LIMIT, PUBLIC_MAX_LIMIT = 12, 50
ADMIN_DEFAULT_LIMIT, ADMIN_MAX_LIMIT = 100, 200
MAX_PAGE = 100_000

# Row ids are signed 64-bit in every supported store.
MAX_ENTITY_ID = 2**63 - 1
EntityId = Annotated[int, Path(ge=1, le=MAX_ENTITY_ID)]


def _iso(v: dt.datetime | None) -> str | None:
    return v.isoformat() if v is not None else None


def _user_out(u: User) -> dict[str, Any]:
    role = decode_role(u.role)
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name,
        "phone": u.phone,
        "role": role.value if role is not None else u.role,
        "role_name": role_display_name(role),
        "hierarchy": u.hierarchy,
        "permissions": dict(u.permissions or {}),
        "is_active": bool(u.is_active),
        "created_by_id": u.created_by_id,
        "last_login": _iso(u.last_login),
        "created_at": _iso(u.created_at),
    }


def _property_out(p: Property) -> dict[str, Any]:
    return {
        "id": p.id,
        "title": p.title,
        "description": p.description,
        "property_type": p.property_type,
        "listing_status": p.listing_status,
        "price": p.price,
        "currency": p.currency,
        "location": p.location,
        "bedrooms": p.bedrooms,
        "bathrooms": p.bathrooms,
        "area_sqm": p.area_sqm,
        "is_featured": bool(p.is_featured),
        "is_active": bool(p.is_active),
        "is_archived": bool(p.is_archived),
        "archived_at": _iso(p.archived_at),
        "views": int(p.views or 0),
        "images": [{"id": i.id, "url": i.url, "sort_order": i.sort_order} for i in (p.images or [])],
        "created_by_id": p.created_by_id,
        "submitted_by_id": p.submitted_by_id,
        "approval_status": p.approval_status,
        "approved_by_id": p.approved_by_id,
        "approval_date": _iso(p.approval_date),
        "rejection_reason": p.rejection_reason,
        "created_at": _iso(p.created_at),
        "updated_at": _iso(p.updated_at),
    }


def _inquiry_out(i: Inquiry) -> dict[str, Any]:
    return {
        "id": i.id,
        "property_id": i.property_id,
        "user_id": i.user_id,
        "assigned_to_id": i.assigned_to_id,
        "name": i.name,
        "email": i.email,
        "phone": i.phone,
        "message": i.message,
        "status": i.status,
        "notes": i.notes,
        "created_at": _iso(i.created_at),
    }


def _lead_out(lead: Lead) -> dict[str, Any]:
    return {
        "id": lead.id,
        "name": lead.name,
        "email": lead.email,
        "phone": lead.phone,
        "message": lead.message,
        "source": lead.source,
        "status": lead.status,
        "notes": lead.notes,
        "assigned_to_id": lead.assigned_to_id,
        "created_at": _iso(lead.created_at),
    }


def _clamp_limit(limit: int | None, *, default: int, maximum: int) -> int:
    return min(int(limit or default), maximum)


def _pagination(page: int, limit: int, total: int) -> dict[str, int]:
    return {"page": page, "limit": limit, "total": total, "pages": max(1, math.ceil(total / limit))}


def _paginated(db: Session, stmt, *, page: int, limit: int, serialize) -> dict[str, Any]:
    total = db.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    rows = db.execute(stmt.offset((page - 1) * limit).limit(limit)).scalars().all()
    return {"items": [serialize(r) for r in rows], "pagination": _pagination(page, limit, int(total))}


def _get_property_or_404(db: Session, property_id: int) -> Property:
    p = db.get(Property, property_id)
    if p is None:
        raise NotFound("Property not found")
    return p


def _resolve_assignee(db: Session, caller: User, assignee_id: int | None) -> int | None:
    if assignee_id is None:
        return None
    assignee = db.get(User, assignee_id)
    if assignee is None or not assignee.is_active or not is_admin_family(assignee):
        raise ValidationFailed("Assignee must be an active staff member")
    if not can_manage(caller, assignee):
        raise Forbidden("Cannot assign to a user with higher authority level")
    return assignee.id


def _auth_response(u: User, message: str) -> dict[str, Any]:
    return {"message": message, "token": create_access_token(user_id=u.id), "user": _user_out(u)}


# -----------------------
# Schemas
# -----------------------
_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
_PHONE_PATTERN = r"^\+?[1-9]\d{0,15}$"


def _validate_role(v: str) -> str:
    role = decode_role(v)
    if role is None:
        raise ValueError("Invalid role")
    return role.value


RoleName = Annotated[str, AfterValidator(_validate_role)]


class RegisterIn(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    email: str = Field(pattern=_EMAIL_PATTERN)
    password: str = Field(min_length=6)
    phone: str = Field(default="", pattern=r"^(\+?[1-9]\d{0,15})?$")


class LoginIn(BaseModel):
    email: str = Field(pattern=_EMAIL_PATTERN)
    password: str = Field(min_length=1)


class StaffCreateIn(RegisterIn):
    role: RoleName = Role.SALES_AGENT.value


class ProfileUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=50)
    phone: str | None = Field(default=None, pattern=_PHONE_PATTERN)


class ChangePasswordIn(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


class UserUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=50)
    email: str | None = Field(default=None, pattern=_EMAIL_PATTERN)
    phone: str | None = Field(default=None, pattern=_PHONE_PATTERN)
    role: RoleName | None = None
    is_active: bool | None = None


class PropertyImageIn(BaseModel):
    url: str = Field(min_length=1, max_length=512)
    public_id: str = Field(default="", max_length=255)


class PropertyCreateIn(BaseModel):
    title: str = Field(min_length=5, max_length=100)
    description: str = Field(min_length=20, max_length=2000)
    property_type: PropertyType
    listing_status: ListingStatus
    price: float = Field(ge=0, allow_inf_nan=False)
    currency: Currency = "EGP"
    location: str = Field(default="", max_length=255)
    bedrooms: int | None = Field(default=None, ge=0, le=1000)
    bathrooms: int | None = Field(default=None, ge=0, le=1000)
    area_sqm: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    is_featured: bool = False
    images: list[PropertyImageIn] = Field(default_factory=list)


class PropertyUpdateIn(BaseModel):
    title: str | None = Field(default=None, min_length=5, max_length=100)
    description: str | None = Field(default=None, min_length=20, max_length=2000)
    property_type: PropertyType | None = None
    listing_status: ListingStatus | None = None
    price: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    currency: Currency | None = None
    location: str | None = Field(default=None, max_length=255)
    bedrooms: int | None = Field(default=None, ge=0, le=1000)
    bathrooms: int | None = Field(default=None, ge=0, le=1000)
    area_sqm: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    is_featured: bool | None = None
    is_active: bool | None = None
    images: list[PropertyImageIn] | None = None


class RejectIn(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class InquiryIn(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    email: str = Field(pattern=_EMAIL_PATTERN)
    phone: str = Field(default="", max_length=32)
    message: str = Field(default="", max_length=1000)


class InquiryUpdateIn(BaseModel):
    status: InquiryStatus | None = None
    notes: str | None = Field(default=None, max_length=2000)
    assigned_to_id: int | None = Field(default=None, ge=1, le=MAX_ENTITY_ID)


class LeadIn(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    phone: str = Field(min_length=5, max_length=32)
    email: str = Field(default="", max_length=255)
    message: str = Field(default="", max_length=1000)
    source: str = Field(default="website", max_length=80)


class LeadUpdateIn(BaseModel):
    status: LeadStatus | None = None
    notes: str | None = Field(default=None, max_length=2000)
    assigned_to_id: int | None = Field(default=None, ge=1, le=MAX_ENTITY_ID)


# -----------------------
# Health
# -----------------------
@app.get("/health")
def health():
    return {"ok": True}


# -----------------------
# Auth
# -----------------------
@app.post("/auth/register", status_code=201)
def register(data: RegisterIn, db: Annotated[Session, Depends(get_db)]):
    u = create_user(db, email=data.email, password=data.password, name=data.name, phone=data.phone, role=Role.USER)
    return _auth_response(u, "User registered successfully")


@app.post("/auth/login")
def login(data: LoginIn, db: Annotated[Session, Depends(get_db)]):
    email = normalize_email(data.email)
    limiter.hit(key=f"auth:login:{email}", limit=10, window_seconds=15 * 60, detail="Too many login attempts")
    u = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if u is None or not verify_password(data.password, u.password_hash):
        raise Unauthenticated("Invalid credentials")
    if not u.is_active:
        raise Unauthenticated("Account is deactivated")
    u.last_login = dt.datetime.now(dt.timezone.utc)
    db.flush()
    return _auth_response(u, "Login successful")


@app.post("/auth/admin-register", status_code=201)
def admin_register(
    data: StaffCreateIn,
    db: Annotated[Session, Depends(get_db)],
    me: Annotated[User, Depends(require_admin)],
):
    u = create_user(
        db,
        email=data.email,
        password=data.password,
        name=data.name,
        phone=data.phone,
        role=decode_role(data.role) or Role.SALES_AGENT,
        created_by=me,
    )
    return {"message": "Admin user created successfully", "user": _user_out(u)}


@app.get("/auth/me")
def auth_me(me: Annotated[User, Depends(get_current_user)]):
    return {"user": _user_out(me)}


@app.put("/auth/profile")
def update_profile(
    data: ProfileUpdateIn,
    db: Annotated[Session, Depends(get_db)],
    me: Annotated[User, Depends(get_current_user)],
):
    if data.name is not None:
        me.name = data.name.strip()
    if data.phone is not None:
        me.phone = data.phone.strip()
    db.flush()
    return {"message": "Profile updated successfully", "user": _user_out(me)}


@app.post("/auth/change-password")
def change_password(
    data: ChangePasswordIn,
    db: Annotated[Session, Depends(get_db)],
    me: Annotated[User, Depends(get_current_user)],
):
    if not verify_password(data.current_password, me.password_hash):
        raise ValidationFailed("Current password is incorrect")
    me.password_hash = hash_password(data.new_password)
    db.flush()
    return {"message": "Password changed successfully"}


# -----------------------
# Users (admin)
# -----------------------
@app.get("/users")
def list_users(
    db: Annotated[Session, Depends(get_db)],
    _: Annotated[User, Depends(require_admin)],
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int | None = Query(None, ge=1),
    role: str | None = None,
    search: str | None = None,
):
    lim = _clamp_limit(limit, default=ADMIN_DEFAULT_LIMIT, maximum=ADMIN_MAX_LIMIT)
    stmt = select(User).order_by(User.created_at.desc(), User.id.desc())
    if role:
        r = decode_role(role)
        if r is None:
            raise ValidationFailed("Invalid role")
        stmt = stmt.where(User.role == r.value)
    if search and search.strip():
        like = f"%{search.strip()}%"
        stmt = stmt.where(or_(User.name.ilike(like), User.email.ilike(like)))
    return _paginated(db, stmt, page=page, limit=lim, serialize=_user_out)


@app.get("/users/admins")
def list_staff(
    db: Annotated[Session, Depends(get_db)],
    _: Annotated[User, Depends(require_admin)],
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int | None = Query(None, ge=1),
):
    lim = _clamp_limit(limit, default=ADMIN_DEFAULT_LIMIT, maximum=ADMIN_MAX_LIMIT)
    stmt = select(User).where(User.role != Role.USER.value).order_by(User.hierarchy.asc(), User.name.asc(), User.id.asc())
    return _paginated(db, stmt, page=page, limit=lim, serialize=_user_out)


@app.post("/users", status_code=201)
def create_staff_user(
    data: StaffCreateIn,
    db: Annotated[Session, Depends(get_db)],
    me: Annotated[User, Depends(require_admin)],
):
    u = create_user(
        db,
        email=data.email,
        password=data.password,
        name=data.name,
        phone=data.phone,
        role=decode_role(data.role) or Role.SALES_AGENT,
        created_by=me,
    )
    return {"message": "User created successfully", "user": _user_out(u)}


@app.get("/users/stats/overview")
def users_overview(db: Annotated[Session, Depends(get_db)], _: Annotated[User, Depends(require_admin)]):
    return user_stats(db)


@app.get("/users/{user_id}")
def get_user(user_id: EntityId, db: Annotated[Session, Depends(get_db)], _: Annotated[User, Depends(require_admin)]):
    return {"user": _user_out(get_user_or_404(db, user_id))}


@app.put("/users/{user_id}")
def edit_user(
    user_id: EntityId,
    data: UserUpdateIn,
    db: Annotated[Session, Depends(get_db)],
    me: Annotated[User, Depends(require_admin)],
):
    target = get_user_or_404(db, user_id)
    u = update_user(db, target, me, data.model_dump(exclude_unset=True))
    return {"message": "User updated successfully", "user": _user_out(u)}


@app.delete("/users/{user_id}")
def remove_user(
    user_id: EntityId,
    db: Annotated[Session, Depends(get_db)],
    me: Annotated[User, Depends(require_admin)],
    cache: Annotated[PropertyCache, Depends(get_property_cache)],
):
    delete_user(db, user_id, me)
    _log_moderation(db, actor_user_id=me.id, entity_type="user", entity_id=user_id, action="delete")
    db.flush()
    # Ownership of properties moved; every cached payload may be stale.
    cache.clear()
    return {"message": "User deleted successfully and records reassigned"}


# -----------------------
# Properties
# -----------------------
_SORT_COLUMNS = {
    "created_at": Property.created_at,
    "price": Property.price,
    "views": Property.views,
    "title": Property.title,
}


@app.get("/properties")
def list_properties(
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[PropertyCache, Depends(get_property_cache)],
    user: Annotated[User | None, Depends(get_optional_user)],
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int | None = Query(None, ge=1),
    property_type: PropertyType | None = Query(None, alias="type"),
    status: ListingStatus | None = None,
    min_price: float | None = Query(None, ge=0, allow_inf_nan=False),
    max_price: float | None = Query(None, ge=0, allow_inf_nan=False),
    featured: bool | None = None,
    search: str | None = Query(None, max_length=100),
    sort_by: Literal["created_at", "price", "views", "title"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    approval_status: Literal["pending", "approved", "rejected"] | None = None,
    archived: bool | None = None,
    cache_bust: str | None = Query(None, alias="_t"),
):
    admin_view = is_admin_family(user)
    if admin_view:
        lim = _clamp_limit(limit, default=ADMIN_DEFAULT_LIMIT, maximum=ADMIN_MAX_LIMIT)
    else:
        lim = _clamp_limit(limit, default=PUBLIC_DEFAULT_LIMIT, maximum=PUBLIC_MAX_LIMIT)

    params = {
        "page": page,
        "limit": lim,
        "type": property_type,
        "status": status,
        "min_price": min_price,
        "max_price": max_price,
        "featured": featured,
        "search": (search or "").strip() or None,
        "sort_by": sort_by,
        "sort_order": sort_order,
        "approval_status": approval_status if admin_view else None,
        "archived": archived if admin_view else None,
    }
    role = decode_role(user.role) if user is not None else None
    key = PropertyCache.list_key(params, role.value if role is not None else None)
    cached = cache.get(CacheKind.LIST, key, bypass=cache_bust is not None)
    if cached is not None:
        return cached

    stmt = select(Property).options(selectinload(Property.images))
    if admin_view:
        if approval_status:
            stmt = stmt.where(Property.approval_status == approval_status)
        stmt = stmt.where(Property.is_archived.is_(bool(archived)))
        if status:
            stmt = stmt.where(Property.listing_status == status)
    else:
        stmt = stmt.where(
            Property.approval_status == ApprovalStatus.APPROVED.value,
            Property.is_active.is_(True),
            Property.is_archived.is_(False),
            Property.listing_status.in_(PUBLIC_LISTING_STATUSES),
        )
        if status:
            stmt = stmt.where(Property.listing_status == status)
    if property_type:
        stmt = stmt.where(Property.property_type == property_type)
    if min_price is not None:
        stmt = stmt.where(Property.price >= min_price)
    if max_price is not None:
        stmt = stmt.where(Property.price <= max_price)
    if featured is not None:
        stmt = stmt.where(Property.is_featured.is_(featured))
    if params["search"]:
        like = f"%{params['search']}%"
        stmt = stmt.where(or_(Property.title.ilike(like), Property.description.ilike(like), Property.location.ilike(like)))

    col = _SORT_COLUMNS[sort_by]
    stmt = stmt.order_by(col.asc() if sort_order == "asc" else col.desc(), Property.id.desc())

    payload = _paginated(db, stmt, page=page, limit=lim, serialize=_property_out)
    cache.set(CacheKind.LIST, key, payload)
    return payload


@app.get("/properties/pending")
def pending_properties(
    db: Annotated[Session, Depends(get_db)],
    _: Annotated[User, Depends(require_property_moderator())],
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int | None = Query(None, ge=1),
):
    lim = _clamp_limit(limit, default=ADMIN_DEFAULT_LIMIT, maximum=ADMIN_MAX_LIMIT)
    stmt = (
        select(Property)
        .options(selectinload(Property.images))
        .where(Property.approval_status == ApprovalStatus.PENDING.value)
        .order_by(Property.created_at.desc(), Property.id.desc())
    )
    return _paginated(db, stmt, page=page, limit=lim, serialize=_property_out)


@app.get("/properties/my-submissions")
def my_submissions(
    db: Annotated[Session, Depends(get_db)],
    me: Annotated[User, Depends(get_current_user)],
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int | None = Query(None, ge=1),
    approval_status: Literal["pending", "approved", "rejected"] | None = None,
):
    lim = _clamp_limit(limit, default=PUBLIC_DEFAULT_LIMIT, maximum=PUBLIC_MAX_LIMIT)
    stmt = (
        select(Property)
        .options(selectinload(Property.images))
        .where(or_(Property.submitted_by_id == me.id, Property.created_by_id == me.id))
        .order_by(Property.created_at.desc(), Property.id.desc())
    )
    if approval_status:
        stmt = stmt.where(Property.approval_status == approval_status)
    return _paginated(db, stmt, page=page, limit=lim, serialize=_property_out)


@app.get("/properties/stats/overview")
def property_stats(
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[PropertyCache, Depends(get_property_cache)],
    _: Annotated[User, Depends(require_admin_family())],
):
    cached = cache.get(CacheKind.STATS, "overview")
    if cached is not None:
        return cached

    total, total_views, avg_price = db.execute(
        select(func.count(Property.id), func.coalesce(func.sum(Property.views), 0), func.avg(Property.price))
    ).one()

    def _grouped(col) -> list[dict[str, Any]]:
        rows = db.execute(select(col, func.count(Property.id)).group_by(col).order_by(col)).all()
        return [{"value": value, "count": int(count)} for value, count in rows]

    payload = {
        "overview": {
            "total_properties": int(total or 0),
            "total_views": int(total_views or 0),
            "average_price": float(avg_price or 0),
        },
        "by_type": _grouped(Property.property_type),
        "by_status": _grouped(Property.listing_status),
        "by_approval_status": _grouped(Property.approval_status),
    }
    cache.set(CacheKind.STATS, "overview", payload)
    return payload


@app.post("/properties/cache/clear")
def clear_property_cache(
    cache: Annotated[PropertyCache, Depends(get_property_cache)],
    _: Annotated[User, Depends(require_admin_family())],
):
    cache.clear()
    return {"message": "Property caches cleared"}


def _track_view(db: Session, property_id: int) -> None:
    db.execute(
        sa_update(Property)
        .where(Property.id == property_id)
        .values(views=Property.views + 1)
        .execution_options(synchronize_session=False)
    )


@app.get("/properties/{property_id}")
def get_property(
    property_id: EntityId,
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[PropertyCache, Depends(get_property_cache)],
    user: Annotated[User | None, Depends(get_optional_user)],
    cache_bust: str | None = Query(None, alias="_t"),
):
    admin_view = is_admin_family(user)
    key = PropertyCache.detail_key(property_id, "admin" if admin_view else "public")
    bypass = cache_bust is not None

    cached = cache.get(CacheKind.DETAIL, key, bypass=bypass)
    if cached is not None:
        if not admin_view:
            _track_view(db, property_id)
            prop = cached["property"]
            cached = {"property": {**prop, "views": int(prop.get("views") or 0) + 1}}
            cache.set(CacheKind.DETAIL, key, cached)
        return cached

    p = _get_property_or_404(db, property_id)
    if not p.is_active:
        raise NotFound("Property not found")

    publicly_visible = (
        p.approval_status == ApprovalStatus.APPROVED.value
        and not p.is_archived
        and p.listing_status in PUBLIC_LISTING_STATUSES
    )
    if not admin_view and not publicly_visible:
        is_submitter = user is not None and user.id in {p.submitted_by_id, p.created_by_id}
        if not is_submitter:
            raise NotFound("Property not found")

    out = _property_out(p)
    if not admin_view:
        _track_view(db, property_id)
        out["views"] += 1

    payload = {"property": out}
    if not bypass and (admin_view or publicly_visible):
        cache.set(CacheKind.DETAIL, key, payload)
    return payload


@app.post("/properties", status_code=201)
def create_property(
    data: PropertyCreateIn,
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[PropertyCache, Depends(get_property_cache)],
    me: Annotated[User, Depends(require_property_submitter)],
):
    fields = data.model_dump(exclude={"images"})
    decision = approval.decide_on_create(me)
    p = Property(**fields, created_by_id=me.id, submitted_by_id=me.id, **decision)
    p.images = [PropertyImage(url=img.url, public_id=img.public_id, sort_order=idx) for idx, img in enumerate(data.images)]
    db.add(p)
    db.flush()
    _log_moderation(db, actor_user_id=me.id, entity_type="property", entity_id=p.id, action="create")
    cache.invalidate(p.id)

    if p.approval_status == ApprovalStatus.APPROVED.value:
        message = "Property created and approved successfully"
    else:
        message = "Property submitted for approval"
    return {"message": message, "property": _property_out(p)}


@app.put("/properties/{property_id}")
def edit_property(
    property_id: EntityId,
    data: PropertyUpdateIn,
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[PropertyCache, Depends(get_property_cache)],
    me: Annotated[User, Depends(require_permission(PermissionFlag.CAN_MANAGE_PROPERTIES))],
):
    p = _get_property_or_404(db, property_id)
    if p.created_by_id != me.id and actor_hierarchy(me) >= 4:
        raise Forbidden("You can only edit properties you created")

    changes = data.model_dump(exclude_unset=True)
    images = changes.pop("images", None)
    for field, value in changes.items():
        if value is not None:
            setattr(p, field, value)
    if images is not None:
        # Old rows must be gone before the (property_id, sort_order) slots are reused.
        p.images.clear()
        db.flush()
        p.images.extend(
            PropertyImage(url=img["url"], public_id=img.get("public_id") or "", sort_order=idx)
            for idx, img in enumerate(images)
        )

    patch = approval.decide_on_edit(me, p.approval_status)
    for field, value in patch.items():
        setattr(p, field, value)
    db.flush()
    _log_moderation(db, actor_user_id=me.id, entity_type="property", entity_id=p.id, action="update")
    cache.invalidate(p.id)

    message = "Property updated successfully"
    if not can_auto_approve(me):
        message = "Property updated and submitted for approval"
    return {"message": message, "property": _property_out(p)}


@app.delete("/properties/{property_id}")
def remove_property(
    property_id: EntityId,
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[PropertyCache, Depends(get_property_cache)],
    destroy: Annotated[Any, Depends(get_image_deleter)],
    me: Annotated[User, Depends(require_team_leader)],
):
    p = _get_property_or_404(db, property_id)
    approval.purge_hosted_images(p, destroy=destroy)
    db.delete(p)
    _log_moderation(db, actor_user_id=me.id, entity_type="property", entity_id=property_id, action="delete")
    db.flush()
    cache.invalidate(property_id)
    return {"message": "Property deleted successfully"}


@app.post("/properties/{property_id}/archive")
def archive_property(
    property_id: EntityId,
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[PropertyCache, Depends(get_property_cache)],
    me: Annotated[User, Depends(require_team_leader)],
):
    p = _get_property_or_404(db, property_id)
    p.is_archived = True
    p.archived_at = dt.datetime.now(dt.timezone.utc)
    _log_moderation(db, actor_user_id=me.id, entity_type="property", entity_id=p.id, action="archive")
    db.flush()
    cache.invalidate(p.id)
    return {"message": "Property archived successfully"}


@app.post("/properties/{property_id}/restore")
def restore_property(
    property_id: EntityId,
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[PropertyCache, Depends(get_property_cache)],
    me: Annotated[User, Depends(require_team_leader)],
):
    p = _get_property_or_404(db, property_id)
    p.is_archived = False
    p.archived_at = None
    _log_moderation(db, actor_user_id=me.id, entity_type="property", entity_id=p.id, action="restore")
    db.flush()
    cache.invalidate(p.id)
    return {"message": "Property restored successfully"}


@app.put("/properties/{property_id}/approve")
def approve_property(
    property_id: EntityId,
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[PropertyCache, Depends(get_property_cache)],
    me: Annotated[User, Depends(require_property_moderator())],
):
    p = approval.approve(db, property_id, me)
    _log_moderation(db, actor_user_id=me.id, entity_type="property", entity_id=p.id, action="approve")
    db.flush()
    cache.invalidate(p.id)
    return {"message": "Property approved successfully", "property": _property_out(p)}


@app.put("/properties/{property_id}/reject")
def reject_property(
    property_id: EntityId,
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[PropertyCache, Depends(get_property_cache)],
    destroy: Annotated[Any, Depends(get_image_deleter)],
    me: Annotated[User, Depends(require_property_moderator())],
    data: RejectIn | None = None,
):
    reason = data.reason if data is not None else None
    p, deleted = approval.reject(db, property_id, me, reason, destroy=destroy)
    _log_moderation(
        db,
        actor_user_id=me.id,
        entity_type="property",
        entity_id=p.id,
        action="reject",
        reason=p.rejection_reason or "",
    )
    db.flush()
    cache.invalidate(p.id)
    return {"message": "Property rejected successfully", "property": _property_out(p), "deleted_images": deleted}


@app.post("/properties/{property_id}/inquiry", status_code=201)
def create_inquiry(
    property_id: EntityId,
    data: InquiryIn,
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[PropertyCache, Depends(get_property_cache)],
    user: Annotated[User | None, Depends(get_optional_user)],
):
    p = _get_property_or_404(db, property_id)
    if not p.is_active or p.approval_status != ApprovalStatus.APPROVED.value:
        raise NotFound("Property not found")
    inquiry = Inquiry(
        property_id=p.id,
        user_id=user.id if user is not None else None,
        name=data.name.strip(),
        email=normalize_email(data.email),
        phone=data.phone.strip(),
        message=data.message.strip(),
    )
    db.add(inquiry)
    db.flush()
    cache.invalidate(p.id, clear_list=False)
    return {"message": "Inquiry submitted successfully", "inquiry": _inquiry_out(inquiry)}


# -----------------------
# Inquiries / leads
# -----------------------
@app.get("/inquiries")
def list_inquiries(
    db: Annotated[Session, Depends(get_db)],
    _: Annotated[User, Depends(require_permission(PermissionFlag.CAN_MANAGE_INQUIRIES))],
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int | None = Query(None, ge=1),
    status: InquiryStatus | None = None,
):
    lim = _clamp_limit(limit, default=ADMIN_DEFAULT_LIMIT, maximum=ADMIN_MAX_LIMIT)
    stmt = select(Inquiry).order_by(Inquiry.created_at.desc(), Inquiry.id.desc())
    if status:
        stmt = stmt.where(Inquiry.status == status)
    return _paginated(db, stmt, page=page, limit=lim, serialize=_inquiry_out)


@app.put("/inquiries/{inquiry_id}")
def edit_inquiry(
    inquiry_id: EntityId,
    data: InquiryUpdateIn,
    db: Annotated[Session, Depends(get_db)],
    me: Annotated[User, Depends(require_permission(PermissionFlag.CAN_MANAGE_INQUIRIES))],
):
    inquiry = db.get(Inquiry, inquiry_id)
    if inquiry is None:
        raise NotFound("Inquiry not found")
    changes = data.model_dump(exclude_unset=True)
    if "assigned_to_id" in changes:
        inquiry.assigned_to_id = _resolve_assignee(db, me, changes["assigned_to_id"])
    if changes.get("status"):
        inquiry.status = changes["status"]
    if changes.get("notes") is not None:
        inquiry.notes = changes["notes"]
    db.flush()
    return {"message": "Inquiry updated successfully", "inquiry": _inquiry_out(inquiry)}


@app.post("/inquiries/lead", status_code=201)
def create_lead(data: LeadIn, db: Annotated[Session, Depends(get_db)]):
    lead = Lead(
        name=data.name.strip(),
        phone=data.phone.strip(),
        email=normalize_email(data.email),
        message=data.message.strip(),
        source=data.source.strip() or "website",
    )
    db.add(lead)
    db.flush()
    return {"message": "Lead submitted successfully", "lead": _lead_out(lead)}


@app.get("/inquiries/leads")
def list_leads(
    db: Annotated[Session, Depends(get_db)],
    _: Annotated[User, Depends(require_permission(PermissionFlag.CAN_MANAGE_LEADS))],
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int | None = Query(None, ge=1),
    status: LeadStatus | None = None,
):
    lim = _clamp_limit(limit, default=ADMIN_DEFAULT_LIMIT, maximum=ADMIN_MAX_LIMIT)
    stmt = select(Lead).order_by(Lead.created_at.desc(), Lead.id.desc())
    if status:
        stmt = stmt.where(Lead.status == status)
    return _paginated(db, stmt, page=page, limit=lim, serialize=_lead_out)


@app.put("/inquiries/lead/{lead_id}")
def edit_lead(
    lead_id: EntityId,
    data: LeadUpdateIn,
    db: Annotated[Session, Depends(get_db)],
    me: Annotated[User, Depends(require_permission(PermissionFlag.CAN_MANAGE_LEADS))],
):
    lead = db.get(Lead, lead_id)
    if lead is None:
        raise NotFound("Lead not found")
    changes = data.model_dump(exclude_unset=True)
    if "assigned_to_id" in changes:
        lead.assigned_to_id = _resolve_assignee(db, me, changes["assigned_to_id"])
    if changes.get("status"):
        lead.status = changes["status"]
    if changes.get("notes") is not None:
        lead.notes = changes["notes"]
    db.flush()
    return {"message": "Lead updated successfully", "lead": _lead_out(lead)}


# -----------------------
# Admin
# -----------------------
@app.get("/admin/logs")
def moderation_logs(
    db: Annotated[Session, Depends(get_db)],
    _: Annotated[User, Depends(require_admin)],
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int | None = Query(None, ge=1),
    entity_type: str | None = None,
):
    lim = _clamp_limit(limit, default=ADMIN_DEFAULT_LIMIT, maximum=ADMIN_MAX_LIMIT)
    stmt = select(ModerationLog).order_by(ModerationLog.created_at.desc(), ModerationLog.id.desc())
    if entity_type:
        stmt = stmt.where(ModerationLog.entity_type == entity_type.strip())

    def _log_out(row: ModerationLog) -> dict[str, Any]:
        return {
            "id": row.id,
            "actor_user_id": row.actor_user_id,
            "entity_type": row.entity_type,
            "entity_id": row.entity_id,
            "action": row.action,
            "reason": row.reason,
            "created_at": _iso(row.created_at),
        }

    return _paginated(db, stmt, page=page, limit=lim, serialize=_log_out)
