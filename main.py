import base64
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Type

from fastapi import APIRouter, Depends, FastAPI, Form, HTTPException, Path, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import database
from database import get_db
from errors import BrokenCarsError, InvalidFieldValue
from payloads import build_create_payload, build_delete_key, build_update_payload
from permissions import Permission, check_permission, describe_roles
from query_builder import build_list_query

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ------------------------------------------------------------------------------------------------
# Startup
# ------------------------------------------------------------------------------------------------
def ensure_tables_and_seed_user() -> None:
    database.metadata.create_all(database.engine)
    if not config.SEED_DEFAULT_USER:
        return
    with database.SessionLocal() as db:
        if database.get_user_by_username(db, config.DEFAULT_ADMIN_USERNAME):
            return
        if not config.DEFAULT_ADMIN_PASSWORD:
            logger.warning("SEED_DEFAULT_USER is set but DEFAULT_ADMIN_PASSWORD is empty; skipping seed")
            return
        database.create_user(
            db,
            config.DEFAULT_ADMIN_USERNAME,
            get_password_hash(config.DEFAULT_ADMIN_PASSWORD),
            Permission.ALL,
        )
        logger.info("Seeded user %s with all permissions", config.DEFAULT_ADMIN_USERNAME)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_tables_and_seed_user()
    yield


tags_metadata = [
    {"name": "Data", "description": "Broken cars: list, create, edit, delete."},
    {"name": "Auth", "description": "Token and logout endpoints."},
    {"name": "System", "description": "Health checks."},
]

app = FastAPI(title="Broken Cars Admin API", openapi_tags=tags_metadata, lifespan=lifespan)
# CORS (configure via env CORS_ORIGINS="*")
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ------------------------------------------------------------------------------------------------
# Envelope & error handlers
# ------------------------------------------------------------------------------------------------
def error_response(status_code: int, message: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message}, headers=headers)


@app.exception_handler(BrokenCarsError)
async def broken_cars_error_handler(request: Request, exc: BrokenCarsError):
    return error_response(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    parts = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()) if x not in ("body", "query", "path"))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return error_response(422, "; ".join(parts) or "Invalid request")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return error_response(500, "Internal server error")


# ------------------------------------------------------------------------------------------------
# Pydantic Response Schemas
# ------------------------------------------------------------------------------------------------
class BrokenCar(BaseModel):
    id: int
    color: str
    description: str
    year: int
    price: Optional[Decimal] = None
    firstBrokenDate: Optional[date] = None
    createdDate: Optional[datetime] = None
    bodyId: int
    modelId: int
    image: Optional[str] = None
    blob: Optional[str] = None  # base64
    isActive: bool = True
    bodyName: Optional[str] = None
    modelName: Optional[str] = None


class ListResponse(BaseModel):
    data: List[BrokenCar]
    success: bool = True


class CreateResponse(BaseModel):
    newBrokenCarId: int
    success: bool = True


class EditResponse(BaseModel):
    data: BrokenCar
    success: bool = True


class SuccessResponse(BaseModel):
    success: bool = True


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


def to_broken_car(row: Dict[str, Any]) -> BrokenCar:
    blob = row.get("blob")
    return BrokenCar(
        id=row["id"],
        color=row["color"],
        description=row["description"],
        year=row["year"],
        price=row.get("price"),
        firstBrokenDate=row.get("first_broken_date"),
        createdDate=row.get("created_date"),
        bodyId=row["body_id"],
        modelId=row["model_id"],
        image=row.get("image"),
        blob=base64.b64encode(blob).decode("ascii") if blob is not None else None,
        isActive=bool(row.get("is_active", True)),
        bodyName=row.get("body_name"),
        modelName=row.get("model_name"),
    )


# ------------------------------------------------------------------------------------------------
# Auth: password hashing, JWT, caller identity
# ------------------------------------------------------------------------------------------------
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (UnknownHashError, ValueError):
        # Treat invalid/unknown hash as bad credentials, not server error
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


class CallerIdentity(BaseModel):
    username: str
    roles: int = 0


def get_current_caller(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> CallerIdentity:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise credentials_exception
    username: Optional[str] = payload.get("sub")
    if username is None:
        raise credentials_exception
    try:
        token_roles = int(payload.get("roles", 0))
        token_ver = int(payload.get("ver", 1))
    except (TypeError, ValueError):
        raise credentials_exception
    user = database.get_user_by_username(db, username)
    if not user or not user.get("is_active", True):
        raise credentials_exception
    if token_ver != int(user.get("token_version", 1)):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
            headers={"WWW-Authenticate": "Bearer"},
        )
    # bits removed from the user since the token was issued no longer apply
    return CallerIdentity(username=username, roles=token_roles & int(user.get("roles", 0)))


def require_permission(permission: Permission) -> Callable[..., CallerIdentity]:
    def dependency(caller: CallerIdentity = Depends(get_current_caller)) -> CallerIdentity:
        check_permission(caller.roles, permission)
        return caller

    dependency.__name__ = f"require_{permission.name.lower()}"
    return dependency


@app.post("/token", tags=["Auth"])
def login_for_access_token(
    username: str = Form(...),
    password: str = Form(...),
    db: Session = Depends(get_db),
):
    user = database.get_user_by_username(db, username)
    if not user or not verify_password(password, user["hashed_password"]) or not user.get("is_active", True):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token = create_access_token(
        data={"sub": user["username"], "roles": int(user["roles"]), "ver": int(user.get("token_version", 1))}
    )
    return {"access_token": access_token, "token_type": "bearer"}


@app.get("/users/me", tags=["Auth"])
def read_users_me(
    caller: CallerIdentity = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    user = database.get_user_by_username(db, caller.username)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {
        "username": caller.username,
        "is_active": bool(user.get("is_active", True)),
        "roles": caller.roles,
        "permissions": describe_roles(caller.roles),
    }


@app.post("/logout", tags=["Auth"])
def logout_current(
    caller: CallerIdentity = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    database.bump_token_version(db, caller.username)
    return {"success": True, "message": "Logged out (all tokens invalidated)"}


# ------------------------------------------------------------------------------------------------
# Data: broken cars
# ------------------------------------------------------------------------------------------------
def list_broken_cars(
    db: Session = Depends(get_db),
    color: Optional[str] = Query(None),
    description: Optional[str] = Query(None),
    year: Optional[str] = Query(None),
    price: Optional[str] = Query(None),
    first_broken_date: Optional[str] = Query(None, alias="firstBrokenDate"),
    first_broken_date_from: Optional[str] = Query(None, alias="firstBrokenDateFrom"),
    first_broken_date_to: Optional[str] = Query(None, alias="firstBrokenDateTo"),
    created_date: Optional[str] = Query(None, alias="createdDate"),
    created_date_from: Optional[str] = Query(None, alias="createdDateFrom"),
    created_date_to: Optional[str] = Query(None, alias="createdDateTo"),
    body_id: Optional[str] = Query(None, alias="bodyId"),
    model_id: Optional[str] = Query(None, alias="modelId"),
    body_name: Optional[str] = Query(None, alias="bodyName"),
    model_name: Optional[str] = Query(None, alias="modelName"),
    is_active: Optional[str] = Query(None, alias="isActive"),
    limit: Optional[str] = Query(None, description="Page size (default 20)"),
    offset: Optional[str] = Query(None, description="Rows to skip (default 0)"),
    sort: Optional[str] = Query(None, description='e.g. "year|asc,firstBrokenDate|desc"'),
):
    filters = {
        "color": color,
        "description": description,
        "year": year,
        "price": price,
        "firstBrokenDate": first_broken_date,
        "firstBrokenDateFrom": first_broken_date_from,
        "firstBrokenDateTo": first_broken_date_to,
        "createdDate": created_date,
        "createdDateFrom": created_date_from,
        "createdDateTo": created_date_to,
        "bodyId": body_id,
        "modelId": model_id,
        "bodyName": body_name,
        "modelName": model_name,
        "isActive": is_active,
    }
    query = build_list_query(filters, limit=limit, offset=offset, sort=sort)
    if query.limit > config.MAX_PAGE_SIZE:
        query = replace(query, limit=config.MAX_PAGE_SIZE)
    rows = database.get_data(db, query)
    return {"data": [to_broken_car(r) for r in rows], "success": True}


async def json_body(request: Request) -> Any:
    # resolved after the route permission dependency
    try:
        return await request.json()
    except ValueError:
        raise InvalidFieldValue("body", "must be valid JSON")


def create_broken_car(
    body: Any = Depends(json_body),
    db: Session = Depends(get_db),
):
    values = build_create_payload(body)
    new_id = database.create_data(db, values)
    return {"newBrokenCarId": new_id, "success": True}


def edit_broken_car(
    id: str = Path(..., description="Broken car id"),
    body: Any = Depends(json_body),
    db: Session = Depends(get_db),
):
    record_id, changes = build_update_payload(id, body)
    row = database.update_data(db, record_id, changes)
    return {"data": to_broken_car(row), "success": True}


def delete_broken_car(
    id: str = Path(..., description="Broken car id"),
    db: Session = Depends(get_db),
):
    record_id = build_delete_key(id)
    database.delete_data(db, record_id, soft=config.SOFT_DELETE)
    return {"success": True}


class RouteSpec(NamedTuple):
    method: str
    path: str
    permission: Permission
    handler: Callable[..., Any]
    response_model: Type[BaseModel]
    summary: str


ROUTES = (
    RouteSpec("GET", "/list", Permission.LIST, list_broken_cars, ListResponse, "List broken cars"),
    RouteSpec("POST", "/create", Permission.CREATE, create_broken_car, CreateResponse, "Create a broken car"),
    RouteSpec("PUT", "/edit/{id}", Permission.UPDATE, edit_broken_car, EditResponse, "Edit a broken car"),
    RouteSpec("DELETE", "/delete/{id}", Permission.DELETE, delete_broken_car, SuccessResponse, "Delete a broken car"),
)

router = APIRouter(prefix=config.API_PREFIX, tags=["Data"])
for route in ROUTES:
    # permission runs as a dependency, before the handler reaches the database
    router.add_api_route(
        route.path,
        route.handler,
        methods=[route.method],
        response_model=route.response_model,
        summary=route.summary,
        dependencies=[Depends(require_permission(route.permission))],
        responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    )
app.include_router(router)


# ------------------------------------------------------------------------------------------------
# Health Check (tagged to avoid "Default" section)
# ------------------------------------------------------------------------------------------------
@app.get("/health", tags=["System"])
def health(db: Session = Depends(get_db)):
    database.ping(db)
    return {"status": "ok"}
