from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pymongo.database import Database

from auth import AuthService, get_auth_service, get_current_user_id
from config import Settings, get_settings
from database import RecordStore, UserStore, get_database, init_indexes, serialize_doc
from errors import register_exception_handlers
from logging_config import configure_logging
from schemas import (
    AuthUser,
    ChangePassword,
    ExpenseIn,
    IncomeIn,
    JWTToken,
    LoginRequest,
    Message,
    UserCreated,
    validate_payload,
)
from uploads import UploadStorage

logger = structlog.get_logger(__name__)


def get_incomes(request: Request) -> RecordStore:
    return request.app.state.incomes


def get_expenses(request: Request) -> RecordStore:
    return request.app.state.expenses


def get_uploads(request: Request) -> UploadStorage:
    return request.app.state.uploads


# Public endpoints
public_router = APIRouter()


@public_router.get("/")
def root():
    return {"message": "Personal Finance API is running"}


@public_router.get("/health")
def health(request: Request):
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    db: Database = request.app.state.db
    try:
        db.command("ping")
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "Connected & Working"
    except Exception as e:
        response["database"] = f"Error: {str(e)[:80]}"
    return response


# Auth endpoints
auth_router = APIRouter(prefix="/api/auth", tags=["Auth"])


@auth_router.post("/register", response_model=UserCreated, status_code=status.HTTP_201_CREATED)
@auth_router.post("/create-first-user", response_model=UserCreated, status_code=status.HTTP_201_CREATED)
def register(user: AuthUser, auth: AuthService = Depends(get_auth_service)):
    user_id = auth.register(user.username, user.password)
    return UserCreated(user_id=user_id)


@auth_router.post("/login", response_model=JWTToken)
def login(credentials: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    return JWTToken(token=auth.login(credentials.username, credentials.password))


@auth_router.post("/change-password", response_model=Message)
def change_password(
    body: ChangePassword,
    user_id: str = Depends(get_current_user_id),
    auth: AuthService = Depends(get_auth_service),
):
    auth.change_password(user_id, body.current_password, body.new_password)
    return Message(message="Password changed successfully")


# Income endpoints
income_router = APIRouter(prefix="/api/incomes", tags=["Incomes"])


@income_router.post("", status_code=status.HTTP_201_CREATED)
def create_income(
    amount: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    slip: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_current_user_id),
    incomes: RecordStore = Depends(get_incomes),
    uploads: UploadStorage = Depends(get_uploads),
):
    payload = validate_payload(IncomeIn, {"amount": amount, "notes": notes})
    attachments = uploads.save_all([slip])
    return serialize_doc(incomes.create(user_id, payload.model_dump(), attachments))


@income_router.get("")
def list_incomes(user_id: str = Depends(get_current_user_id), incomes: RecordStore = Depends(get_incomes)):
    return serialize_doc(incomes.list(user_id))


@income_router.get("/{income_id}")
def get_income(income_id: str, user_id: str = Depends(get_current_user_id), incomes: RecordStore = Depends(get_incomes)):
    return serialize_doc(incomes.get(user_id, income_id))


@income_router.put("/{income_id}")
def update_income(
    income_id: str,
    amount: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    slip: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_current_user_id),
    incomes: RecordStore = Depends(get_incomes),
    uploads: UploadStorage = Depends(get_uploads),
):
    payload = validate_payload(IncomeIn, {"amount": amount, "notes": notes})
    attachments = []
    if slip is not None and slip.filename:
        incomes.get(user_id, income_id)
        attachments = uploads.save_all([slip])
    return serialize_doc(incomes.update(user_id, income_id, payload.model_dump(), attachments))


@income_router.delete("/{income_id}", response_model=Message)
def delete_income(income_id: str, user_id: str = Depends(get_current_user_id), incomes: RecordStore = Depends(get_incomes)):
    incomes.delete(user_id, income_id)
    return Message(message="Income record deleted successfully")


# Expense endpoints
expense_router = APIRouter(prefix="/api/expenses", tags=["Expenses"])


@expense_router.post("", status_code=status.HTTP_201_CREATED)
def create_expense(
    items: Optional[str] = Form(None),
    total_amount: Optional[str] = Form(None, alias="totalAmount"),
    notes: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    user_id: str = Depends(get_current_user_id),
    expenses: RecordStore = Depends(get_expenses),
    uploads: UploadStorage = Depends(get_uploads),
):
    payload = validate_payload(ExpenseIn, {"items": items, "totalAmount": total_amount, "notes": notes})
    attachments = uploads.save_all(images)
    return serialize_doc(expenses.create(user_id, payload.model_dump(by_alias=True), attachments))


@expense_router.get("")
def list_expenses(user_id: str = Depends(get_current_user_id), expenses: RecordStore = Depends(get_expenses)):
    return serialize_doc(expenses.list(user_id))


@expense_router.get("/{expense_id}")
def get_expense(expense_id: str, user_id: str = Depends(get_current_user_id), expenses: RecordStore = Depends(get_expenses)):
    return serialize_doc(expenses.get(user_id, expense_id))


@expense_router.put("/{expense_id}")
def update_expense(
    expense_id: str,
    items: Optional[str] = Form(None),
    total_amount: Optional[str] = Form(None, alias="totalAmount"),
    notes: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    user_id: str = Depends(get_current_user_id),
    expenses: RecordStore = Depends(get_expenses),
    uploads: UploadStorage = Depends(get_uploads),
):
    payload = validate_payload(ExpenseIn, {"items": items, "totalAmount": total_amount, "notes": notes})
    attachments = []
    if images and any(f.filename for f in images):
        expenses.get(user_id, expense_id)
        attachments = uploads.save_all(images)
    return serialize_doc(expenses.update(user_id, expense_id, payload.model_dump(by_alias=True), attachments))


@expense_router.delete("/{expense_id}", response_model=Message)
def delete_expense(expense_id: str, user_id: str = Depends(get_current_user_id), expenses: RecordStore = Depends(get_expenses)):
    expenses.delete(user_id, expense_id)
    return Message(message="Expense deleted successfully")


def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_json)
    if db is None:
        db = get_database(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.uploads.ensure_dir()
        init_indexes(db)
        logger.info("database_ready", database=db.name)
        yield

    app = FastAPI(title="Personal Finance API", docs_url="/api-docs", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    uploads = UploadStorage(settings.upload_dir)

    app.state.settings = settings
    app.state.db = db
    app.state.uploads = uploads
    app.state.auth = AuthService(UserStore(db), settings.secret_key)
    app.state.incomes = RecordStore(
        db, "incomes", attachment_field="slip", not_found_message="Income record not found"
    )
    app.state.expenses = RecordStore(
        db, "expenses", attachment_field="images", append_attachments=True, not_found_message="Expense not found"
    )

    app.include_router(public_router)
    app.include_router(auth_router)
    app.include_router(income_router)
    app.include_router(expense_router)
    app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")
    return app


# uvicorn main:create_app --factory
if __name__ == "__main__":
    import uvicorn
    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
