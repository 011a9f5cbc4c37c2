import os
from typing import Any

import structlog
from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from ledgerdesk.aggregation import aggregate
from ledgerdesk.csv_codec import CSV_FILENAME, CsvPreview, decode_preview, encode_movements
from ledgerdesk.date_range import DateRange, parse_group_param, resolve_date_range
from ledgerdesk.errors import AuthError, QueryValidationError
from ledgerdesk.logging_config import configure_logging
from ledgerdesk.money import normalize_amount
from ledgerdesk.pagination import (
    PageMeta,
    QueryMapping,
    build_page_meta,
    parse_search_param,
    resolve_pagination,
)
from ledgerdesk.periods import isoformat_utc
from ledgerdesk.rbac import require_admin, require_session
from ledgerdesk.storage import MovementRecord, Storage, UserRecord
from ledgerdesk.validation import validate_movement, validate_user_update

configure_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(title="ledgerdesk")

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def init_storage() -> None:
    storage = Storage.from_env()
    storage.create_all()
    app.state.storage = storage
    logger.info("storage_ready", database_url=storage.engine.url.render_as_string(hide_password=True))


@app.on_event("shutdown")
def close_storage() -> None:
    storage = getattr(app.state, "storage", None)
    if storage is not None:
        storage.dispose()


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


class UserResponse(BaseModel):
    id: int
    name: str | None = None
    email: str
    phone: str | None = None
    role: str
    createdAt: str


class MeResponse(BaseModel):
    user: UserResponse


class UserEnvelope(BaseModel):
    data: UserResponse


class UserListResponse(BaseModel):
    data: list[UserResponse]
    meta: PageMeta


class MovementOwnerResponse(BaseModel):
    id: int
    name: str | None = None
    email: str


class MovementResponse(BaseModel):
    id: int
    type: str
    amount: str
    concept: str
    date: str
    createdAt: str
    user: MovementOwnerResponse


class MovementEnvelope(BaseModel):
    data: MovementResponse


class MovementListResponse(BaseModel):
    data: list[MovementResponse]
    meta: PageMeta


class SummaryPointResponse(BaseModel):
    period: str
    income: str
    expense: str
    net: str


class RangeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    to: str


class SummaryData(BaseModel):
    totalIncome: str
    totalExpense: str
    balance: str
    group: str
    range: RangeResponse
    points: list[SummaryPointResponse]


class SummaryResponse(BaseModel):
    data: SummaryData


class CsvPreviewResponse(BaseModel):
    data: CsvPreview


def session_user(storage: Storage, x_user_id: str | None) -> UserRecord:
    try:
        return require_session(storage, x_user_id)
    except AuthError as exc:
        raise HTTPException(status_code=exc.status, detail=exc.message) from exc


def admin_user(storage: Storage, x_user_id: str | None) -> UserRecord:
    try:
        return require_admin(storage, x_user_id)
    except AuthError as exc:
        raise HTTPException(status_code=exc.status, detail=exc.message) from exc


def format_user(user: UserRecord) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        phone=user.phone,
        role=user.role,
        createdAt=isoformat_utc(user.created_at),
    )


def format_movement(movement: MovementRecord) -> MovementResponse:
    return MovementResponse(
        id=movement.id,
        type=movement.type,
        amount=normalize_amount(movement.amount),
        concept=movement.concept,
        date=isoformat_utc(movement.date),
        createdAt=isoformat_utc(movement.created_at),
        user=MovementOwnerResponse(
            id=movement.user.id,
            name=movement.user.name,
            email=movement.user.email,
        ),
    )


def format_range(date_range: DateRange) -> RangeResponse:
    return RangeResponse(
        **{"from": isoformat_utc(date_range.start), "to": isoformat_utc(date_range.end)}
    )


def rejected_query(exc: QueryValidationError, endpoint: str) -> HTTPException:
    logger.warning("query_rejected", endpoint=endpoint, kind=exc.kind, error=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def load_report_range(storage: Storage, query: QueryMapping, endpoint: str) -> tuple[DateRange, list[MovementRecord]]:
    try:
        date_range = resolve_date_range(query)
    except QueryValidationError as exc:
        raise rejected_query(exc, endpoint) from exc
    return date_range, storage.movements_in_range(date_range)


def build_report_csv(storage: Storage, query: QueryMapping) -> str:
    _, records = load_report_range(storage, query, "reports.csv")
    csv_text = encode_movements(record.to_report_movement() for record in records)
    logger.info("report_csv_built", rows=len(records))
    return csv_text


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/me", response_model=MeResponse)
def me(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    storage: Storage = Depends(get_storage),
) -> MeResponse:
    user = session_user(storage, x_user_id)
    return MeResponse(user=format_user(user))


@app.get("/movements", response_model=MovementListResponse)
def list_movements(
    page: list[str] | None = Query(None),
    limit: list[str] | None = Query(None),
    search: list[str] | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    storage: Storage = Depends(get_storage),
) -> MovementListResponse:
    session_user(storage, x_user_id)
    query = {"page": page, "limit": limit, "search": search}
    try:
        pagination = resolve_pagination(query)
    except QueryValidationError as exc:
        raise rejected_query(exc, "movements.list") from exc

    rows, total = storage.list_movements(pagination, parse_search_param(query))
    return MovementListResponse(
        data=[format_movement(row) for row in rows],
        meta=build_page_meta(pagination, total),
    )


@app.post("/movements", response_model=MovementEnvelope, status_code=201)
def create_movement(
    payload: Any = Body(...),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    storage: Storage = Depends(get_storage),
) -> MovementEnvelope:
    user = admin_user(storage, x_user_id)
    outcome = validate_movement(payload)
    if not outcome.ok:
        raise HTTPException(status_code=400, detail=outcome.error)

    created = storage.create_movement(user.id, outcome.data)
    logger.info(
        "movement_created",
        movement_id=created.id,
        user_id=user.id,
        type=created.type,
    )
    return MovementEnvelope(data=format_movement(created))


@app.get("/users", response_model=UserListResponse)
def list_users(
    page: list[str] | None = Query(None),
    limit: list[str] | None = Query(None),
    search: list[str] | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    storage: Storage = Depends(get_storage),
) -> UserListResponse:
    admin_user(storage, x_user_id)
    query = {"page": page, "limit": limit, "search": search}
    try:
        pagination = resolve_pagination(query)
    except QueryValidationError as exc:
        raise rejected_query(exc, "users.list") from exc

    rows, total = storage.list_users(pagination, parse_search_param(query))
    return UserListResponse(
        data=[format_user(row) for row in rows],
        meta=build_page_meta(pagination, total),
    )


@app.patch("/users/{user_id}", response_model=UserEnvelope)
def update_user(
    user_id: int,
    payload: Any = Body(...),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    storage: Storage = Depends(get_storage),
) -> UserEnvelope:
    admin_user(storage, x_user_id)
    outcome = validate_user_update(payload)
    if not outcome.ok:
        raise HTTPException(status_code=400, detail=outcome.error)

    updated = storage.update_user(user_id, outcome.data.changes())
    if updated is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserEnvelope(data=format_user(updated))


@app.get("/reports/summary", response_model=SummaryResponse)
def report_summary(
    group: list[str] | None = Query(None),
    from_: list[str] | None = Query(None, alias="from"),
    to: list[str] | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    storage: Storage = Depends(get_storage),
) -> SummaryResponse:
    admin_user(storage, x_user_id)
    try:
        resolved_group = parse_group_param(group)
    except QueryValidationError as exc:
        raise rejected_query(exc, "reports.summary") from exc

    date_range, records = load_report_range(
        storage, {"from": from_, "to": to}, "reports.summary"
    )
    summary = aggregate((record.to_report_movement() for record in records), resolved_group)
    logger.info(
        "report_summary_built",
        group=resolved_group,
        movements=len(records),
        points=len(summary.points),
    )
    return SummaryResponse(
        data=SummaryData(
            totalIncome=summary.total_income,
            totalExpense=summary.total_expense,
            balance=summary.balance,
            group=resolved_group,
            range=format_range(date_range),
            points=[
                SummaryPointResponse(
                    period=point.period,
                    income=point.income,
                    expense=point.expense,
                    net=point.net,
                )
                for point in summary.points
            ],
        )
    )


@app.get("/reports/csv")
def report_csv(
    from_: list[str] | None = Query(None, alias="from"),
    to: list[str] | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    storage: Storage = Depends(get_storage),
) -> Response:
    admin_user(storage, x_user_id)
    csv_text = build_report_csv(storage, {"from": from_, "to": to})
    return Response(
        content=csv_text,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{CSV_FILENAME}"'},
    )


@app.get("/reports/csv/preview", response_model=CsvPreviewResponse)
def report_csv_preview(
    from_: list[str] | None = Query(None, alias="from"),
    to: list[str] | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    storage: Storage = Depends(get_storage),
) -> CsvPreviewResponse:
    admin_user(storage, x_user_id)
    csv_text = build_report_csv(storage, {"from": from_, "to": to})
    return CsvPreviewResponse(data=decode_preview(csv_text))
