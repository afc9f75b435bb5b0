from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Annotated, Callable, List, Literal

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from . import backup, catalog, crud, schemas
from .config import get_settings
from .database import dispose_db, engine, get_session, get_session_factory, init_db
from .engine import TableSessionEngine, validate_settlement
from .errors import ConflictError, NotFoundError, StoreError, ValidationError
from .events import ChangeFeed
from .export import XLSX_MEDIA_TYPE, export_snapshot
from .models import Order

logger = logging.getLogger(__name__)

app = FastAPI(title="Table POS Orders", version="0.1.0")
settings = get_settings()
feed = ChangeFeed()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    logging.basicConfig(level=settings.log_level)
    init_db()
    if settings.catalog_seed_path:
        with Session(engine) as session:
            catalog.ensure_catalog_seed(session, settings.catalog_seed_path)


@app.on_event("shutdown")
def on_shutdown() -> None:
    dispose_db()


@app.exception_handler(ValidationError)
async def handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
async def handle_conflict(request: Request, exc: ConflictError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(StoreError)
@app.exception_handler(SQLAlchemyError)
async def handle_store_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Storage unavailable; displayed data may be stale"},
    )


def get_feed() -> ChangeFeed:
    return feed


def get_engine(
    session: Session = Depends(get_session),
    change_feed: ChangeFeed = Depends(get_feed),
) -> TableSessionEngine:
    return TableSessionEngine(session, change_feed)


EngineDep = Annotated[TableSessionEngine, Depends(get_engine)]


def _order_detail(pos: TableSessionEngine, order: Order) -> schemas.OrderDetail:
    items = pos.list_items(order.id)
    return schemas.OrderDetail(
        **schemas.OrderRead.model_validate(order).model_dump(),
        items=[schemas.OrderItemRead.model_validate(item) for item in items],
    )


@app.get("/health")
def health_check() -> dict:
    return {"status": "ok"}


# -------------------------
# Tables
# -------------------------

@app.get("/tables", response_model=List[schemas.TableSlotRead])
def list_tables(pos: EngineDep):
    return [schemas.TableSlotRead.model_validate(slot) for slot in pos.table_board(settings.table_count)]


@app.post("/tables/{table}/open", response_model=schemas.OrderDetail)
def open_table(table: str, pos: EngineDep):
    return _order_detail(pos, pos.open_table(table))


@app.post("/orders/walk-in", response_model=schemas.OrderDetail, status_code=status.HTTP_201_CREATED)
def open_walk_in(pos: EngineDep):
    return _order_detail(pos, pos.open_walk_in())


# -------------------------
# Orders
# -------------------------

@app.get("/orders", response_model=List[schemas.OrderRead])
def list_orders(
    state: Literal["open", "paid"] = "open",
    session: Session = Depends(get_session),
):
    orders = crud.list_open_orders(session) if state == "open" else crud.list_paid_orders(session)
    return [schemas.OrderRead.model_validate(order) for order in orders]


@app.get("/orders/{order_id}", response_model=schemas.OrderDetail)
def get_order(order_id: str, pos: EngineDep):
    return _order_detail(pos, pos.get_order(order_id))


@app.delete("/orders/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_order(order_id: str, pos: EngineDep):
    pos.delete_order(order_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/orders/{order_id}/close", response_model=schemas.CloseResult)
def close_order(order_id: str, pos: EngineDep):
    return schemas.CloseResult(deleted=pos.close_table(order_id))


@app.post("/orders/{order_id}/items", response_model=schemas.OrderDetail, status_code=status.HTTP_201_CREATED)
def add_item(order_id: str, payload: schemas.ItemCreate, pos: EngineDep):
    pos.ensure_open(pos.get_order(order_id))
    product = catalog.require_available(pos.session, payload.name)
    rate = payload.rate if payload.rate and payload.rate > 0 else product.price
    category_name = payload.category_name or catalog.category_name_for(pos.session, product)
    pos.add_item(order_id, product.name, category_name, rate, payload.quantity)
    return _order_detail(pos, pos.get_order(order_id))


@app.put("/orders/{order_id}/items/{item_id}", response_model=schemas.OrderDetail)
def update_item(order_id: str, item_id: int, payload: schemas.ItemUpdate, pos: EngineDep):
    pos.update_line_item(order_id, item_id, payload.quantity, payload.rate)
    return _order_detail(pos, pos.get_order(order_id))


@app.delete("/orders/{order_id}/items/{item_id}", response_model=schemas.OrderDetail)
def remove_item(order_id: str, item_id: int, pos: EngineDep):
    return _order_detail(pos, pos.remove_item(order_id, item_id))


@app.put("/orders/{order_id}/status", response_model=schemas.OrderRead)
def set_status(order_id: str, payload: schemas.StatusUpdate, pos: EngineDep):
    return schemas.OrderRead.model_validate(pos.set_status(order_id, payload.status))


@app.post("/orders/{order_id}/table", response_model=schemas.TableChangeResult)
def change_table(order_id: str, payload: schemas.TableChange, pos: EngineDep):
    pos.ensure_open(pos.get_order(order_id))
    if not payload.confirm_merge:
        occupant = pos.find_occupant(payload.table, exclude_id=order_id)
        if occupant is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Table {occupant.table_label} is already occupied. Confirm to merge this bill into it.",
            )
    result = pos.change_table(order_id, payload.table)
    return schemas.TableChangeResult(merged=result.merged, resulting_order_id=result.resulting_order_id)


@app.post("/orders/{order_id}/pay", response_model=schemas.OrderRead)
def pay_order(
    order_id: str,
    payload: schemas.PaymentCreate,
    background_tasks: BackgroundTasks,
    pos: EngineDep,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    order = pos.get_order(order_id)
    pos.ensure_open(order)
    validate_settlement(order, payload.cash, payload.online, settings.payment_tolerance)
    paid = pos.process_payment(order_id, payload.cash, payload.online)
    background_tasks.add_task(backup.run_backup, session_factory, settings)
    return schemas.OrderRead.model_validate(paid)


# -------------------------
# Catalog and reports
# -------------------------

@app.get("/catalog/products", response_model=List[schemas.ProductOption])
def search_products(search: str = "", session: Session = Depends(get_session)):
    options = []
    for product in catalog.search_products(session, search):
        allowed, reason = catalog.check_availability(product)
        options.append(
            schemas.ProductOption(
                id=product.id,
                name=product.name,
                price=product.price,
                category_id=product.category_id,
                available=allowed,
                reason=reason,
            )
        )
    return options


@app.get("/reports/sales", response_model=schemas.SalesSummary)
def sales_report(day: date | None = None, session: Session = Depends(get_session)):
    data = crud.sales_summary(session, day or datetime.now(timezone.utc).date())
    data["orders"] = [schemas.OrderRead.model_validate(order) for order in data["orders"]]
    return schemas.SalesSummary(**data)


@app.get("/export/snapshot.xlsx")
def export_workbook(session: Session = Depends(get_session)):
    headers = {
        "Content-Disposition": f"attachment; filename={settings.backup_file_name}",
    }
    return Response(content=export_snapshot(session), media_type=XLSX_MEDIA_TYPE, headers=headers)


# -------------------------
# Backup
# -------------------------

@app.get("/backup/status", response_model=schemas.BackupStatus)
def backup_status(session: Session = Depends(get_session)):
    return schemas.BackupStatus(
        needs_backup=backup.needs_backup(session),
        configured=bool(settings.drive_access_token),
    )


@app.post("/backup/sync", response_model=schemas.BackupSyncResult)
def backup_sync(session: Session = Depends(get_session)):
    result = backup.sync_backup(session, settings)
    return schemas.BackupSyncResult(success=result.success, message=result.message)
