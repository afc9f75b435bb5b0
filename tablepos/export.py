import io
import logging
from typing import Iterable, List

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from sqlmodel import Session

from . import catalog, crud
from .models import Order

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

SALES_HEADERS = ["Date", "Time", "Table", "Item", "Qty", "Rate", "Total", "Payment", "Bill ID"]
MENU_HEADERS = ["Item Name", "Price", "In Stock", "Category ID"]
CATEGORY_HEADERS = ["Category Name", "ID"]


def payment_label(order: Order) -> str:
    if order.payment_cash > 0 and order.payment_online > 0:
        return "Mix"
    if order.payment_cash > 0:
        return "Cash"
    return "Online"


def sales_rows(session: Session) -> List[list]:
    orders = {order.id: order for order in crud.list_orders(session)}
    rows = []
    for item in crud.list_all_items(session):
        order = orders.get(item.order_id)
        if order is None:
            continue
        rows.append([
            order.created_at.date().isoformat(),
            order.created_at.time().strftime("%H:%M:%S"),
            order.table_label,
            item.item_name,
            item.quantity,
            item.rate,
            item.total,
            payment_label(order),
            order.id[:6],
        ])
    return rows


def _write_sheet(ws: Worksheet, headers: List[str], rows: Iterable[list]) -> None:
    ws.append(headers)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for row in rows:
        ws.append(row)
    for column in ws.columns:
        width = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column)
        ws.column_dimensions[get_column_letter(column[0].column)].width = min(width + 2, 50)


def export_snapshot(session: Session) -> bytes:
    """Dump orders, items, products and categories into an xlsx workbook."""
    wb = Workbook()
    sales = wb.active
    sales.title = "Sales History"
    _write_sheet(sales, SALES_HEADERS, sales_rows(session))

    menu = wb.create_sheet("Menu Items")
    _write_sheet(
        menu,
        MENU_HEADERS,
        (
            [product.name, product.price, "Yes" if product.is_available_now is not False else "No", product.category_id]
            for product in catalog.list_products(session)
        ),
    )

    categories = wb.create_sheet("Categories")
    _write_sheet(
        categories,
        CATEGORY_HEADERS,
        ([category.name, category.id] for category in catalog.list_categories(session)),
    )

    output = io.BytesIO()
    try:
        wb.save(output)
        return output.getvalue()
    except Exception as e:
        logger.error("Snapshot export failed: %s", e)
        raise
    finally:
        output.close()
