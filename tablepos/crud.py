from __future__ import annotations

from datetime import date, datetime, timezone
from typing import List

from sqlalchemy import func
from sqlmodel import Session, select

from .errors import NotFoundError
from .models import OPEN_STATUSES, Order, OrderItem, OrderStatus, utcnow

# Nothing in this module commits. Callers wrap each operation in
# database.atomic() so item changes and the total recompute land together.


# -------------------------
# Order operations
# -------------------------

def get_order(session: Session, order_id: str) -> Order | None:
    return session.get(Order, order_id)


def require_order(session: Session, order_id: str) -> Order:
    order = session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def find_open_order_by_table(
    session: Session, table: str, *, exclude_id: str | None = None
) -> Order | None:
    """Return the open (preparing/served) order for ``table``.

    If the table somehow has more than one open order, the earliest created
    one wins. That situation is reported by nothing here.
    """
    statement = select(Order).where(
        Order.table_label == table,
        Order.status.in_(OPEN_STATUSES),
    )
    if exclude_id is not None:
        statement = statement.where(Order.id != exclude_id)
    statement = statement.order_by(Order.created_at.asc(), Order.id.asc())
    return session.exec(statement).first()


def create_order(session: Session, table: str) -> Order:
    existing = find_open_order_by_table(session, table)
    if existing is not None:
        return existing
    now = utcnow()
    order = Order(
        table_label=table,
        status=OrderStatus.PREPARING,
        created_at=now,
        updated_at=now,
        total_amount=0,
        payment_cash=0,
        payment_online=0,
    )
    session.add(order)
    session.flush()
    return order


def delete_order(session: Session, order_id: str) -> None:
    order = require_order(session, order_id)
    for item in list_order_items(session, order_id):
        session.delete(item)
    session.flush()
    session.delete(order)
    session.flush()


def recompute_total(session: Session, order_id: str) -> Order:
    order = require_order(session, order_id)
    session.flush()
    total = session.exec(
        select(func.coalesce(func.sum(OrderItem.total), 0)).where(OrderItem.order_id == order_id)
    ).one()
    order.total_amount = float(total or 0)
    order.updated_at = utcnow()
    session.add(order)
    session.flush()
    return order


def list_open_orders(session: Session) -> List[Order]:
    statement = (
        select(Order)
        .where(Order.status.in_(OPEN_STATUSES))
        .order_by(Order.updated_at.desc(), Order.id.desc())
    )
    return list(session.exec(statement))


def list_paid_orders(session: Session) -> List[Order]:
    statement = (
        select(Order)
        .where(Order.status == OrderStatus.PAID)
        .order_by(Order.paid_at.desc(), Order.id.desc())
    )
    return list(session.exec(statement))


def list_orders(session: Session) -> List[Order]:
    statement = select(Order).order_by(Order.created_at.asc(), Order.id.asc())
    return list(session.exec(statement))


def active_tables(session: Session) -> List[str]:
    return [order.table_label for order in list_open_orders(session)]


# -------------------------
# Line item operations
# -------------------------

def list_order_items(session: Session, order_id: str) -> List[OrderItem]:
    statement = select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id.asc())
    return list(session.exec(statement))


def list_all_items(session: Session) -> List[OrderItem]:
    return list(session.exec(select(OrderItem).order_by(OrderItem.id.asc())))


def get_order_item(session: Session, order_id: str, item_id: int) -> OrderItem:
    item = session.get(OrderItem, item_id)
    if item is None or item.order_id != order_id:
        raise NotFoundError(f"Item {item_id} not found in order {order_id}")
    return item


def find_stackable_item(session: Session, order_id: str, item_name: str) -> OrderItem | None:
    """Untagged row with the same name. Rows that arrived through a merge never stack."""
    statement = (
        select(OrderItem)
        .where(
            OrderItem.order_id == order_id,
            OrderItem.item_name == item_name,
            OrderItem.original_table.is_(None),
        )
        .order_by(OrderItem.id.asc())
    )
    return session.exec(statement).first()


def add_item_unit(
    session: Session, order_id: str, item_name: str, category_name: str, rate: float
) -> OrderItem:
    item = find_stackable_item(session, order_id, item_name)
    if item is not None:
        item.quantity += 1
        item.total = item.quantity * item.rate
    else:
        item = OrderItem(
            order_id=order_id,
            item_name=item_name,
            category_name=category_name,
            quantity=1,
            rate=rate,
            total=rate,
        )
    session.add(item)
    session.flush()
    return item


def update_item(session: Session, item: OrderItem, quantity: int, rate: float) -> OrderItem:
    item.quantity = quantity
    item.rate = rate
    item.total = quantity * rate
    session.add(item)
    session.flush()
    return item


def delete_item(session: Session, item: OrderItem) -> None:
    session.delete(item)
    session.flush()


def reassign_items(session: Session, source: Order, target: Order) -> int:
    """Move every item of ``source`` onto ``target``, tagging where it came from.

    The tag is overwritten on rows that already carry one from an earlier merge.
    """
    items = list_order_items(session, source.id)
    for item in items:
        item.order_id = target.id
        item.original_table = source.table_label
        session.add(item)
    session.flush()
    return len(items)


# -------------------------
# Reports
# -------------------------

def _utc_day(moment: datetime) -> date:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date()


def sales_summary(session: Session, day: date) -> dict:
    orders = [
        order
        for order in list_paid_orders(session)
        if order.paid_at is not None and _utc_day(order.paid_at) == day
    ]
    return {
        "day": day,
        "order_count": len(orders),
        "total_revenue": sum(order.total_amount for order in orders),
        "total_cash": sum(order.payment_cash for order in orders),
        "total_online": sum(order.payment_online for order in orders),
        "orders": orders,
    }
