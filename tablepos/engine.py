"""Table session engine: table resolution, merges, and the status/payment state machine.

Every public method is one atomic unit against the store. Change
notifications go out only after the unit has committed.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import List

from sqlmodel import Session

from . import backup, crud
from .database import atomic
from .errors import ConflictError, ValidationError
from .events import ChangeFeed, OrderEvent
from .models import Order, OrderItem, OrderStatus, utcnow

logger = logging.getLogger(__name__)

SETTABLE_STATUSES = (OrderStatus.PREPARING, OrderStatus.SERVED)


@dataclass(frozen=True)
class ChangeTableResult:
    merged: bool
    resulting_order_id: str


@dataclass(frozen=True)
class TableSlot:
    label: str
    occupied: bool
    order_id: str | None = None


def validate_settlement(order: Order, cash: float, online: float, tolerance: float = 0.5) -> None:
    """Reject a settlement before it reaches the engine.

    The engine records whatever amounts it is given; the paying side checks them.
    """
    if cash < 0 or online < 0:
        raise ValidationError("Payment amounts cannot be negative")
    paid = cash + online
    if paid < order.total_amount - tolerance:
        raise ValidationError(f"Payment too low! Missing {order.total_amount - paid:g}")


def _clean_label(table: str) -> str:
    label = (table or "").strip()
    if not label:
        raise ValidationError("Table label is required")
    return label


class TableSessionEngine:
    def __init__(self, session: Session, feed: ChangeFeed | None = None) -> None:
        self.session = session
        self.feed = feed or ChangeFeed()

    # -------------------------
    # Table resolution
    # -------------------------

    def open_table(self, table: str) -> Order:
        label = _clean_label(table)
        with atomic(self.session):
            order = crud.create_order(self.session, label)
        self.session.refresh(order)
        self._publish(order.id, "open", order.table_label)
        return order

    def open_walk_in(self) -> Order:
        with atomic(self.session):
            taken = set(crud.active_tables(self.session))
            label = f"Walk-in {random.randint(0, 999)}"
            while label in taken:
                label = f"Walk-in {random.randint(0, 999)}"
            order = crud.create_order(self.session, label)
        self.session.refresh(order)
        self._publish(order.id, "open", order.table_label)
        return order

    def active_tables(self) -> List[str]:
        with atomic(self.session):
            return crud.active_tables(self.session)

    def table_board(self, count: int) -> List[TableSlot]:
        with atomic(self.session):
            open_orders = crud.list_open_orders(self.session)
        by_label: dict[str, str] = {}
        for order in open_orders:
            by_label.setdefault(order.table_label, order.id)
        slots = [
            TableSlot(label=str(number), occupied=str(number) in by_label, order_id=by_label.get(str(number)))
            for number in range(1, count + 1)
        ]
        board_labels = {slot.label for slot in slots}
        slots.extend(
            TableSlot(label=label, occupied=True, order_id=order_id)
            for label, order_id in by_label.items()
            if label not in board_labels
        )
        return slots

    def get_order(self, order_id: str) -> Order:
        with atomic(self.session):
            order = crud.require_order(self.session, order_id)
        self.session.refresh(order)
        return order

    def find_occupant(self, table: str, exclude_id: str | None = None) -> Order | None:
        label = _clean_label(table)
        with atomic(self.session):
            return crud.find_open_order_by_table(self.session, label, exclude_id=exclude_id)

    def list_items(self, order_id: str) -> List[OrderItem]:
        with atomic(self.session):
            crud.require_order(self.session, order_id)
            return crud.list_order_items(self.session, order_id)

    def change_table(self, order_id: str, new_table: str) -> ChangeTableResult:
        label = _clean_label(new_table)
        with atomic(self.session):
            source = crud.require_order(self.session, order_id)
            self.ensure_open(source)
            target = crud.find_open_order_by_table(self.session, label, exclude_id=order_id)
            if target is None:
                source.table_label = label
                source.updated_at = utcnow()
                self.session.add(source)
                result = ChangeTableResult(merged=False, resulting_order_id=source.id)
            else:
                source_label = source.table_label
                moved = crud.reassign_items(self.session, source, target)
                crud.recompute_total(self.session, target.id)
                self.session.delete(source)
                self.session.flush()
                result = ChangeTableResult(merged=True, resulting_order_id=target.id)
        if result.merged:
            logger.info(
                "Merged order %s (table %s, %d items) into order %s (table %s)",
                order_id, source_label, moved, target.id, label,
            )
            self._publish(order_id, "merged-away", source_label)
            self._publish(target.id, "merged-into", label)
        else:
            self._publish(order_id, "renamed", label)
        return result

    # -------------------------
    # Line items
    # -------------------------

    def add_item(
        self,
        order_id: str,
        name: str,
        category_name: str,
        rate: float,
        quantity: int = 1,
    ) -> OrderItem:
        """Add ``quantity`` units of an item, one unit at a time.

        Availability against the catalog is the caller's job and must happen
        before this call.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Item name is required")
        if rate <= 0:
            raise ValidationError("Rate must be greater than 0")
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        with atomic(self.session):
            order = crud.require_order(self.session, order_id)
            self.ensure_open(order)
            for _ in range(quantity):
                item = crud.add_item_unit(self.session, order_id, name, category_name or "Manual", rate)
            crud.recompute_total(self.session, order_id)
        self.session.refresh(item)
        self._publish(order_id, "item-added", order.table_label)
        return item

    def remove_item(self, order_id: str, item_id: int) -> Order:
        with atomic(self.session):
            order = crud.require_order(self.session, order_id)
            self.ensure_open(order)
            item = crud.get_order_item(self.session, order_id, item_id)
            crud.delete_item(self.session, item)
            crud.recompute_total(self.session, order_id)
        self.session.refresh(order)
        self._publish(order_id, "item-removed", order.table_label)
        return order

    def update_line_item(self, order_id: str, item_id: int, quantity: int, rate: float) -> OrderItem:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        if rate <= 0:
            raise ValidationError("Rate must be greater than 0")
        with atomic(self.session):
            order = crud.require_order(self.session, order_id)
            self.ensure_open(order)
            item = crud.get_order_item(self.session, order_id, item_id)
            crud.update_item(self.session, item, quantity, rate)
            crud.recompute_total(self.session, order_id)
        self.session.refresh(item)
        self._publish(order_id, "item-updated", order.table_label)
        return item

    # -------------------------
    # Status and payment
    # -------------------------

    def set_status(self, order_id: str, status: OrderStatus | str) -> Order:
        try:
            status = OrderStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown status {status!r}") from exc
        if status not in SETTABLE_STATUSES:
            raise ValidationError(f"Status can only be set to preparing or served, not {status.value}")
        with atomic(self.session):
            order = crud.require_order(self.session, order_id)
            self.ensure_open(order)
            order.status = status
            order.updated_at = utcnow()
            self.session.add(order)
        self.session.refresh(order)
        self._publish(order_id, "status", order.table_label)
        return order

    def process_payment(self, order_id: str, cash: float, online: float) -> Order:
        with atomic(self.session):
            order = crud.require_order(self.session, order_id)
            self.ensure_open(order)
            now = utcnow()
            order.status = OrderStatus.PAID
            order.payment_cash = cash
            order.payment_online = online
            order.paid_at = now
            order.updated_at = now
            self.session.add(order)
            backup.mark_dirty(self.session)
        self.session.refresh(order)
        logger.info(
            "Order %s (table %s) paid: total=%s cash=%s online=%s",
            order.id, order.table_label, order.total_amount, cash, online,
        )
        self._publish(order_id, "paid", order.table_label)
        return order

    # -------------------------
    # Removal
    # -------------------------

    def delete_order(self, order_id: str) -> None:
        with atomic(self.session):
            order = crud.require_order(self.session, order_id)
            label = order.table_label
            crud.delete_order(self.session, order_id)
        logger.info("Deleted order %s (table %s)", order_id, label)
        self._publish(order_id, "deleted", label)

    def close_table(self, order_id: str) -> bool:
        """Leave an order. Empty orders are deleted so they do not hold the table."""
        with atomic(self.session):
            order = crud.require_order(self.session, order_id)
            label = order.table_label
            if order.is_terminal or order.total_amount > 0:
                return False
            crud.delete_order(self.session, order_id)
        logger.info("Dropped empty order %s (table %s)", order_id, label)
        self._publish(order_id, "deleted", label)
        return True

    # -------------------------
    # Internals
    # -------------------------

    @staticmethod
    def ensure_open(order: Order) -> None:
        if order.is_terminal:
            raise ConflictError(f"Order {order.id} is already {order.status.value}")

    def _publish(self, order_id: str, action: str, table_label: str | None) -> None:
        self.feed.publish(OrderEvent(order_id=order_id, action=action, table_label=table_label))
