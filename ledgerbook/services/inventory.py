"""
Inventory Service
Weighted-average stock movements with an item ledger trail.

Stock-in re-weights the average cost; stock-out is always valued at the
current average and never changes it. Every movement re-reads the item row
under a row lock so concurrent documents cannot oversell.
"""

from sqlalchemy.orm import Session
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
import logging

from ledgerbook.models import Item, ItemLedger
from ledgerbook.services.journal_posting import SystemRole, to_decimal, money

logger = logging.getLogger(__name__)

FOUR_PLACES = Decimal("0.0001")


class StockError(ValueError):
    """Not enough stock on hand for an issue"""


def inventory_role_for(item: Item) -> str:
    """Raw materials and finished goods are carried in separate inventory accounts"""
    if item.item_type == "raw_material":
        return SystemRole.INVENTORY_RAW_MATERIAL
    return SystemRole.INVENTORY_FINISHED_GOODS


class InventoryService:

    def __init__(self, db: Session, company_id: int, user_id: Optional[int] = None):
        self.db = db
        self.company_id = company_id
        self.user_id = user_id

    def receive(
        self,
        item: Item,
        quantity,
        unit_cost,
        transaction_type: str,
        transaction_date: date,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Decimal:
        """Bring stock in and re-weight the average cost. Returns the value received."""
        qty = to_decimal(quantity)
        cost = to_decimal(unit_cost)
        if qty <= 0:
            raise StockError(f"Quantity received for {item.name} must be positive")
        if cost < 0:
            raise StockError(f"Unit cost for {item.name} cannot be negative")
        self.lock(item)

        on_hand = to_decimal(item.quantity_on_hand)
        avg_cost = to_decimal(item.average_unit_cost)
        new_qty = on_hand + qty

        if on_hand <= 0:
            new_avg = cost
        else:
            new_avg = ((on_hand * avg_cost) + (qty * cost)) / new_qty

        item.quantity_on_hand = new_qty
        item.average_unit_cost = new_avg.quantize(FOUR_PLACES, rounding=ROUND_HALF_UP)

        value = money(qty * cost)
        self._write_ledger(
            item, transaction_type, transaction_date, qty, cost, value,
            reference_type, reference_id, reference_number, notes
        )
        return value

    def issue(
        self,
        item: Item,
        quantity,
        transaction_type: str,
        transaction_date: date,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Decimal:
        """Take stock out at average cost. Returns the cost of the quantity issued."""
        qty = to_decimal(quantity)
        if qty <= 0:
            raise StockError(f"Quantity issued for {item.name} must be positive")
        self.lock(item)

        on_hand = to_decimal(item.quantity_on_hand)
        if qty > on_hand:
            raise StockError(f"Insufficient stock for {item.name}: {on_hand} on hand, {qty} required")

        avg_cost = to_decimal(item.average_unit_cost)
        item.quantity_on_hand = on_hand - qty

        value = money(qty * avg_cost)
        self._write_ledger(
            item, transaction_type, transaction_date, -qty, avg_cost, value,
            reference_type, reference_id, reference_number, notes
        )
        return value

    def withdraw(
        self,
        item: Item,
        quantity,
        unit_cost,
        transaction_type: str,
        transaction_date: date,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Decimal:
        """
        Take back stock that an earlier receipt brought in, at that receipt's cost,
        and re-weight the average over what remains. Returns the value withdrawn.
        """
        qty = to_decimal(quantity)
        cost = to_decimal(unit_cost)
        if qty <= 0:
            raise StockError(f"Quantity withdrawn for {item.name} must be positive")
        self.lock(item)

        on_hand = to_decimal(item.quantity_on_hand)
        if qty > on_hand:
            raise StockError(f"Insufficient stock for {item.name}: {on_hand} on hand, {qty} to withdraw")

        remaining = on_hand - qty
        if remaining > 0:
            new_avg = (on_hand * to_decimal(item.average_unit_cost) - qty * cost) / remaining
            if new_avg < 0:
                raise StockError(f"Stock of {item.name} is worth less than the {qty} units being withdrawn")
            item.average_unit_cost = new_avg.quantize(FOUR_PLACES, rounding=ROUND_HALF_UP)
        item.quantity_on_hand = remaining

        value = money(qty * cost)
        self._write_ledger(
            item, transaction_type, transaction_date, -qty, cost, value,
            reference_type, reference_id, reference_number, notes
        )
        return value

    def lock(self, item: Item) -> Item:
        """Re-read the item row under a row lock; pending changes are flushed first"""
        self.db.flush()
        return self.db.query(Item).filter(Item.id == item.id).populate_existing().with_for_update().one()

    def check_available(self, item: Item, quantity):
        if not item.is_stocked:
            return
        self.lock(item)
        if to_decimal(quantity) > to_decimal(item.quantity_on_hand):
            raise StockError(f"Insufficient stock for {item.name}")

    def _write_ledger(self, item, transaction_type, transaction_date, signed_qty, unit_cost, value,
                      reference_type, reference_id, reference_number, notes):
        entry = ItemLedger(
            company_id=self.company_id,
            item_id=item.id,
            transaction_date=transaction_date,
            transaction_type=transaction_type,
            quantity=signed_qty,
            unit_cost=unit_cost,
            total_cost=value,
            balance_after=item.quantity_on_hand,
            average_cost_after=item.average_unit_cost,
            reference_type=reference_type,
            reference_id=reference_id,
            reference_number=reference_number,
            notes=notes,
            created_by=self.user_id
        )
        self.db.add(entry)
        logger.info(
            f"Item {item.item_code}: {transaction_type} {signed_qty} @ {unit_cost} "
            f"-> on hand {item.quantity_on_hand}"
        )
        return entry
