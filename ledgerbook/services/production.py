"""
Production costing: material requirements and overhead absorption for a
production order against its bill of materials.
"""

from decimal import Decimal
from typing import List, Dict, Any

from ledgerbook.models import BillOfMaterials, BomOverhead
from ledgerbook.services.journal_posting import money, to_decimal, ZERO

COST_METHODS = ("per_unit", "per_batch", "percentage_of_material")


def overhead_amount(overhead: BomOverhead, quantity, material_cost) -> Decimal:
    """
    per_unit: cost x quantity produced
    per_batch: cost, once per order
    percentage_of_material: material cost x cost / 100
    """
    cost = to_decimal(overhead.cost)
    if overhead.cost_method == "per_unit":
        return money(cost * to_decimal(quantity))
    if overhead.cost_method == "per_batch":
        return money(cost)
    if overhead.cost_method == "percentage_of_material":
        return money(to_decimal(material_cost) * cost / Decimal("100"))
    raise ValueError(f"Unknown overhead cost method '{overhead.cost_method}'")


def material_requirements(bom: BillOfMaterials, quantity) -> List[Dict[str, Any]]:
    """Component quantities for `quantity` finished units, valued at current average cost"""
    rows = []
    for component in bom.components:
        required = to_decimal(component.quantity) * to_decimal(quantity)
        unit_cost = to_decimal(component.item.average_unit_cost)
        rows.append({
            "item": component.item,
            "quantity": required,
            "unit_cost": unit_cost,
            "total_cost": money(required * unit_cost),
        })
    return rows


def overhead_costs(bom: BillOfMaterials, quantity, material_cost) -> List[Dict[str, Any]]:
    return [
        {
            "name": overhead.name,
            "account_id": overhead.account_id,
            "cost_method": overhead.cost_method,
            "amount": overhead_amount(overhead, quantity, material_cost),
        }
        for overhead in bom.overheads
    ]


def total_of(rows: List[Dict[str, Any]], key: str) -> Decimal:
    return sum((row[key] for row in rows), ZERO)
