from __future__ import annotations

import json
import random
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml

from holocron.tools.base import ToolDescriptor, function_tool, object_schema


def _same(a: Any, b: str) -> bool:
    return str(a or "").strip().lower() == b.strip().lower()


class PurchaseStore:
    """Figurine orders kept as three tables: orders, figurines, order_figurines."""

    def __init__(
        self,
        orders: List[Dict[str, Any]],
        figurines: List[Dict[str, Any]],
        order_figurines: List[Dict[str, Any]],
    ) -> None:
        self.orders = orders
        self.figurines = figurines
        self.order_figurines = order_figurines

    @classmethod
    def from_yaml(cls, path: str | Path) -> "PurchaseStore":
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        return cls(
            orders=list(data.get("orders", [])),
            figurines=list(data.get("figurines", [])),
            order_figurines=list(data.get("order_figurines", [])),
        )

    def to_yaml(self, path: str | Path) -> None:
        data = {"orders": self.orders, "figurines": self.figurines, "order_figurines": self.order_figurines}
        Path(path).write_text(yaml.safe_dump(data, sort_keys=False, allow_unicode=True), encoding="utf-8")

    def find_orders(self, order_number: int = -1, customer_name: str = "") -> List[Dict[str, Any]]:
        matches = []
        for order in self.orders:
            if order_number > 0 and str(order.get("order_id")) != str(order_number):
                continue
            if customer_name.strip() and not _same(order.get("customer_name"), customer_name):
                continue
            matches.append(order)
        return matches

    def find_figurines(self, character_name: str = "") -> Dict[str, Dict[str, Any]]:
        return {
            str(f["figurine_id"]): f
            for f in self.figurines
            if not character_name.strip() or _same(f.get("name"), character_name)
        }

    def figurines_for(self, order_id: str) -> List[Dict[str, Any]]:
        return [row for row in self.order_figurines if str(row.get("order_id")) == order_id]


CUSTOMERS: Tuple[Tuple[str, str], ...] = (
    ("C001", "Luke Johnson"),
    ("C002", "Leia Parker"),
    ("C003", "Han Richards"),
    ("C004", "Ben Smith"),
    ("C005", "Yoda Masterson"),
    ("C006", "Rey Fisher"),
    ("C007", "Anakin Skywalker"),
    ("C008", "Padmé Amidala"),
    ("C009", "Lando Calrissian"),
    ("C010", "Obi Wan"),
)


def generate_purchases(
    figurines: Sequence[Dict[str, Any]],
    customers: Sequence[Tuple[str, str]] = CUSTOMERS,
    first_order: int = 60,
    fixed_orders: Optional[Mapping[int, Sequence[str]]] = None,
    rng: Optional[random.Random] = None,
) -> PurchaseStore:
    """One order per customer, each for one to four random figurines.

    ``fixed_orders`` pins the figurines of particular order numbers; unknown
    figurine ids in it are ignored.
    """
    rng = rng or random.Random()
    by_id = {str(f["figurine_id"]): f for f in figurines}
    orders: List[Dict[str, Any]] = []
    order_figurines: List[Dict[str, Any]] = []
    for offset, (customer_id, customer_name) in enumerate(customers):
        order_id = first_order + offset
        chosen = [by_id[i] for i in (fixed_orders or {}).get(order_id, ()) if i in by_id]
        if not chosen:
            chosen = rng.sample(list(figurines), rng.randint(1, min(4, len(figurines))))
        orders.append(
            {
                "order_id": str(order_id),
                "customer_id": customer_id,
                "customer_name": customer_name,
                "total_cost": round(sum(float(f["price"]) for f in chosen), 2),
            }
        )
        order_figurines.extend({"order_id": str(order_id), "figurine_id": str(f["figurine_id"])} for f in chosen)
    return PurchaseStore(orders=orders, figurines=list(figurines), order_figurines=order_figurines)


class PurchaseLookup:
    """Lists the figurines a customer bought, filtered by order, character or customer."""

    def __init__(self, store: Optional[PurchaseStore]) -> None:
        self.store = store

    async def __call__(
        self,
        order_number: int = -1,
        character_name: str = "",
        customer_name: str = "",
    ) -> str:
        if order_number <= 0 and not character_name.strip() and not customer_name.strip():
            return json.dumps(
                {"error": "At least one parameter is required: order_number, character_name, or customer_name."}
            )
        if self.store is None:
            return json.dumps({"error": "Purchase store is not configured."})

        orders = self.store.find_orders(order_number, customer_name)
        figurines = self.store.find_figurines(character_name)
        if not figurines and character_name.strip():
            return json.dumps({"error": f"No figurines found for character '{character_name}'."})

        results = []
        for order in orders:
            order_id = str(order.get("order_id"))
            figures = [
                {
                    "figurineId": figurine_id,
                    "figurineName": figurines[figurine_id].get("name"),
                    "price": figurines[figurine_id].get("price"),
                    "description": figurines[figurine_id].get("description"),
                }
                for figurine_id in (str(row.get("figurine_id")) for row in self.store.figurines_for(order_id))
                if figurine_id in figurines
            ]
            # orders without a matching figurine are left out
            if figures:
                results.append(
                    {
                        "orderId": order_id,
                        "customerId": order.get("customer_id"),
                        "customerName": order.get("customer_name"),
                        "totalCost": order.get("total_cost"),
                        "figures": figures,
                    }
                )
        return json.dumps(results)

    def descriptor(self) -> ToolDescriptor:
        return function_tool(
            name="StarWarsPurchaseTool",
            description=(
                "A tool for getting information on Star Wars figurine purchases. "
                "This tool can take either an order number, character name, and customer name as parameters, "
                "and returns a list of purchases. Only one of the parameters is required, but more can be "
                "used to narrow down the results."
            ),
            parameters=object_schema(
                {
                    "order_number": {"type": "integer", "description": "The order number"},
                    "character_name": {"type": "string", "description": "The name of the figurine or character ordered"},
                    "customer_name": {"type": "string", "description": "The name of the customer who ordered the figurines"},
                }
            ),
        )(self)
