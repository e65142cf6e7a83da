"""Session cart: an ordered list of (product id, quantity) lines.

The helpers never touch the database; callers pass the product's current
stock so quantities are clamped to ``[1, stock]`` at mutation time.
"""
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int

    def to_dict(self) -> dict:
        return {"productId": self.product_id, "quantity": self.quantity}

    @classmethod
    def from_dict(cls, data: dict) -> "CartLine":
        return cls(product_id=int(data["productId"]), quantity=int(data["quantity"]))


def add_line(lines: List[CartLine], product_id: int, quantity: int, stock: int) -> List[CartLine]:
    qty = max(1, quantity)
    out = []
    found = False
    for line in lines:
        if line.product_id == product_id:
            out.append(CartLine(product_id, min(line.quantity + qty, stock)))
            found = True
        else:
            out.append(line)
    if not found:
        out.append(CartLine(product_id, min(qty, stock)))
    return out


def update_line(lines: List[CartLine], product_id: int, quantity: int, stock: Optional[int]) -> List[CartLine]:
    """Zero or less removes the line; an unknown product (stock None) keeps the requested quantity."""
    qty = quantity if stock is None else min(quantity, stock)
    if qty <= 0:
        return remove_line(lines, product_id)
    return [CartLine(line.product_id, qty) if line.product_id == product_id else line for line in lines]


def remove_line(lines: List[CartLine], product_id: int) -> List[CartLine]:
    return [line for line in lines if line.product_id != product_id]
