"""Example function map for agent function calls.

Point the bridge at it with ``functions: examples.functions:FUNCTION_MAP``
in bridge.yaml, or pass ``functions=FUNCTION_MAP`` to ``VoiceRelay``.
"""

from __future__ import annotations

from typing import Any

_ORDERS = {
    "A100": {"status": "shipped", "eta": "2 days"},
    "A200": {"status": "processing", "eta": "5 days"},
}


def get_order_status(args: dict[str, Any]) -> dict[str, Any]:
    order_id = str(args.get("order_id", "")).upper()
    order = _ORDERS.get(order_id)
    if order is None:
        return {"order_id": order_id, "found": False}
    return {"order_id": order_id, "found": True, **order}


FUNCTION_MAP = {
    "get_order_status": get_order_status,
}
