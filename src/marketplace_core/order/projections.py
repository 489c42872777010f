"""
Order Module Projections - Read Models for Query Operations

OrderRegistry holds the current state of every order. Amounts stay strings
(as they arrive in JSON payloads) and timestamps stay ISO strings; callers
convert with Decimal(...) and parse_datetime(...).

Status history is derived here, one entry per status-changing event, so it
can never drift from the events themselves.
"""

from typing import Any

from marketplace_core.kernel.events import Event
from marketplace_core.order.models import OrderStatus, PaymentStatus


class OrderRegistry:
    """
    Current state of all orders

    Built from events: OrderCreated, BiddingOpened, BidSubmitted, BidAccepted,
                       GroupJoined, OrderStatusChanged, OrderNoteAdded,
                       DeliveryTrackingUpdated, OrderPaymentRecorded,
                       OrderFeedbackLeft

    Query methods: get, list_orders, list_by_vendor, list_by_supplier, list_by_status,
                   list_expirable
    """

    def __init__(self) -> None:
        self.orders: dict[str, dict[str, Any]] = {}

    def apply_event(self, event: Event) -> None:
        """
        Apply an event to update the projection

        Args:
            event: Event to apply
        """
        if event.event_type == "OrderCreated":
            self._apply_order_created(event)
            return

        order = self.orders.get(event.payload.get("order_id", ""))
        if order is None:
            return

        if event.event_type == "BiddingOpened":
            self._apply_bidding_opened(order, event)
        elif event.event_type == "BidSubmitted":
            self._apply_bid_submitted(order, event)
        elif event.event_type == "BidAccepted":
            self._apply_bid_accepted(order, event)
        elif event.event_type == "GroupJoined":
            self._apply_group_joined(order, event)
        elif event.event_type == "OrderStatusChanged":
            self._apply_status_changed(order, event)
        elif event.event_type == "OrderNoteAdded":
            self._apply_note_added(order, event)
        elif event.event_type == "DeliveryTrackingUpdated":
            self._apply_delivery_tracking_updated(order, event)
        elif event.event_type == "OrderPaymentRecorded":
            self._apply_payment_recorded(order, event)
        elif event.event_type == "OrderFeedbackLeft":
            self._apply_feedback_left(order, event)
        else:
            return

        order["version"] = event.version
        order["updated_at"] = event.occurred_at.isoformat()

    def _history_entry(
        self, status: str, timestamp: str, note: str, actor_id: str | None
    ) -> dict[str, Any]:
        return {"status": status, "timestamp": timestamp, "note": note, "actor_id": actor_id}

    def _apply_order_created(self, event: Event) -> None:
        payload = event.payload
        group = None
        if payload.get("group"):
            group = {
                "min_participants": payload["group"]["min_participants"],
                "max_participants": payload["group"]["max_participants"],
                "deadline": payload["group"]["deadline"],
                "participants": {},
                "joined_at": {},
            }

        note = "Order created"
        if payload["source"] != "direct":
            note = f"Order spawned from {payload['source']} {payload['source_id']}"

        self.orders[payload["order_id"]] = {
            "order_id": payload["order_id"],
            "vendor_id": payload["vendor_id"],
            "supplier_id": payload.get("supplier_id"),
            "kind": payload["kind"],
            "source": payload["source"],
            "source_id": payload.get("source_id"),
            "title": payload["title"],
            "description": payload.get("description", ""),
            "category": payload.get("category", "general"),
            "unit": payload["unit"],
            "quantity": payload["quantity"],
            "estimated_price": payload.get("estimated_price"),
            "final_price": payload.get("final_price"),
            "status": payload["status"],
            "status_history": [
                self._history_entry(
                    payload["status"], payload["created_at"], note, payload.get("created_by")
                )
            ],
            "bids": {},
            "group": group,
            "notes": [],
            "delivery_tracking": {},
            "payment": {
                "status": PaymentStatus.UNPAID.value,
                "due_at": payload.get("payment_due_at"),
                "paid_at": None,
                "on_time": None,
            },
            "feedback": {
                "supplier_rating": None,
                "supplier_comment": None,
                "vendor_rating": None,
                "vendor_comment": None,
            },
            "created_at": payload["created_at"],
            "updated_at": payload["created_at"],
            "version": event.version,
        }

    def _apply_bidding_opened(self, order: dict, event: Event) -> None:
        payload = event.payload
        order["status"] = OrderStatus.BIDDING.value
        order["status_history"].append(
            self._history_entry(
                OrderStatus.BIDDING.value,
                payload["opened_at"],
                "First bid received",
                payload["opened_by"],
            )
        )

    def _apply_bid_submitted(self, order: dict, event: Event) -> None:
        payload = event.payload
        # One bid per supplier: a re-bid replaces the earlier one
        order["bids"][payload["supplier_id"]] = {
            "supplier_id": payload["supplier_id"],
            "price": payload["price"],
            "message": payload["message"],
            "turnaround_minutes": payload["turnaround_minutes"],
            "accepted": False,
            "submitted_at": payload["submitted_at"],
        }

    def _apply_bid_accepted(self, order: dict, event: Event) -> None:
        payload = event.payload
        order["bids"][payload["supplier_id"]]["accepted"] = True
        order["supplier_id"] = payload["supplier_id"]
        order["final_price"] = payload["final_price"]
        order["status"] = OrderStatus.ACCEPTED.value
        order["payment"]["due_at"] = payload["payment_due_at"]
        order["status_history"].append(
            self._history_entry(
                OrderStatus.ACCEPTED.value,
                payload["accepted_at"],
                f"Accepted bid from {payload['supplier_id']}",
                payload["accepted_by"],
            )
        )

    def _apply_group_joined(self, order: dict, event: Event) -> None:
        payload = event.payload
        order["group"]["participants"][payload["vendor_id"]] = payload["quantity"]
        order["group"]["joined_at"][payload["vendor_id"]] = payload["joined_at"]

    def _apply_status_changed(self, order: dict, event: Event) -> None:
        payload = event.payload
        order["status"] = payload["to_status"]
        order["status_history"].append(
            self._history_entry(
                payload["to_status"],
                payload["changed_at"],
                payload.get("note", ""),
                payload.get("changed_by"),
            )
        )

    def _apply_note_added(self, order: dict, event: Event) -> None:
        payload = event.payload
        order["notes"].append(
            {
                "note": payload["note"],
                "added_by": payload["added_by"],
                "added_at": payload["added_at"],
            }
        )

    def _apply_delivery_tracking_updated(self, order: dict, event: Event) -> None:
        order["delivery_tracking"].update(event.payload["tracking"])
        order["delivery_tracking"]["updated_at"] = event.payload["updated_at"]

    def _apply_payment_recorded(self, order: dict, event: Event) -> None:
        payload = event.payload
        order["payment"].update(
            {
                "status": PaymentStatus.PAID.value,
                "paid_at": payload["paid_at"],
                "on_time": payload["on_time"],
            }
        )

    def _apply_feedback_left(self, order: dict, event: Event) -> None:
        payload = event.payload
        if payload["rated_role"] == "supplier":
            order["feedback"]["supplier_rating"] = payload["rating"]
            order["feedback"]["supplier_comment"] = payload["comment"]
        else:
            order["feedback"]["vendor_rating"] = payload["rating"]
            order["feedback"]["vendor_comment"] = payload["comment"]

    # ========== Query Methods ==========

    def get(self, order_id: str) -> dict[str, Any] | None:
        return self.orders.get(order_id)

    def list_orders(
        self,
        vendor_id: str | None = None,
        supplier_id: str | None = None,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        Orders matching every given filter, newest first

        A supplier matches an order it is assigned to or has bid on.
        """
        result = []
        for order in self.orders.values():
            if vendor_id and order["vendor_id"] != vendor_id:
                continue
            if supplier_id and not (
                order["supplier_id"] == supplier_id or supplier_id in order["bids"]
            ):
                continue
            if status and order["status"] != status:
                continue
            result.append(order)
        return sorted(result, key=lambda o: (o["created_at"], o["order_id"]), reverse=True)

    def list_by_vendor(self, vendor_id: str) -> list[dict[str, Any]]:
        return self.list_orders(vendor_id=vendor_id)

    def list_by_supplier(self, supplier_id: str) -> list[dict[str, Any]]:
        return self.list_orders(supplier_id=supplier_id)

    def list_by_status(self, status: str) -> list[dict[str, Any]]:
        return self.list_orders(status=status)

    def list_by_source(self, source_id: str) -> list[dict[str, Any]]:
        """Orders spawned by an auction or group buy"""
        return [o for o in self.orders.values() if o["source_id"] == source_id]

    def list_expirable(self) -> list[dict[str, Any]]:
        """Pending/bidding group orders (candidates for the deadline sweep)"""
        open_statuses = {OrderStatus.PENDING.value, OrderStatus.BIDDING.value}
        return [
            o
            for o in self.orders.values()
            if o["group"] is not None and o["status"] in open_statuses
        ]
