"""
Who may change what on an order.

The rules live in ``UPDATE_POLICIES`` so they can be read and tested on
their own; ``OrderService.update_order`` only evaluates them.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from backoffice.core.errors import ConflictError, ForbiddenError
from backoffice.models.database import Order, OrderStatus, Role


@dataclass(frozen=True)
class OrderUpdatePolicy:
    settable_statuses: Tuple[str, ...]
    # Completion must go pending -> completed with a waiter and at least one line
    guard_completion: bool
    # Waiter may still be reassigned once the order is completed
    reassign_completed: bool
    status_denied_message: str = "Forbidden: You cannot change the status of this order."


UPDATE_POLICIES = {
    Role.CASHIER: OrderUpdatePolicy(
        settable_statuses=(OrderStatus.COMPLETED,),
        guard_completion=True,
        reassign_completed=False,
        status_denied_message="Cashiers can only mark orders as completed.",
    ),
    Role.MANAGER: OrderUpdatePolicy(
        settable_statuses=OrderStatus.ALL,
        guard_completion=False,
        reassign_completed=True,
    ),
    Role.SUPER_ADMIN: OrderUpdatePolicy(
        settable_statuses=OrderStatus.ALL,
        guard_completion=False,
        reassign_completed=True,
    ),
}


def policy_for(role: str) -> OrderUpdatePolicy:
    policy = UPDATE_POLICIES.get(role)
    if policy is None:
        raise ForbiddenError("Forbidden: You cannot update orders.")
    return policy


def check_waiter_change(policy: OrderUpdatePolicy, order: Order) -> None:
    if order.status == OrderStatus.COMPLETED and not policy.reassign_completed:
        raise ConflictError("Cannot reassign the waiter of a completed order.")


def check_status_change(
    policy: OrderUpdatePolicy,
    order: Order,
    new_status: str,
    assigned_waiter_id: Optional[int],
    line_count: int,
) -> None:
    """
    Raise if ``policy`` does not allow moving ``order`` to ``new_status``.

    ``assigned_waiter_id`` is the waiter already stored on the order; a
    waiter assigned by the same request does not count.
    """
    if new_status not in policy.settable_statuses:
        raise ForbiddenError(policy.status_denied_message)

    if new_status == OrderStatus.COMPLETED and policy.guard_completion:
        if order.status != OrderStatus.PENDING:
            raise ConflictError("Only pending orders can be marked as completed.")
        if not assigned_waiter_id:
            raise ConflictError("Cannot complete order without an assigned waiter.")
        if line_count == 0:
            raise ConflictError("Cannot complete an empty order.")
