# Status rules for bills, packages and maintenance requests.
# Functions mutate the ORM row in place; the caller commits.
from __future__ import annotations

from datetime import datetime
from typing import Dict, FrozenSet, Tuple

from . import models
from .errors import Conflict, ValidationError

BILL_STATUSES = ("unpaid", "pending", "paid")
PACKAGE_STATUSES = ("pending", "received")
MAINTENANCE_STATUSES = ("pending", "in_progress", "completed", "cancelled")
# Statuses owner/staff may set directly; cancelling belongs to the tenant
MAINTENANCE_PROGRESS_STATUSES = ("pending", "in_progress", "completed")

# Bill status machine:
#   unpaid --tenant--> pending --manager--> paid
#   unpaid --manager------------------------^
# Editing a bill resets any state to unpaid (see reset_after_edit); there is no
# pending -> unpaid "reject payment" edge.
BILL_TRANSITIONS: Dict[Tuple[str, str], FrozenSet[str]] = {
    ("unpaid", "pending"): frozenset({"tenant"}),
    ("unpaid", "paid"): frozenset({"owner", "staff", "admin"}),
    ("pending", "paid"): frozenset({"owner", "staff", "admin"}),
}


def can_transition(current: str, target: str, role: str) -> bool:
    return role in BILL_TRANSITIONS.get((current, target), frozenset())


def _transition_bill(bill: models.Bill, target: str, role: str) -> None:
    current = bill.status or "unpaid"
    if not can_transition(current, target, role):
        raise Conflict(
            f"Bill cannot move from {current} to {target}",
            {"bill_id": bill.id, "status": current},
        )
    bill.status = target


def mark_pending(bill: models.Bill, now: datetime) -> models.Bill:
    """Tenant reports payment; paid_at records when the claim was made."""
    _transition_bill(bill, "pending", "tenant")
    bill.paid_at = now
    return bill


def confirm_payment(bill: models.Bill, now: datetime, role: str) -> models.Bill:
    """Owner/staff confirmation. Confirming a paid bill again changes nothing."""
    if bill.status == "paid":
        return bill
    _transition_bill(bill, "paid", role)
    if bill.paid_at is None:
        bill.paid_at = now
    return bill


def reset_after_edit(bill: models.Bill) -> models.Bill:
    """Any content edit invalidates a previous payment claim or confirmation."""
    bill.status = "unpaid"
    bill.paid_at = None
    return bill


def set_package_status(package: models.Package, status: str, now: datetime) -> models.Package:
    """Apply a package status; 'received' is terminal and stamps received_at."""
    if status not in PACKAGE_STATUSES:
        raise ValidationError(f"Invalid package status: {status}")
    if package.status == "received":
        if status != "received":
            raise Conflict("Package already received", {"package_id": package.id})
        return package
    package.status = status
    if status == "received":
        package.received_at = now
    return package


def edit_maintenance(request: models.MaintenanceRequest, description: str) -> models.MaintenanceRequest:
    """Tenants may reword a request until work starts."""
    if request.status != "pending":
        raise Conflict(
            "Only pending maintenance requests can be edited",
            {"maintenance_id": request.id, "status": request.status},
        )
    request.description = description
    return request


def cancel_maintenance(request: models.MaintenanceRequest) -> models.MaintenanceRequest:
    if request.status != "pending":
        raise Conflict(
            "Only pending maintenance requests can be cancelled",
            {"maintenance_id": request.id, "status": request.status},
        )
    request.status = "cancelled"
    return request


def set_maintenance_progress(request: models.MaintenanceRequest, status: str) -> models.MaintenanceRequest:
    if status not in MAINTENANCE_PROGRESS_STATUSES:
        raise ValidationError(f"Invalid maintenance status: {status}")
    if request.status == "cancelled":
        raise Conflict("Maintenance request was cancelled", {"maintenance_id": request.id})
    request.status = status
    return request
