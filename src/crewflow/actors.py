"""
Actors that drive workflow transitions.

Every operation receives exactly one actor. The actor's ``kind`` is the key
used by the declarative transition tables in :mod:`crewflow.transitions`,
so role checks happen once per operation instead of being scattered
through the workflows.

Example:
    >>> actor = SupplyingBusiness(user_id=owner_id, business_id=shop_id)
    >>> actor.kind
    <ActorKind.DISTRIBUTOR: 'distributor'>
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class ActorKind(str, Enum):
    CUSTOMER = "customer"
    DISTRIBUTOR = "distributor"
    MANUFACTURER = "manufacturer"
    ADMIN = "admin"
    SYSTEM = "system"


class BusinessKind(str, Enum):
    DISTRIBUTOR = "distributor"
    MANUFACTURER = "manufacturer"


@dataclass(frozen=True)
class Customer:
    """The purchasing crew member."""

    user_id: UUID

    @property
    def kind(self) -> ActorKind:
        return ActorKind.CUSTOMER

    @property
    def actor_id(self) -> str:
        return str(self.user_id)


@dataclass(frozen=True)
class SupplyingBusiness:
    """A user acting on behalf of a distributor or manufacturer business."""

    user_id: UUID
    business_id: UUID
    business_kind: BusinessKind = BusinessKind.DISTRIBUTOR

    @property
    def kind(self) -> ActorKind:
        if self.business_kind == BusinessKind.MANUFACTURER:
            return ActorKind.MANUFACTURER
        return ActorKind.DISTRIBUTOR

    @property
    def actor_id(self) -> str:
        return str(self.user_id)


@dataclass(frozen=True)
class Admin:
    """Marketplace operator staff."""

    user_id: UUID

    @property
    def kind(self) -> ActorKind:
        return ActorKind.ADMIN

    @property
    def actor_id(self) -> str:
        return str(self.user_id)


@dataclass(frozen=True)
class SystemActor:
    """Automated callers such as payment and tracking webhooks."""

    name: str = "system"

    @property
    def kind(self) -> ActorKind:
        return ActorKind.SYSTEM

    @property
    def actor_id(self) -> str:
        return self.name


Actor = Customer | SupplyingBusiness | Admin | SystemActor

PAYMENT_WEBHOOK = SystemActor("payment_webhook")
TRACKING_WEBHOOK = SystemActor("tracking_webhook")


__all__ = [
    "Actor",
    "ActorKind",
    "Admin",
    "BusinessKind",
    "Customer",
    "PAYMENT_WEBHOOK",
    "SupplyingBusiness",
    "SystemActor",
    "TRACKING_WEBHOOK",
]
