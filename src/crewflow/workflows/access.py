"""Identity checks shared by the workflows.

Transition tables decide what a *kind* of actor may do; these helpers
decide whether a particular actor is a party to the record at all.
"""

from uuid import UUID

from crewflow.actors import Actor, Admin, Customer, SupplyingBusiness, SystemActor
from crewflow.exceptions import UnauthorizedError


def require_customer(actor: Actor, customer_id: UUID, action: str) -> None:
    """Allow the owning customer, admins and system actors."""
    if isinstance(actor, (Admin, SystemActor)):
        return
    if isinstance(actor, Customer) and actor.user_id == customer_id:
        return
    raise UnauthorizedError(actor.actor_id, action)


def require_business(actor: Actor, business_id: UUID, action: str) -> None:
    """Allow the supplying business, admins and system actors."""
    if isinstance(actor, (Admin, SystemActor)):
        return
    if isinstance(actor, SupplyingBusiness) and actor.business_id == business_id:
        return
    raise UnauthorizedError(actor.actor_id, action)


def require_party(actor: Actor, customer_id: UUID, business_id: UUID, action: str) -> None:
    """Allow either side of a transaction."""
    if isinstance(actor, Customer):
        require_customer(actor, customer_id, action)
    else:
        require_business(actor, business_id, action)


__all__ = ["require_business", "require_customer", "require_party"]
