"""
Directory of products, services, businesses and customers.

The workflows only read from the catalog, except for remembering the
payment gateway customer id created for a customer on first invoice.
"""

import asyncio
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from pydantic import BaseModel

from crewflow.actors import BusinessKind, SupplyingBusiness
from crewflow.exceptions import NotFoundError
from crewflow.integrations.carriers import Address
from crewflow.money import ZERO


class Product(BaseModel):
    product_id: UUID
    name: str
    business_id: UUID
    price: Decimal
    currency: str = "USD"
    discount: Decimal = ZERO
    weight: Decimal = Decimal("16")
    length: Decimal = Decimal("10")
    width: Decimal = Decimal("8")
    height: Decimal = Decimal("4")


class Service(BaseModel):
    service_id: UUID
    name: str
    business_id: UUID
    price: Decimal
    currency: str = "USD"
    is_quotable: bool = False


class Business(BaseModel):
    business_id: UUID
    name: str
    kind: BusinessKind = BusinessKind.DISTRIBUTOR
    owner_user_id: UUID
    email: str
    address: Address = Address()
    payout_account_id: str | None = None
    handles_shipping: bool = False
    default_shipping_cost: Decimal = ZERO

    def as_actor(self) -> SupplyingBusiness:
        """The actor used when this business acts through an emailed token."""
        return SupplyingBusiness(
            user_id=self.owner_user_id,
            business_id=self.business_id,
            business_kind=self.kind,
        )


class CustomerProfile(BaseModel):
    user_id: UUID
    name: str
    email: str
    gateway_customer_id: str | None = None


@runtime_checkable
class Catalog(Protocol):
    async def get_product(self, product_id: UUID) -> Product: ...

    async def get_service(self, service_id: UUID) -> Service: ...

    async def get_business(self, business_id: UUID) -> Business: ...

    async def get_customer(self, user_id: UUID) -> CustomerProfile: ...

    async def set_gateway_customer_id(self, user_id: UUID, gateway_customer_id: str) -> None: ...


class InMemoryCatalog:
    """
    Dictionary-backed catalog.

    All getters raise ``NotFoundError`` for unknown ids.
    """

    def __init__(self) -> None:
        self._products: dict[UUID, Product] = {}
        self._services: dict[UUID, Service] = {}
        self._businesses: dict[UUID, Business] = {}
        self._customers: dict[UUID, CustomerProfile] = {}
        self._lock = asyncio.Lock()

    def add_product(self, product: Product) -> Product:
        self._products[product.product_id] = product
        return product

    def add_service(self, service: Service) -> Service:
        self._services[service.service_id] = service
        return service

    def add_business(self, business: Business) -> Business:
        self._businesses[business.business_id] = business
        return business

    def add_customer(self, customer: CustomerProfile) -> CustomerProfile:
        self._customers[customer.user_id] = customer
        return customer

    async def get_product(self, product_id: UUID) -> Product:
        try:
            return self._products[product_id]
        except KeyError:
            raise NotFoundError("product", product_id) from None

    async def get_service(self, service_id: UUID) -> Service:
        try:
            return self._services[service_id]
        except KeyError:
            raise NotFoundError("service", service_id) from None

    async def get_business(self, business_id: UUID) -> Business:
        try:
            return self._businesses[business_id]
        except KeyError:
            raise NotFoundError("business", business_id) from None

    async def get_customer(self, user_id: UUID) -> CustomerProfile:
        try:
            return self._customers[user_id]
        except KeyError:
            raise NotFoundError("customer", user_id) from None

    async def set_gateway_customer_id(self, user_id: UUID, gateway_customer_id: str) -> None:
        async with self._lock:
            customer = await self.get_customer(user_id)
            self._customers[user_id] = customer.model_copy(
                update={"gateway_customer_id": gateway_customer_id}
            )


__all__ = [
    "Business",
    "Catalog",
    "CustomerProfile",
    "InMemoryCatalog",
    "Product",
    "Service",
]
