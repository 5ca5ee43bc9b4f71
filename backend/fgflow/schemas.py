"""Pydantic schemas for API and use-case inputs."""
from datetime import date
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

RecipientType = Literal["direct_shop", "distributor", "direct_representative"]
ItemType = Literal["bulk", "units"]
PriceType = Literal["retail", "wholesale", "distributor", "special"]


class Actor(BaseModel):
    """The user performing a workflow action."""
    id: str
    name: str
    role: str
    model_config = ConfigDict(frozen=True)


# Request payloads: a direct-shop ask names one product, sales asks carry an item map.
class RequestedItem(BaseModel):
    name: str = Field(min_length=1)
    qty: int = Field(gt=0)
    product_id: Optional[str] = None


class SingleProductPayload(BaseModel):
    kind: Literal["single_product"] = "single_product"
    product: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    product_id: Optional[str] = None


class ItemListPayload(BaseModel):
    kind: Literal["item_list"] = "item_list"
    items: dict[str, RequestedItem] = Field(min_length=1)


RequestPayload = Annotated[Union[SingleProductPayload, ItemListPayload], Field(discriminator="kind")]


class DirectShopRequestCreate(BaseModel):
    payload: RequestPayload
    shop_name: Optional[str] = None
    shop_location: Optional[str] = None
    shop_contact: Optional[str] = None
    urgent: bool = False
    notes: Optional[str] = None


class SalesRequestCreate(BaseModel):
    request_type: Literal["distributor", "direct_representative"]
    payload: RequestPayload
    priority: str = "normal"
    notes: Optional[str] = None


class ApprovalIn(BaseModel):
    comments: Optional[str] = None


class RejectionIn(BaseModel):
    # Blank reasons are rejected by the use-case with MISSING_REASON, not by validation.
    reason: str = ""


# Dispatch
class RecipientDescriptor(BaseModel):
    type: RecipientType
    id: str = Field(min_length=1)
    name: str
    role: Optional[str] = None
    location: Optional[str] = None
    contact: Optional[str] = None
    shop_name: Optional[str] = None


class DispatchItemIn(BaseModel):
    product_name: str = Field(min_length=1)
    product_id: Optional[str] = None
    quantity: int = Field(ge=0)
    type: ItemType = "units"
    unit: Optional[str] = None
    unit_price: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False)
    batch_number: Optional[str] = None
    variant_name: Optional[str] = None
    from_location: Optional[str] = None


class ExternalDispatchCreate(BaseModel):
    recipient: RecipientDescriptor
    items: list[DispatchItemIn] = Field(min_length=1)
    notes: Optional[str] = None
    expected_delivery_date: Optional[date] = None
    priority: str = "normal"
    request_id: Optional[str] = None
    sales_request_id: Optional[str] = None


class DispatchInputs(BaseModel):
    """FG store inputs when dispatching an approved direct-shop request."""
    unit_price: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False)
    item_type: ItemType = "units"
    batch_number: Optional[str] = None
    variant_name: Optional[str] = None
    from_location: Optional[str] = None
    notes: Optional[str] = None
    expected_delivery_date: Optional[date] = None
    from_sales_request: bool = False
    sales_request_id: Optional[str] = None


class SalesDispatchItemIn(BaseModel):
    qty: int = Field(ge=0)
    unit_price: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False)
    type: ItemType = "units"
    batch_number: Optional[str] = None
    variant_name: Optional[str] = None
    from_location: Optional[str] = None


class SalesDispatchInputs(BaseModel):
    # Empty map dispatches every approved item at its approved quantity.
    items: dict[str, SalesDispatchItemIn] = Field(default_factory=dict)
    recipient_location: Optional[str] = None
    notes: Optional[str] = None
    expected_delivery_date: Optional[date] = None


class DispatchLineOut(BaseModel):
    product_id: str
    product_name: str
    variant_name: Optional[str] = None
    batch_number: Optional[str] = None
    quantity: int
    unit: str
    unit_price: float
    total_price: float
    type: ItemType


class DispatchResult(BaseModel):
    dispatch_id: str
    release_code: str
    status: str
    total_items: int
    total_quantity: int
    total_value: float
    lines: list[DispatchLineOut]


# Pricing
class PriceUpdateIn(BaseModel):
    price: float
    change_reason: Optional[str] = None
    effective_date: Optional[date] = None
    currency: Optional[str] = None
    price_type: Optional[PriceType] = None
