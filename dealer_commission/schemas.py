from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .utils import to_money

VehicleType = Literal["new", "used"]
SaleStatus = Literal["pending", "completed", "cancelled"]

# Leaves room in the 120-char column for a "_CORRECTED_<epoch ms>" suffix
STOCK_NUMBER_MAX_LENGTH = 64

MONEY_FIELDS = (
    "sale_price", "accessories_value",
    "warranty_selling_price", "warranty_cost",
    "service_price", "service_cost",
    "spiff_bonus",
)


class SaleIn(BaseModel):
    stock_number: str = Field("", max_length=STOCK_NUMBER_MAX_LENGTH)
    customer_name: str = ""
    vehicle_type: VehicleType = "new"
    sale_date: date | None = None

    sale_price: float = 0.0
    accessories_value: float = 0.0
    warranty_selling_price: float = 0.0
    warranty_cost: float = 0.0
    service_price: float = 0.0
    service_cost: float = 0.0
    spiff_bonus: float = 0.0
    spiff_comments: str = ""

    is_shared_sale: bool = False
    sales_partner_id: int | None = None
    split_percentage: int = Field(50, ge=1, le=99)

    status: SaleStatus = "pending"

    @field_validator(*MONEY_FIELDS, mode="before")
    @classmethod
    def _coerce_money(cls, v):
        return to_money(v)

    @field_validator("stock_number", "customer_name", mode="before")
    @classmethod
    def _strip(cls, v):
        return (v or "").strip() if isinstance(v, str) or v is None else v

    @model_validator(mode="after")
    def _shared_needs_partner(self):
        if self.is_shared_sale and self.sales_partner_id is None:
            raise ValueError("a shared sale needs a sales partner")
        if not self.is_shared_sale:
            self.sales_partner_id = None
        return self


class SaleRecord(BaseModel):
    """Read model for a stored sale, as returned by the store."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    stock_number: str
    salesperson_id: int
    salesperson_name: str | None = None
    customer_name: str = ""
    status: SaleStatus = "pending"
    created_at: datetime
    sale_price: float = 0.0
    vehicle_type: str = "new"
    is_shared_sale: bool = False
    sales_partner_id: int | None = None
    split_percentage: int = 50
    commission_total: float = 0.0
    version: int = 1
