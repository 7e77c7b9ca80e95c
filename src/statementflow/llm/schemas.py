"""Pydantic contract for LLM transaction extraction output."""
import datetime as dt
import json
from decimal import Decimal
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..utils.exceptions import SchemaViolation


class TransactionSchema(BaseModel):
    """One transaction as returned by the model."""
    model_config = ConfigDict(extra="ignore")

    date: dt.date = Field(description="Transaction date in YYYY-MM-DD format")
    description: str = Field(min_length=1, description="Merchant or transaction description")
    amount: Decimal = Field(gt=0, description="Absolute transaction amount")
    direction: Literal["debit", "credit"] = Field(
        description="debit: money spent or charged; credit: money received or paid back"
    )
    category: Optional[str] = Field(default=None, description="Category from the allowed list")
    currency: Optional[str] = Field(default=None, pattern=r"^[A-Z]{3}$")
    installment_number: Optional[int] = Field(default=None, ge=1)
    installment_total: Optional[int] = Field(default=None, ge=1)
    confidence: Optional[float] = Field(default=None, ge=0, le=1)


class ReceiptItemSchema(BaseModel):
    """One product line of a receipt."""
    model_config = ConfigDict(extra="ignore")

    description: str = Field(min_length=1, description="Product or service as printed")
    quantity: Decimal = Field(default=Decimal("1"), gt=0, description="Units or weight bought")
    unit_price: Optional[Decimal] = Field(default=None, gt=0, description="Price per unit")
    total_price: Decimal = Field(gt=0, description="Line total")
    category: Optional[str] = Field(default=None, description="Category from the allowed list")


class TransactionsResponse(BaseModel):
    """Pydantic schema for LLM response."""
    transactions: List[TransactionSchema]
    items: List[ReceiptItemSchema] = Field(default_factory=list)

    @model_validator(mode="after")
    def items_need_a_transaction(self):
        if self.items and not self.transactions:
            raise ValueError("receipt items given without the receipt transaction")
        return self


def parse_response(raw: Union[str, bytes, dict]) -> TransactionsResponse:
    """
    Validate raw model output against the transaction contract.

    Output is never repaired: anything that is not a single JSON object
    matching TransactionsResponse is rejected.

    Raises:
        SchemaViolation: If the output is not valid JSON or breaks the contract
    """
    if isinstance(raw, dict):
        data = raw
    else:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise SchemaViolation(f"Model output is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise SchemaViolation(f"Model output must be a JSON object, got {type(data).__name__}")

    try:
        return TransactionsResponse.model_validate(data)
    except ValidationError as e:
        raise SchemaViolation(f"Model output does not match schema: {e.error_count()} error(s): {e}")
