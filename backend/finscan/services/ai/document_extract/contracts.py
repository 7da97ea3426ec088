"""Document extraction contracts — router output + the three financial schemas.

Each supported ``document_type`` maps to exactly one pydantic model in
``EXTRACTION_SCHEMAS``; ``unknown`` has no schema and never carries data.
Scalars are strict so malformed model output fails instead of being coerced.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, Strict, ValidationError

Text = Annotated[str, Strict()]
Number = Annotated[float, Strict()]


class DocumentType(StrEnum):
    BANK_STATEMENT = "bank_statement"
    INVOICE = "invoice"
    RECEIPT = "receipt"
    UNKNOWN = "unknown"


SUPPORTED_DOCUMENT_TYPES = (
    DocumentType.BANK_STATEMENT,
    DocumentType.INVOICE,
    DocumentType.RECEIPT,
)


class _Contract(BaseModel):
    model_config = ConfigDict(extra="ignore")


# --- Router ---


class ClassificationResult(_Contract):
    """Router output. Wire keys: ``reasoning``, ``documentType``, ``confidence``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, title="DocumentClassification")

    reasoning: Text = Field(description="Brief explanation of why this document type was chosen")
    document_type: DocumentType = Field(
        alias="documentType",
        description="The classified document type",
    )
    confidence: Number = Field(ge=0.0, le=1.0, description="Confidence score from 0 to 1")


# --- Bank statement ---


class StatementPeriod(_Contract):
    start_date: Text = Field(description="Statement period start date (YYYY-MM-DD)")
    end_date: Text = Field(description="Statement period end date (YYYY-MM-DD)")


class BankStatementTransaction(_Contract):
    date: Text = Field(description="Transaction date (YYYY-MM-DD format)")
    description: Text = Field(description="Transaction description")
    amount: Number = Field(description="Transaction amount (positive for credit, negative for debit)")
    type: Literal["credit", "debit"] = Field(description="Transaction type")
    balance: Optional[Number] = Field(default=None, description="Running balance after transaction")


class BankStatementData(_Contract):
    model_config = ConfigDict(extra="ignore", title="BankStatement")

    bank_name: Text = Field(description="Name of the bank")
    account_number: Text = Field(description="Account number (may be partially masked)")
    account_holder: Optional[Text] = Field(default=None, description="Name of the account holder")
    statement_period: StatementPeriod
    opening_balance: Number = Field(description="Opening balance at start of period")
    closing_balance: Number = Field(description="Closing balance at end of period")
    total_credits: Optional[Number] = Field(default=None, description="Total credits during period")
    total_debits: Optional[Number] = Field(default=None, description="Total debits during period")
    currency: Text = Field(default="USD", description="Currency code")
    transactions: list[BankStatementTransaction] = Field(description="List of transactions")


# --- Invoice ---


class InvoiceLineItem(_Contract):
    description: Text = Field(description="Item or service description")
    quantity: Number = Field(description="Quantity")
    unit_price: Number = Field(description="Price per unit")
    amount: Number = Field(description="Total amount for this line item")


class InvoiceData(_Contract):
    model_config = ConfigDict(extra="ignore", title="Invoice")

    invoice_number: Text = Field(description="Invoice number/ID")
    vendor_name: Text = Field(description="Name of the vendor/seller")
    vendor_address: Optional[Text] = Field(default=None, description="Vendor address")
    customer_name: Optional[Text] = Field(default=None, description="Name of the customer/buyer")
    customer_address: Optional[Text] = Field(default=None, description="Customer address")
    invoice_date: Text = Field(description="Invoice date (YYYY-MM-DD)")
    due_date: Optional[Text] = Field(default=None, description="Payment due date (YYYY-MM-DD)")
    line_items: list[InvoiceLineItem] = Field(description="List of line items")
    subtotal: Number = Field(description="Subtotal before tax")
    tax_rate: Optional[Number] = Field(default=None, description="Tax rate as percentage")
    tax_amount: Optional[Number] = Field(default=None, description="Tax amount")
    discount: Optional[Number] = Field(default=None, description="Discount amount")
    total: Number = Field(description="Total amount due")
    currency: Text = Field(default="USD", description="Currency code")
    payment_terms: Optional[Text] = Field(default=None, description="Payment terms")
    notes: Optional[Text] = Field(default=None, description="Additional notes")


# --- Receipt ---


class ReceiptItem(_Contract):
    name: Text = Field(description="Item name")
    quantity: Number = Field(default=1, description="Quantity purchased")
    price: Number = Field(description="Price per item")
    amount: Number = Field(description="Total amount for this item")


class ReceiptData(_Contract):
    model_config = ConfigDict(extra="ignore", title="Receipt")

    merchant_name: Text = Field(description="Name of the merchant/store")
    merchant_address: Optional[Text] = Field(default=None, description="Merchant address")
    merchant_phone: Optional[Text] = Field(default=None, description="Merchant phone number")
    receipt_date: Text = Field(description="Receipt date (YYYY-MM-DD)")
    receipt_time: Optional[Text] = Field(default=None, description="Receipt time (HH:MM, 24-hour)")
    receipt_number: Optional[Text] = Field(default=None, description="Receipt/transaction number")
    items: list[ReceiptItem] = Field(description="List of purchased items")
    subtotal: Number = Field(description="Subtotal before tax")
    tax_amount: Optional[Number] = Field(default=None, description="Tax amount")
    tip: Optional[Number] = Field(default=None, description="Tip amount")
    total: Number = Field(description="Total amount paid")
    payment_method: Optional[Literal["cash", "credit_card", "debit_card", "other"]] = Field(
        default=None,
        description="Payment method used",
    )
    card_last_four: Optional[Text] = Field(default=None, description="Last 4 digits of card used")
    currency: Text = Field(default="USD", description="Currency code")


ExtractedData = Union[BankStatementData, InvoiceData, ReceiptData]

EXTRACTION_SCHEMAS: dict[DocumentType, type[BaseModel]] = {
    DocumentType.BANK_STATEMENT: BankStatementData,
    DocumentType.INVOICE: InvoiceData,
    DocumentType.RECEIPT: ReceiptData,
}


# --- Validation ---


@dataclass(frozen=True)
class FieldError:
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


class SchemaValidationError(ValueError):
    """Candidate payload does not satisfy a contract; carries field-level errors."""

    def __init__(self, schema_name: str, errors: list[FieldError]) -> None:
        self.schema_name = schema_name
        self.errors = errors
        summary = "; ".join(str(e) for e in errors[:5])
        if len(errors) > 5:
            summary += f"; (+{len(errors) - 5} more)"
        super().__init__(f"{schema_name} validation failed: {summary}")

    @property
    def paths(self) -> list[str]:
        return [e.path for e in self.errors]


def field_errors(exc: ValidationError) -> list[FieldError]:
    return [
        FieldError(
            path=".".join(str(part) for part in err.get("loc", ())),
            message=err.get("msg", "invalid value"),
        )
        for err in exc.errors()
    ]


def validate_contract(schema: type[BaseModel], candidate: Any) -> BaseModel:
    """Validate *candidate* against *schema*, raising ``SchemaValidationError``."""
    try:
        return schema.model_validate(candidate)
    except ValidationError as exc:
        title = schema.model_config.get("title") or schema.__name__
        raise SchemaValidationError(title, field_errors(exc)) from exc


def get_extraction_schema(document_type: str) -> type[BaseModel]:
    try:
        return EXTRACTION_SCHEMAS[DocumentType(document_type)]
    except (KeyError, ValueError):
        msg = f"No extraction schema for document type {document_type!r}"
        raise ValueError(msg) from None


def validate_extracted_data(document_type: str, candidate: Any) -> ExtractedData:
    return validate_contract(get_extraction_schema(document_type), candidate)


def validate_classification(candidate: Any) -> ClassificationResult:
    return validate_contract(ClassificationResult, candidate)


def dump_extracted_data(data: BaseModel) -> dict[str, Any]:
    """Serialize for persistence; absent optional fields stay absent."""
    return data.model_dump(mode="json", exclude_none=True)


def json_schema_for(document_type: str) -> dict[str, Any]:
    return get_extraction_schema(document_type).model_json_schema()
