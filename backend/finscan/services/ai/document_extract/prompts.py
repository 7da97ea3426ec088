"""System prompts for the router (classification) and the per-type extractors."""

from __future__ import annotations

from .contracts import DocumentType

ROUTER_SYSTEM_PROMPT = """You are an expert document classifier for financial documents.

Your task is to analyze the provided document and classify it into one of these categories:

1. **bank_statement** - Bank account statements showing transactions, balances, account details
2. **invoice** - Bills or invoices from vendors/sellers requesting payment for goods/services
3. **receipt** - Proof of purchase/payment from merchants showing items bought and amounts paid
4. **unknown** - Use this when the document is NOT a financial document, or cannot be confidently classified into the above categories

Analyze the document structure, layout, and content to make your classification.
Provide your reasoning and a confidence score (0-1) for your classification.

**IMPORTANT RULES:**
1. Only classify as a financial document if you are CONFIDENT (>0.5)
2. Non-financial documents (a random photo, a letter, a form, ...) MUST be classified as "unknown"
3. Blurry, corrupted or unrecognizable documents MUST be classified as "unknown"
"""

ROUTER_USER_PROMPT = "Classify this financial document:"

EXTRACTION_USER_PROMPT = "Extract all information from this document:"

_COMMON_RULES = """Use YYYY-MM-DD format for all dates.
If information is not clearly visible, omit that field entirely. Never guess, and never
substitute 0 or an empty string for a value you cannot read."""

BANK_STATEMENT_EXTRACTION_PROMPT = f"""You are an expert at extracting data from bank statements.
Extract account details, statement period, balances, and all transactions.
Use positive numbers for credits, negative for debits.
{_COMMON_RULES}"""

INVOICE_EXTRACTION_PROMPT = f"""You are an expert at extracting data from invoices.
Extract invoice details, vendor/customer info, line items, and totals.
{_COMMON_RULES}"""

RECEIPT_EXTRACTION_PROMPT = f"""You are an expert at extracting data from receipts.
Extract merchant info, items purchased, and payment details.
Use 24-hour HH:MM format for times.
{_COMMON_RULES}"""

EXTRACTION_PROMPTS: dict[DocumentType, str] = {
    DocumentType.BANK_STATEMENT: BANK_STATEMENT_EXTRACTION_PROMPT,
    DocumentType.INVOICE: INVOICE_EXTRACTION_PROMPT,
    DocumentType.RECEIPT: RECEIPT_EXTRACTION_PROMPT,
}
