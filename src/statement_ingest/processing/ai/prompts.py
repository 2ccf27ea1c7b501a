"""Prompt templates for AI categorization and extraction hints."""

import json
from decimal import Decimal

# System prompt for categorization tasks
CATEGORIZATION_SYSTEM_PROMPT = """You are a financial transaction categorizer. \
Your job is to analyze transaction descriptions and assign them to the most \
appropriate category from the user's own category list.

Guidelines:
1. Base your categorization on the merchant name, transaction description, and amount
2. Prefer the category the user chose for similar past transactions
3. Be conservative - if uncertain, express lower confidence
4. Common patterns:
   - "SQ *", "SQUARE *", "TST*", "CLOVER*" = point-of-sale terminals, categorize by merchant name
   - "PAYPAL *" = online payment, categorize by the merchant after PAYPAL
   - "ZELLE", "VENMO" = peer-to-peer transfers
   - Numbers at the end often indicate store/location IDs
5. Only use category ids from the list. Never invent a category.

Response format: Raw JSON only - no markdown code blocks, no explanation outside the JSON."""


def build_categorization_prompt(
    description: str,
    merchant: str,
    amount: Decimal,
    currency: str,
    categories: list[dict[str, str]],
    examples: list[dict[str, str]],
) -> str:
    """Build a categorization prompt for a single transaction.

    Args:
        description: Transaction description.
        merchant: Merchant guess.
        amount: Transaction amount (negative for expenses).
        currency: ISO currency code.
        categories: List of category dicts with 'id' and 'name' keys.
        examples: Previously categorized transactions of the same user.

    Returns:
        Formatted prompt string.
    """
    category_list = "\n".join(
        f"- {cat['id']}: {cat['name']}" for cat in categories
    )

    if examples:
        example_list = "\n".join(
            f"- \"{ex['description']}\" (merchant: {ex['merchant'] or 'unknown'}) -> {ex['category_id']}"
            for ex in examples
        )
    else:
        example_list = "(none yet)"

    direction = "expense" if amount < 0 else "income/credit"

    return f"""Categorize this transaction into ONE of these categories:

{category_list}

How this user categorized similar transactions before:
{example_list}

Transaction:
- Description: {description}
- Merchant: {merchant or 'unknown'}
- Amount: {abs(amount)} {currency} ({direction})

Respond with JSON only:
{{"category_id": "...", "confidence": 0.0-1.0, "reasoning": "brief explanation"}}"""


# System prompt for extraction hint tasks
EXTRACTION_SYSTEM_PROMPT = """You analyze the layout of bank and card statements. \
You are given numbered lines of raw statement text. Describe WHERE the transaction \
fields are, so a program can read them itself.

Rules:
1. Never copy, compute or restate dates or amounts. Only describe structure.
2. If the lines are delimited rows, describe the columns (0-based indexes).
3. Otherwise give ONE Python regular expression that matches a whole transaction \
line, with named groups: date, description, amount (required) and currency, \
balance, debit, credit (optional). Avoid nested quantifiers.
4. If you cannot tell where the fields are, answer mode "none".
5. Report honestly how confident you are.

Response format: Raw JSON only - no markdown code blocks, no explanation outside the JSON."""


def build_extraction_prompt(sample_lines: list[str], target_schema: tuple[str, ...]) -> str:
    """Build a prompt asking for structural extraction hints.

    Args:
        sample_lines: Leading lines of the statement text.
        target_schema: Field names to locate.

    Returns:
        Formatted prompt string.
    """
    numbered = "\n".join(f"{i}: {line}" for i, line in enumerate(sample_lines))
    fields = ", ".join(target_schema)
    columns_example = json.dumps(
        {
            "mode": "columns",
            "delimiter": ",",
            "header_lines": 1,
            "columns": {"date": 0, "description": 1, "amount": 2, "currency": None, "balance": None},
            "confidence": 0.9,
            "reasoning": "...",
        }
    )
    pattern_example = json.dumps(
        {
            "mode": "pattern",
            "pattern": r"^(?P<date>\d{2}/\d{2}/\d{4})\s+(?P<description>.+?)\s+(?P<amount>-?[\d,]+\.\d{2})$",
            "confidence": 0.8,
            "reasoning": "...",
        }
    )

    return f"""Locate these fields in the statement below: {fields}

Statement lines (line index: text):
{numbered}

Respond with JSON only, in one of these shapes:
{columns_example}
{pattern_example}
{{"mode": "none", "confidence": 0.0, "reasoning": "..."}}"""
