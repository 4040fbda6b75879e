"""Request payload validation.

Each ``validate_*`` function takes the decoded JSON body (or query args) and
returns a dict of clean values keyed the way the services expect, or raises
``ValidationError`` listing every problem found.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .errors import ValidationError
from .formatting import format_timestamp, parse_timestamp

EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
TRANSACTION_TYPES = ("INCOME", "EXPENSE")
CURRENCY_CODES = (
    "USD",
    "SGD",
    "INR",
    "JPY",
    "RUB",
    "GBP",
    "EUR",
    "CNY",
    "IDR",
    "MYR",
    "AUD",
    "BRL",
    "SAR",
    "AED",
)
MISSING = object()
# Largest value a NUMERIC(14, 2) column holds.
MAX_AMOUNT = Decimal("999999999999.99")
CENT = Decimal("0.01")


class _Issues:
    def __init__(self):
        self.items = []

    def add(self, field, message):
        self.items.append({"path": [field], "message": message})

    def raise_if_any(self, message="Invalid request body"):
        if self.items:
            raise ValidationError(message, issues=self.items)


def ensure_object(payload):
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _text(payload, field, issues, min_length=1, max_length=None, required=True):
    value = payload.get(field, MISSING)
    if value is MISSING or value is None:
        if required:
            issues.add(field, f"{field} is required")
        return MISSING
    if not isinstance(value, str):
        issues.add(field, f"{field} must be a string")
        return MISSING
    text = value.strip()
    if len(text) < min_length:
        issues.add(field, f"{field} is required")
        return MISSING
    if max_length is not None and len(text) > max_length:
        issues.add(field, f"{field} must be {max_length} characters or less")
        return MISSING
    return text


def _amount(payload, field, issues, required=True, allow_zero=False):
    value = payload.get(field, MISSING)
    if value is MISSING or value is None:
        if required:
            issues.add(field, f"{field} is required")
        return MISSING
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        issues.add(field, f"{field} must be a number")
        return MISSING
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        issues.add(field, f"{field} must be a number")
        return MISSING
    if not amount.is_finite():
        issues.add(field, f"{field} must be a number")
        return MISSING
    if abs(amount) > MAX_AMOUNT:
        issues.add(field, f"{field} must be at most {MAX_AMOUNT}")
        return MISSING
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if amount < 0 or (amount == 0 and not allow_zero):
        issues.add(field, f"{field} must be {'non-negative' if allow_zero else 'positive'}")
        return MISSING
    return amount


def _timestamp(payload, field, issues, required=True):
    value = payload.get(field, MISSING)
    if value is MISSING or value is None:
        if required:
            issues.add(field, f"{field} is required")
        return MISSING
    if not isinstance(value, str):
        issues.add(field, f"{field} must be an ISO-8601 date")
        return MISSING
    try:
        return format_timestamp(parse_timestamp(value))
    except ValueError:
        issues.add(field, f"{field} must be an ISO-8601 date")
        return MISSING


def _choice(payload, field, choices, issues, required=True):
    value = payload.get(field, MISSING)
    if value is MISSING or value is None:
        if required:
            issues.add(field, f"{field} is required")
        return MISSING
    if value not in choices:
        issues.add(field, f"{field} must be one of {', '.join(choices)}")
        return MISSING
    return value


def _identifier(payload, field, issues):
    """Returns MISSING when absent, None when explicitly null, else an int id."""
    value = payload.get(field, MISSING)
    if value is MISSING or value is None:
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        identifier = value
    elif isinstance(value, str) and value.strip().isdecimal():
        identifier = int(value.strip())
    else:
        issues.add(field, f"{field} must be an id")
        return MISSING
    if identifier <= 0:
        issues.add(field, f"{field} must be an id")
        return MISSING
    return identifier


def _collect(values):
    return {key: value for key, value in values.items() if value is not MISSING}


def validate_register(payload):
    payload = ensure_object(payload)
    issues = _Issues()
    email = _text(payload, "email", issues, max_length=255)
    if email is not MISSING and not EMAIL_REGEX.match(email):
        issues.add("email", "email must be a valid email address")
    password = payload.get("password")
    if not isinstance(password, str) or len(password) < 8:
        issues.add("password", "password must be at least 8 characters")
    display_name = _text(payload, "displayName", issues, max_length=100, required=False)
    issues.raise_if_any()
    return {
        "email": email.lower(),
        "password": password,
        "display_name": None if display_name is MISSING else display_name,
    }


def validate_login(payload):
    payload = ensure_object(payload)
    issues = _Issues()
    email = _text(payload, "email", issues)
    password = payload.get("password")
    if not isinstance(password, str) or not password:
        issues.add("password", "password is required")
    issues.raise_if_any()
    return {"email": email.lower(), "password": password}


def validate_currency(payload):
    payload = ensure_object(payload)
    issues = _Issues()
    currency = _choice(payload, "currency", CURRENCY_CODES, issues)
    issues.raise_if_any()
    return {"currency": currency}


def validate_category_create(payload):
    payload = ensure_object(payload)
    issues = _Issues()
    name = _text(payload, "name", issues)
    category_type = _choice(payload, "type", TRANSACTION_TYPES, issues, required=False)
    parent_id = _identifier(payload, "parentId", issues)
    if parent_id in (MISSING, None) and category_type is MISSING and payload.get("type") is None:
        issues.add("type", "Category type is required for top-level categories")
    issues.raise_if_any()
    return {
        "name": name,
        "type": None if category_type is MISSING else category_type,
        "parent_id": None if parent_id is MISSING else parent_id,
    }


def validate_category_update(payload):
    payload = ensure_object(payload)
    issues = _Issues()
    if "name" not in payload:
        raise ValidationError("At least one field is required to update a category")
    name = _text(payload, "name", issues, required=False)
    issues.raise_if_any()
    return _collect({"name": name})


def validate_transaction(payload, partial=False):
    payload = ensure_object(payload)
    issues = _Issues()
    required = not partial
    values = {
        "type": _choice(payload, "type", TRANSACTION_TYPES, issues, required=required),
        "category": _text(payload, "category", issues, required=required),
        "amount": _amount(payload, "amount", issues, required=required),
        "occurred_at": _timestamp(payload, "occurredAt", issues, required=required),
    }
    description = payload.get("description", MISSING)
    if description is None:
        values["description"] = None
    elif description is not MISSING:
        if not isinstance(description, str):
            issues.add("description", "description must be a string")
        elif len(description) > 500:
            issues.add("description", "description must be 500 characters or less")
        else:
            values["description"] = description
    values["budget_id"] = _identifier(payload, "budgetId", issues)
    issues.raise_if_any()
    return _collect(values)


def validate_budget(payload, partial=False):
    payload = ensure_object(payload)
    issues = _Issues()
    required = not partial
    values = _collect({
        "name": _text(payload, "name", issues, required=required),
        "target_amount": _amount(payload, "targetAmount", issues, required=required),
        "period_start": _timestamp(payload, "periodStart", issues, required=required),
        "period_end": _timestamp(payload, "periodEnd", issues, required=required),
    })
    if "period_start" in values and "period_end" in values and values["period_start"] > values["period_end"]:
        issues.add("periodEnd", "periodEnd must not be earlier than periodStart")
    issues.raise_if_any()
    return values


def validate_asset(payload, partial=False):
    payload = ensure_object(payload)
    issues = _Issues()
    required = not partial
    values = {
        "name": _text(payload, "name", issues, required=required),
        "current_value": _amount(payload, "currentValue", issues, required=required, allow_zero=True),
        "group_id": _identifier(payload, "groupId", issues),
    }
    issues.raise_if_any()
    return _collect(values)


def validate_asset_group(payload):
    payload = ensure_object(payload)
    issues = _Issues()
    name = _text(payload, "name", issues, max_length=100)
    issues.raise_if_any()
    return {"name": name}


def validate_dashboard_query(args):
    args = {key: value for key, value in args.items() if value not in (None, "")}
    issues = _Issues()
    values = {
        "start": _timestamp(args, "from", issues, required=False),
        "end": _timestamp(args, "to", issues, required=False),
    }
    issues.raise_if_any("Invalid query params")
    values = _collect(values)
    return values.get("start"), values.get("end")
