from decimal import Decimal, InvalidOperation


def require_project(project_id):
    if not project_id:
        raise ValueError("Project ID is required")
    return project_id


def milestone_index(index):
    if isinstance(index, bool) or not isinstance(index, int) or index < 0:
        raise ValueError(f"Invalid milestone index: {index!r}")
    return index


def positive_amount(amount):
    try:
        amount = Decimal(str(amount))
    except (InvalidOperation, TypeError):
        raise ValueError("Valid amount is required")
    if not amount.is_finite() or amount <= 0:
        raise ValueError("Valid amount is required")
    return amount
