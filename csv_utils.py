import calendar
import csv
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Iterable, Union

from domain import Decision, Line


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_date(value: str) -> date:
    value = value.strip()
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        # review screens present dates as dd/mm/yyyy
        return datetime.strptime(value, "%d/%m/%Y").date()


def parse_amount(value: str) -> Decimal:
    clean = value.strip().replace("£", "").replace(" ", "")
    if not clean:
        raise ValueError("Missing amount")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount '{value.strip()}'") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid amount '{value.strip()}'")
    return amount


def parse_month(value: Union[str, int]) -> int:
    if isinstance(value, int):
        month = value
    else:
        raw = value.strip()
        if raw.isdigit():
            month = int(raw)
        else:
            names = {name.lower(): idx for idx, name in enumerate(calendar.month_name) if name}
            if raw.lower() not in names:
                raise ValueError(f"Unknown month '{raw}'")
            month = names[raw.lower()]
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")
    return month


def month_name(month: int) -> str:
    return calendar.month_name[month]


def parse_statement_line(raw: str) -> Line:
    """
    Parse one normalised statement line: ``YYYY-MM-DD,merchant,amount``.

    The merchant may itself contain commas; the first field is always the date
    and the last one the amount.
    """
    fields = raw.strip().split(",")
    if len(fields) < 3:
        raise ValueError(f"Expected date,merchant,amount but got {len(fields)} field(s)")
    try:
        line_date = parse_date(fields[0])
    except ValueError as exc:
        raise ValueError(f"Invalid date '{fields[0].strip()}'") from exc
    merchant = ",".join(fields[1:-1]).strip()
    if not merchant:
        raise ValueError("Merchant cannot be empty")
    amount = parse_amount(fields[-1])
    return Line(date=line_date, merchant=merchant, amount=amount)


def parse_mapping_record(text: str) -> tuple[str, str, str]:
    fields = [part.strip() for part in (text or "").split(",")]
    if len(fields) != 3:
        raise ValueError(
            f"Mapping must have exactly 3 comma-separated fields, got {len(fields)}"
        )
    names = ("merchant pattern", "category", "subcategory")
    for name, value in zip(names, fields):
        if not value:
            raise ValueError(f"Mapping {name} cannot be empty")
    return fields[0], fields[1], fields[2]


def format_amount(amount: Decimal) -> str:
    return format(amount, "f")


def export_decisions(decisions: Iterable[Decision]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["Date", "Merchant", "Amount", "Category", "Subcategory"])
    for decision in decisions:
        writer.writerow(
            [
                decision.line.date.isoformat(),
                sanitize_csv_value(decision.line.merchant),
                format_amount(decision.line.amount),
                sanitize_csv_value(decision.category or ""),
                sanitize_csv_value(decision.subcategory or ""),
            ]
        )
    return output.getvalue()
