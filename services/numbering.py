"""Per-company entity numbering.

Order numbers are a plain integer sequence per company.  Invoice numbers use
an optional tag pattern stored in ``NumberingConfig``:

  [YYYY]    4-digit year
  [YY]      2-digit year
  [MM]      month (01-12)
  [C+]      counter, number of C's = digit width (resets per scope)

Everything outside brackets is literal text.
Example: ``F[YYYY]-[CCCC]`` -> ``F2025-0001``
"""

from __future__ import annotations

import datetime
import re
from typing import Optional

from extensions import db
from models import NumberingConfig, NumberSequence
from services.tenant import require_tenant, tenant_query

_TAG_RE = re.compile(r"\[([A-Z]+)\]")

FALLBACK_INVOICE_PATTERN = "F-[YYYY]-[CCCC]"


def _next_sequence(entity_type: str, scope_key: str) -> int:
    """Increment and return the next sequence value for the current company."""
    seq = (
        tenant_query(NumberSequence)
        .filter_by(entity_type=entity_type, scope_key=scope_key)
        .with_for_update()
        .first()
    )
    if not seq:
        seq = NumberSequence(
            company_id=require_tenant(),
            entity_type=entity_type,
            scope_key=scope_key,
            last_value=1,
        )
        db.session.add(seq)
        db.session.flush()
        return 1
    # SQL-side increment so concurrent writers serialise on the row
    seq.last_value = NumberSequence.last_value + 1
    db.session.flush()
    db.session.refresh(seq)
    return seq.last_value


def next_order_number() -> int:
    """Return the next sequential order number for the current company."""
    return _next_sequence("order", "")


def render_pattern(
    entity_type: str, pattern: str, now: Optional[datetime.datetime] = None
) -> str:
    """Expand *pattern*, drawing the counter from the scoped sequence."""
    now = now or datetime.datetime.now()
    scope_parts: list[str] = []
    result_parts: list[Optional[str]] = []
    counter_digits = 0
    counter_pos = -1
    last_end = 0

    for match in _TAG_RE.finditer(pattern):
        tag = match.group(1)
        start, end = match.start(), match.end()
        if start > last_end:
            result_parts.append(pattern[last_end:start])

        if tag == "YYYY":
            val = str(now.year)
        elif tag == "YY":
            val = str(now.year % 100).zfill(2)
        elif tag == "MM":
            val = f"{now.month:02d}"
        elif set(tag) == {"C"}:
            counter_digits = len(tag)
            counter_pos = len(result_parts)
            result_parts.append(None)
            last_end = end
            continue
        else:
            # Unknown tag, keep as literal
            result_parts.append(match.group(0))
            last_end = end
            continue

        result_parts.append(val)
        scope_parts.append(val)
        last_end = end

    if last_end < len(pattern):
        result_parts.append(pattern[last_end:])

    if counter_pos >= 0:
        seq = _next_sequence(entity_type, "-".join(scope_parts))
        result_parts[counter_pos] = str(seq).zfill(counter_digits)

    return "".join(p for p in result_parts if p is not None)


def generate_invoice_number(now: Optional[datetime.datetime] = None) -> str:
    """Generate the next invoice number using the company pattern or fallback."""
    config = tenant_query(NumberingConfig).filter_by(entity_type="invoice").first()
    pattern = config.pattern if config and config.pattern else FALLBACK_INVOICE_PATTERN
    return render_pattern("invoice", pattern, now=now)
