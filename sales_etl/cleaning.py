"""
Cleaning rules applied while staging raw rows.

Column-level helpers working on pandas Series: whitespace trimming, name
concatenation, state code standardisation and the line-item sales amount.
"""

from typing import Dict, Optional

import pandas as pd

# Raw state codes mapped to the labels used in the staging layer
STATE_LABELS: Dict[str, str] = {
    'NY': 'New York',
    'CA': 'California',
    'TX': 'Texas',
}


def trim(values: pd.Series) -> pd.Series:
    """
    Strip surrounding whitespace from string values.

    Nulls stay null; non-string values are converted to their string form.
    """
    return values.map(lambda v: str(v).strip() if pd.notna(v) else None)


def full_name(first: pd.Series, last: pd.Series) -> pd.Series:
    """
    Join first and last name parts with a single space.

    A missing part is skipped; a row with neither part gives null.
    """
    def _join(first_part, last_part) -> Optional[str]:
        parts = [str(p).strip() for p in (first_part, last_part) if pd.notna(p) and str(p).strip()]
        return " ".join(parts) if parts else None

    return pd.Series(
        [_join(f, l) for f, l in zip(first, last)],
        index=first.index,
        dtype=object,
    )


def standardize_state(values: pd.Series) -> pd.Series:
    """
    Map raw state codes to canonical labels.

    Matching is case-insensitive after trimming. Unknown values are kept
    (trimmed) so they stay visible to the quality checks.
    """
    def _label(value) -> Optional[str]:
        if pd.isna(value):
            return None
        code = str(value).strip()
        return STATE_LABELS.get(code.upper(), code)

    return values.map(_label)


def to_date(values: pd.Series) -> pd.Series:
    """Parse values to calendar dates (``datetime64`` at midnight); bad values become NaT."""
    return pd.to_datetime(values, errors='coerce').dt.normalize()


def line_sales(list_price: pd.Series, quantity: pd.Series, discount: pd.Series) -> pd.Series:
    """Line-item sales amount: ``list_price * quantity * (1 - discount)``, rounded to cents."""
    price = pd.to_numeric(list_price, errors='coerce').astype(float)
    qty = pd.to_numeric(quantity, errors='coerce').astype(float)
    disc = pd.to_numeric(discount, errors='coerce').astype(float)
    return (price * qty * (1 - disc)).round(2)
