"""
Regex heuristics for "this text carries numbers worth charting".

Rationale:
- Keep the patterns as a flat, declarative table so they can be tested and
  tuned without touching the reducer's control flow.
- Each entry is matched per line (numeric filtering) and counted per chunk
  (chunk scoring); a line is data-bearing if ANY entry matches.
"""

import re
from typing import Dict, Pattern

_MONTHS = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|jun(?:e)?|jul(?:y)?|"
    r"aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)

NUMERIC_PATTERNS: Dict[str, Pattern] = {
    # $1,200  €45.5  £ 300
    "currency_symbol": re.compile(r"[$€£¥₹]\s?\d[\d,]*(?:\.\d+)?"),
    # 1,200 USD  45 dollars
    "currency_code": re.compile(
        r"\b\d[\d,]*(?:\.\d+)?\s?(?:USD|EUR|GBP|INR|JPY|CAD|AUD|dollars?|euros?|rupees?)\b",
        re.IGNORECASE,
    ),
    # 12%  3.5 %
    "percentage": re.compile(r"\d+(?:\.\d+)?\s?%"),
    # 1,234  12,345,678.90
    "grouped_thousands": re.compile(r"\b\d{1,3}(?:,\d{3})+(?:\.\d+)?\b"),
    # 4.5M  200k  3 billion
    "abbreviated_magnitude": re.compile(
        r"\b\d+(?:\.\d+)?\s?(?:[KMB]|k|mn|bn|thousand|million|billion|trillion)\b"
    ),
    # "revenue of 400", "net profit: 12" (keyword then a digit within a short span)
    "financial_keyword": re.compile(
        r"\b(?:revenue|sales|profit|loss|income|earnings|expenses?|costs?|margin|ebitda|"
        r"budget|growth|turnover|assets|liabilities|cash|price|units|total)\b[^\n\d]{0,20}\d",
        re.IGNORECASE,
    ),
    # | Region | Q1 | Q2 |
    "pipe_table_row": re.compile(r"\|[^|\n]*\|"),
    # March 2024  15 Jan
    "month_with_number": re.compile(
        rf"\b{_MONTHS}\.?,?\s+\d{{1,4}}\b|\b\d{{1,2}}\s+{_MONTHS}\b",
        re.IGNORECASE,
    ),
    # 2024-01-31  31/01/2024
    "numeric_date": re.compile(r"\b\d{1,4}[/-]\d{1,2}[/-]\d{1,4}\b"),
    # Q3  Q4 2023  FY24  2nd quarter
    "quarter_label": re.compile(
        r"\b(?:Q[1-4]|H[12]|FY\s?\d{2,4}|[1-4](?:st|nd|rd|th)\s+quarter|quarter\s+[1-4])\b",
        re.IGNORECASE,
    ),
}

# Lines such as "North, 1200, 340" or "Apples\t12\t14"
_DELIMITED_WITH_DIGIT = re.compile(r"[|,;\t].*\d|\d.*[|,;\t]")
_DIGIT_GROUP = re.compile(r"\d+")


def is_numeric_line(line: str) -> bool:
    """True if any numeric pattern matches the line."""
    return any(pattern.search(line) for pattern in NUMERIC_PATTERNS.values())


def count_numeric_matches(text: str) -> int:
    """Total number of pattern hits across the table."""
    return sum(len(pattern.findall(text)) for pattern in NUMERIC_PATTERNS.values())


def is_table_like_line(line: str) -> bool:
    """
    A line that looks like a table row: a delimiter plus a digit, or at least
    four whitespace-separated tokens with two or more digit groups.
    """
    stripped = line.strip()
    if not stripped:
        return False
    if _DELIMITED_WITH_DIGIT.search(stripped):
        return True
    tokens = stripped.split()
    return len(tokens) >= 4 and len(_DIGIT_GROUP.findall(stripped)) >= 2
