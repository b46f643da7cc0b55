"""Money helpers. Amounts are integer cents throughout the engine."""

from __future__ import annotations

# symbol, thousands separator, decimal separator, symbol-first
CURRENCY_FORMATS = {
    "BRL": ("R$", ".", ",", True),
    "EUR": ("€", ".", ",", False),
    "USD": ("$", ",", ".", True),
    "GBP": ("£", ",", ".", True),
}


def format_money(cents: int, currency_code: str = "BRL") -> str:
    """
    Format cents for display in the tenant currency.

    >>> format_money(100000, "BRL")
    'R$ 1.000,00'
    >>> format_money(-2550, "USD")
    '-$25.50'
    """
    symbol, thousands, decimal_sep, symbol_first = CURRENCY_FORMATS.get(
        (currency_code or "").upper(), (currency_code or "", ",", ".", True)
    )
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(int(cents)), 100)
    whole_str = f"{whole:,}".replace(",", thousands)
    amount = f"{whole_str}{decimal_sep}{frac:02d}"

    if symbol_first:
        sep = " " if len(symbol) > 1 else ""
        return f"{sign}{symbol}{sep}{amount}"
    return f"{sign}{amount} {symbol}"
