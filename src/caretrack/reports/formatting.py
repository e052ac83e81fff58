"""Display helpers for hours and amounts."""


def decimal_to_hhmm(decimal_hours: float) -> str:
    """Convert decimal hours to HH:MM (8.5 -> '08:30')."""
    total_minutes = round(decimal_hours * 60)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours:02d}:{minutes:02d}"


def format_hours(decimal_hours: float) -> str:
    """Format hours like '8.50h (08:30)'."""
    return f"{decimal_hours:.2f}h ({decimal_to_hhmm(decimal_hours)})"


def format_number(value: float, decimals: int = 2, locale: str = "fr") -> str:
    """Format a number with the locale's decimal separator ('fr' uses a comma)."""
    formatted = f"{value:.{decimals}f}"
    if locale == "fr":
        return formatted.replace(".", ",")
    return formatted


CURRENCY_SYMBOLS = {"EUR": "€", "USD": "$", "GBP": "£"}


def format_money(value: float, currency: str = "EUR", locale: str = "en") -> str:
    """Format an amount with its currency symbol ('€12.50', or '12,50€' in French)."""
    symbol = CURRENCY_SYMBOLS.get(currency, currency)
    amount = format_number(value, 2, locale)
    if locale == "fr":
        return f"{amount}{symbol}"
    return f"{symbol}{amount}"
