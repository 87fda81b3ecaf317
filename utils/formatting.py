# utils/formatting.py
TOKEN_DECIMALS = 18
SECONDS_PER_DAY = 24 * 60 * 60


def format_token_amount(amount: int, decimals: int = TOKEN_DECIMALS) -> str:
    """Fixed-point integer -> decimal string, exact.

    1500000000000000000 -> "1.5", 10**18 -> "1", 0 -> "0".
    """
    amount = int(amount)
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), 10 ** decimals)
    frac_text = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{frac_text}" if frac_text else f"{sign}{whole}"


def format_interest_rate(basis_points: int) -> str:
    return f"{int(basis_points) / 100:.2f}%"


def format_term(seconds: int) -> str:
    days = int(seconds) / SECONDS_PER_DAY
    return f"{days:g} days"


def format_days(seconds: int) -> str:
    return f"{int(seconds) / SECONDS_PER_DAY:.1f}"
