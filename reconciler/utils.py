def format_units(amount: int, decimals: int) -> str:
    """Human readable token amount, eg 150000000 with 8 decimals -> '1.5'"""
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), 10**decimals)
    frac_text = str(frac).rjust(decimals, "0").rstrip("0") if decimals else ""
    return f"{sign}{whole}.{frac_text}" if frac_text else f"{sign}{whole}"
