"""Template filters for rendering SOL amounts and wallet addresses."""

from django import template

from ..transactions import LAMPORTS_PER_SOL, lamports_to_sol, sol_str

register = template.Library()


@register.filter
def format_sol(lamports):
    """Render lamports as SOL with two decimals, e.g. ``1,234.50 SOL``."""
    try:
        sol = int(lamports) / LAMPORTS_PER_SOL
    except (TypeError, ValueError):
        return ''
    return f"{sol:,.2f} SOL"


@register.filter
def to_sol(lamports):
    """Plain SOL amount for form values: ``100000000`` -> ``0.1``."""
    try:
        return sol_str(lamports_to_sol(int(lamports)))
    except (TypeError, ValueError):
        return ''


@register.filter
def short_address(value):
    if not value or len(value) <= 8:
        return value
    return f"{value[:4]}...{value[-4:]}"
