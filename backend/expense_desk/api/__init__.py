"""API package.

This exposes router modules to simplify test imports like:
    from expense_desk.api.routes.expenses import router
"""

__all__ = [
    "routes",
]
