# HTTP surface for the vote ledger
from .routes import router

__all__ = ["router"]
