# HTTP surface for the authorship ledger
from .routes import router

__all__ = ["router"]
