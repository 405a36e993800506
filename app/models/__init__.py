# models/__init__.py
# Import all models here so that:
# 1. Alembic's env.py can import this single module and detect all tables.
# 2. Base.metadata.create_all() in tests sees every table.

from app.models.order import Order
from app.models.otp import OTPRecord

__all__ = [
    "Order",
    "OTPRecord",
]
