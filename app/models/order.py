import uuid
from sqlalchemy import Column, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql.expression import text
from app.database import Base


class Order(Base):
    """
    Storefront order, read-only from this service.

    The table is owned by the storefront schema, so it carries
    info={"skip_autogenerate": True} and Alembic never tries to create or alter it.
    """
    __tablename__ = "orders"
    __table_args__ = {"info": {"skip_autogenerate": True}}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, nullable=False)
    order_id = Column(String(64), nullable=False)    # human-readable reference shown to customers
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    status = Column(String(32), nullable=False)
    customer_email = Column(String(255), nullable=True)
    return_status = Column(String(32), nullable=True)
    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
