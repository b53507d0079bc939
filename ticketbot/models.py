# ticketbot/models.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text

from .db import Base


class Chef(Base):
    __tablename__ = "chefs"
    user_id = Column(String, primary_key=True)
    username = Column(String, nullable=False)
    status = Column(String, nullable=False, default="CLOSED")  # OPEN | BUSY | CLOSED
    debt_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total_completed = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)


class Order(Base):
    """Completed order. Rows are never updated or deleted."""

    __tablename__ = "orders"
    id = Column(Integer, primary_key=True, autoincrement=True)
    chef_id = Column(String, nullable=False, index=True)
    customer_id = Column(String, nullable=False)
    order_type = Column(String, nullable=False)  # doordash | ubereats
    amount = Column(Numeric(12, 2), nullable=False)
    completed_at = Column(DateTime, default=datetime.utcnow, index=True)


class ActiveTicket(Base):
    __tablename__ = "active_tickets"
    channel_id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    chef_id = Column(String, nullable=True, index=True)
    order_type = Column(String, nullable=False, default="ubereats")
    group_order_link = Column(Text, nullable=False)
    total = Column(String, nullable=False)
    special_instructions = Column(Text, nullable=False, default="None")
    claimed = Column(Boolean, nullable=False, default=False)
    completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    claimed_at = Column(DateTime, nullable=True)
