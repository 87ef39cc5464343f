"""
ROS Customer Engine — Customer Registry
=========================================
Customers are created lazily on the first order that carries a new
phone number; repeat orders refresh name and address.
Loyalty balances live in the loyalty ledger, not here.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Dict, Optional

from core.commands.rejection import CommandRejectedError
from engines.customer.policies import normalize_phone, phone_must_be_valid_policy

logger = logging.getLogger("ros.customer")


@dataclass(frozen=True)
class Customer:
    customer_id: str
    phone: str
    name: str = ""
    address: Optional[dict] = None
    is_suspicious: bool = False

    def to_dict(self) -> dict:
        return {
            "customer_id": self.customer_id,
            "phone": self.phone,
            "name": self.name,
            "address": self.address,
            "is_suspicious": self.is_suspicious,
        }


class CustomerRegistry:
    """Thread-safe in-memory customer store keyed by normalized phone."""

    def __init__(self):
        self._lock = threading.Lock()
        self._customers: Dict[str, Customer] = {}
        self._by_phone: Dict[str, str] = {}

    def upsert_by_phone(self, phone: str, name: str = "",
                        address: Optional[dict] = None) -> Customer:
        reason = phone_must_be_valid_policy(phone)
        if reason is not None:
            raise CommandRejectedError(reason)
        digits = normalize_phone(phone)
        with self._lock:
            customer_id = self._by_phone.get(digits)
            if customer_id is None:
                customer = Customer(
                    customer_id=str(uuid.uuid4()),
                    phone=digits,
                    name=name,
                    address=address,
                )
                self._by_phone[digits] = customer.customer_id
                logger.info(f"Customer {customer.customer_id} registered")
            else:
                existing = self._customers[customer_id]
                customer = dataclasses.replace(
                    existing,
                    name=name or existing.name,
                    address=address if address is not None else existing.address,
                )
            self._customers[customer.customer_id] = customer
            return customer

    def get(self, customer_id: str) -> Optional[Customer]:
        with self._lock:
            return self._customers.get(customer_id)

    def find_by_phone(self, phone: str) -> Optional[Customer]:
        digits = normalize_phone(phone)
        with self._lock:
            customer_id = self._by_phone.get(digits)
            return self._customers.get(customer_id) if customer_id else None

    def mark_suspicious(self, customer_id: str, suspicious: bool = True) -> Customer:
        with self._lock:
            existing = self._customers.get(customer_id)
            if existing is None:
                raise KeyError(customer_id)
            customer = dataclasses.replace(existing, is_suspicious=suspicious)
            self._customers[customer_id] = customer
        logger.warning(f"Customer {customer_id} suspicious={suspicious}")
        return customer
