"""
ROS Customer Engine — Policies
================================
Phone is the natural key of a customer.
"""

import re
from typing import Optional

from core.commands.rejection import ReasonCode, RejectionReason

MIN_PHONE_DIGITS = 8

_NON_DIGITS = re.compile(r"\D+")


def normalize_phone(phone: str) -> str:
    """'(11) 98888-7777' → '11988887777'."""
    return _NON_DIGITS.sub("", phone or "")


def phone_must_be_valid_policy(phone: str) -> Optional[RejectionReason]:
    digits = normalize_phone(phone)
    if len(digits) < MIN_PHONE_DIGITS:
        return RejectionReason(
            code=ReasonCode.VALIDATION_FAILED,
            message=f"Phone '{phone}' must have at least {MIN_PHONE_DIGITS} digits.",
            policy_name="phone_must_be_valid_policy",
        )
    return None
