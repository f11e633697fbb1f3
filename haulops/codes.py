"""
12-digit order numbers.

Layout: type (1 requester, 2 enterprise) + 3-digit area code + last four
digits of the contact phone + 4-digit sequence within that prefix.
Displayed as 1-002-1234-0001.
"""
import re
import threading
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from . import errors
from .models import Order

AREA_CODES = {
    "서울": "002",
    "경기": "031",
    "인천": "032",
    "강원": "033",
    "충남": "041",
    "대전": "042",
    "충북": "043",
    "세종": "044",
    "부산": "051",
    "울산": "052",
    "대구": "053",
    "경북": "054",
    "경남": "055",
    "전남": "061",
    "광주": "062",
    "전북": "063",
    "제주": "064",
}

# Sequence allocation is read-then-insert; serialize it within the process.
number_lock = threading.Lock()

def area_code(delivery_area: Optional[str]) -> str:
    for region, code in AREA_CODES.items():
        if delivery_area and region in delivery_area:
            return code
    return "000"

def phone_last4(phone: Optional[str]) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        return "0000"
    return digits[-4:].rjust(4, "0")

def next_order_number(session: Session, is_enterprise: bool, delivery_area: Optional[str],
                      phone: Optional[str]) -> str:
    prefix = ("2" if is_enterprise else "1") + area_code(delivery_area) + phone_last4(phone)
    max_number = session.execute(
        select(func.max(Order.order_number)).where(Order.order_number.like(prefix + "%"))
    ).scalar()
    seq = int(max_number[-4:]) + 1 if max_number else 1
    if seq > 9999:
        raise errors.ValidationError("order number sequence exhausted for prefix", prefix=prefix)
    return f"{prefix}{seq:04d}"

def format_order_number(number: str) -> str:
    if not number or len(number) != 12:
        return number
    return f"{number[0]}-{number[1:4]}-{number[4:8]}-{number[8:]}"
