from __future__ import annotations

import re
import secrets

from .domain import ORDER_NUMBER_PREFIX, TICKET_NUMBER_PREFIX

PIN_LOW = 100000
PIN_HIGH = 999999
PIN_RE = re.compile(r"^[0-9]{6}$")


def format_number(prefix: str, seq: int) -> str:
    if seq < 1:
        raise ValueError("Sequence values start at 1.")
    return f"{prefix}{seq:06d}"


def order_number(seq: int) -> str:
    return format_number(ORDER_NUMBER_PREFIX, seq)


def ticket_number(seq: int) -> str:
    return format_number(TICKET_NUMBER_PREFIX, seq)


def generate_pin() -> str:
    return str(PIN_LOW + secrets.randbelow(PIN_HIGH - PIN_LOW + 1))
