"""Tiện ích khóa username.

Username được chuẩn hóa (strip + lower) trước khi đi qua filter, cache và store,
và phải khớp ngữ pháp: chữ, số, gạch dưới, dài 3-20 ký tự.
"""
from __future__ import annotations

import re
from typing import NewType

from availability.errors import InvalidFormat

# Alias kiểu để diễn đạt ý nghĩa: username đã chuẩn hóa.
Username = NewType("Username", str)

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]{3,20}$")


def normalize_key(value: str) -> Username:
    """Chuẩn hóa username: bỏ khoảng trắng hai đầu, chuyển về chữ thường."""
    return Username(value.strip().lower())


def is_valid_key(value: object) -> bool:
    """Kiểm tra username (sau chuẩn hóa) có khớp ngữ pháp hay không."""
    if not isinstance(value, str):
        return False
    return USERNAME_PATTERN.fullmatch(normalize_key(value)) is not None


def validate_key(value: object) -> Username:
    """Chuẩn hóa và kiểm tra username, ném InvalidFormat nếu sai định dạng."""
    if not isinstance(value, str):
        raise InvalidFormat(value)
    key = normalize_key(value)
    if USERNAME_PATTERN.fullmatch(key) is None:
        raise InvalidFormat(value)
    return key
