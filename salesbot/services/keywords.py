"""Keyword lists used by the classifier and the gates.

The lists are configuration data. Defaults live here; any list can be
replaced from a YAML file (``KEYWORDS_FILE``) with the same top-level keys.
"""

import re
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional

import yaml

from salesbot.logging_config import get_logger

logger = get_logger("keywords")

DEFAULT_HOT_KEYWORDS = (
    "confirm order",
    "place order",
    "order now",
    "book now",
    "i want to buy",
    "ready to pay",
    "send payment details",
    "payment details",
    "upi id",
    "gpay",
    "phonepe",
    "paytm",
    "kitne ka",
    "abhi chahiye",
)

DEFAULT_WARM_KEYWORDS = (
    "price",
    "cost",
    "rate kya",
    "charges",
    "fees",
    "how much",
    "kitna",
    "sample",
    "delivery",
    "available",
    "details",
    "interested",
)

DEFAULT_SAFE_MODE_TRIGGERS = (
    "price",
    "cost",
    "rate kya",
    "how much",
    "kitna",
    "order",
    "buy",
    "payment",
    "pay",
    "sample",
    "delivery",
    "available",
)

DEFAULT_CLOSING_KEYWORDS = (
    "pin code",
    "pincode",
    "my address",
    "address is",
    "house no",
    "payment done",
    "paid",
    "payment completed",
    "payment successful",
    "transaction id",
    "utr no",
    "screenshot attached",
)

DEFAULT_ESCALATION_KEYWORDS = (
    "discount",
    "kam karo",
    "kam kar do",
    "thoda kam",
    "best price",
    "last price",
    "less price",
    "reduce",
    "too costly",
    "too expensive",
    "mehenga",
    "confused",
    "not understand",
    "don't understand",
    "samajh nahi",
    "talk to human",
    "real person",
    "call me",
)

# Indian postal codes are six digits with a non-zero first digit.
PIN_CODE_PATTERN = re.compile(r"(?<!\d)[1-9]\d{5}(?!\d)")


@dataclass(frozen=True)
class KeywordConfig:
    hot: tuple[str, ...] = DEFAULT_HOT_KEYWORDS
    warm: tuple[str, ...] = DEFAULT_WARM_KEYWORDS
    safe_mode_triggers: tuple[str, ...] = DEFAULT_SAFE_MODE_TRIGGERS
    closing: tuple[str, ...] = DEFAULT_CLOSING_KEYWORDS
    escalation: tuple[str, ...] = DEFAULT_ESCALATION_KEYWORDS
    detect_pin_codes: bool = True


def normalize_text(text: str) -> str:
    if not text:
        return ""
    return re.sub(r"\s+", " ", text.casefold()).strip()


def contains_any(text: str, keywords) -> Optional[str]:
    """Return the first keyword found in ``text`` (case-insensitive substring match)."""
    normalized = normalize_text(text)
    if not normalized:
        return None
    for keyword in keywords:
        needle = normalize_text(keyword)
        if needle and needle in normalized:
            return keyword
    return None


def _coerce_list(value) -> Optional[tuple[str, ...]]:
    if not isinstance(value, list):
        return None
    items = tuple(str(item).strip() for item in value if str(item).strip())
    return items or None


def load_keyword_config(path: Optional[str]) -> KeywordConfig:
    """Load keyword overrides from YAML, falling back to defaults per list."""
    config = KeywordConfig()
    if not path:
        return config

    file_path = Path(path)
    try:
        with file_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning(f"Keyword file unreadable, using defaults: {exc}", extra={"context": {"path": path}})
        return config

    if not isinstance(data, dict):
        logger.warning("Keyword file is not a mapping, using defaults", extra={"context": {"path": path}})
        return config

    overrides = {}
    for item in fields(KeywordConfig):
        if item.name not in data:
            continue
        if item.name == "detect_pin_codes":
            overrides[item.name] = bool(data[item.name])
            continue
        values = _coerce_list(data[item.name])
        if values is None:
            logger.warning(f"Ignoring keyword list '{item.name}': expected a non-empty list")
            continue
        overrides[item.name] = values

    logger.info("Loaded keyword overrides", extra={"context": {"path": path, "lists": sorted(overrides)}})
    return replace(config, **overrides)
