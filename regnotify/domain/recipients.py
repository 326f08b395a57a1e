from __future__ import annotations

import re

from regnotify.domain.errors import RecipientError
from regnotify.domain.models import NotifierConfig

NATIONAL_NUMBER_LENGTH = 10
GROUP_ID_SUFFIX = "@g.us"
_NON_DIGITS_RE = re.compile(r"\D")


def format_recipient(mobile: str, *, country_code: str) -> str:
    """Address a national mobile number as country code + number."""
    digits = _NON_DIGITS_RE.sub("", mobile)
    if len(digits) == NATIONAL_NUMBER_LENGTH + len(country_code) and digits.startswith(country_code):
        return digits
    if len(digits) != NATIONAL_NUMBER_LENGTH:
        raise RecipientError(f"mobile number must have {NATIONAL_NUMBER_LENGTH} digits: {mobile!r}")
    return f"{country_code}{digits}"


def is_group_id(recipient: str) -> bool:
    return recipient.endswith(GROUP_ID_SUFFIX)


def parse_number_list(raw: str) -> tuple[str, ...]:
    # Entries that are not exactly ten digits are dropped silently.
    numbers: dict[str, None] = {}
    for item in raw.split(","):
        candidate = item.strip()
        if len(candidate) == NATIONAL_NUMBER_LENGTH and candidate.isdigit():
            numbers.setdefault(candidate, None)
    return tuple(numbers)


def admin_recipients(config: NotifierConfig, *, country_code: str) -> list[str]:
    recipients = [group_id for group_id in config.selected_groups if group_id]
    recipients.extend(format_recipient(number, country_code=country_code) for number in config.admin_numbers)
    return recipients
