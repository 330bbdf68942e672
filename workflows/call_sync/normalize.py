"""
Call Identity Normalization

Turns raw phone numbers and call legs into the keys used to match a call
against Salesforce: a phone digit suffix, the name of the person who
actually handled the call, and their extension.

The top-level from/to of an inbound call usually names a department queue
("Customer Service", "Stores"), so the human is recovered from the legs.
"""

import re
from typing import Iterable, Optional, Pattern

from config import GENERIC_EXTENSION_PREFIXES, GENERIC_NAME_PREFIXES
from .models import CallEvent, CallParty

NON_DIGITS = re.compile(r"\D")


def build_prefix_pattern(prefixes: Iterable[str]) -> Pattern:
    """
    Compile department-name prefixes into one case-insensitive pattern.

    Prefixes are regex fragments ("accounts? receivable"); spaces match any
    run of whitespace and each prefix must end on a word boundary.
    """
    parts = [re.sub(r"\s+", r"\\s+", p.strip()) for p in prefixes if p.strip()]
    if not parts:
        return re.compile(r"(?!x)x")
    return re.compile(r"^(?:" + "|".join(parts) + r")\b", re.IGNORECASE)


GENERIC_NAME_PATTERN = build_prefix_pattern(GENERIC_NAME_PREFIXES)
GENERIC_EXTENSION_PATTERN = build_prefix_pattern(GENERIC_EXTENSION_PREFIXES)


def normalize_phone(raw: Optional[str]) -> str:
    """
    Reduce a phone number to its last 10 digits.

    Used only as a fuzzy lookup key. Numbers with fewer than 10 digits are
    returned whole.
    """
    digits = NON_DIGITS.sub("", raw or "")
    return digits[-10:]


def external_phone_number(call: CallEvent) -> Optional[str]:
    """The customer's side of the call: caller for inbound, callee for outbound."""
    if call.is_inbound:
        return call.from_party.phone_number
    return call.to_party.phone_number


def _person_name(party: CallParty, generic: Pattern) -> Optional[str]:
    name = (party.name or "").strip()
    if name and not generic.match(name):
        return name
    return None


def resolve_party_name(call: CallEvent, generic: Pattern = GENERIC_NAME_PATTERN) -> Optional[str]:
    """
    Name of the sales rep who placed or answered the call.

    Outbound: the caller is internal, so the caller's name is used as-is.
    Inbound: first leg whose "to" is a person rather than a department,
    then the top-level "to" name.
    """
    if not call.is_inbound:
        return call.from_party.name

    for leg in call.legs:
        name = _person_name(leg.to_party, generic)
        if name:
            return name

    if call.to_party.name and call.to_party.name.strip():
        return call.to_party.name
    return None


def resolve_extension(call: CallEvent, generic: Pattern = GENERIC_EXTENSION_PATTERN) -> Optional[str]:
    """
    Extension of the acting party, preferring the display number over the id.

    Uses its own department filter: a leg that passes name resolution may
    still be a queue without an extension.
    """
    if not call.is_inbound:
        if call.from_party.extension_number:
            return call.from_party.extension_number
        for leg in call.legs:
            if leg.from_party.extension_number:
                return leg.from_party.extension_number
        return call.from_party.extension_id

    for leg in call.legs:
        if _person_name(leg.to_party, generic):
            return leg.to_party.extension_number or leg.to_party.extension_id
    return None
