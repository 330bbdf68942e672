"""
Call Identity Resolution

Links a call to the Salesforce Contact or Lead on the other end of the line
and picks the User who owns the resulting Task.
"""

import logging
from typing import Optional, Tuple

from .errors import LookupFailed
from .models import CallEvent, ResolvedIdentity
from .normalize import external_phone_number, normalize_phone, resolve_party_name
from .salesforce_client import PartyMatch, SalesforceClient

logger = logging.getLogger(__name__)


class IdentityResolver:
    """
    Resolves who/what/owner for one call.

    Lookup failures are logged and treated as "not found" so the Task can
    still be written, owned by the integration user.
    """

    def __init__(self, sf_client: SalesforceClient):
        self.sf_client = sf_client

    def _find_party(self, kind: str, digits: str) -> Optional[PartyMatch]:
        try:
            return self.sf_client.find_party_by_phone(kind, digits)
        except LookupFailed as e:
            logger.warning(f"   ⚠️  {kind} lookup failed: {e}")
            return None

    def _find_user(self, name: str) -> Optional[str]:
        try:
            return self.sf_client.find_user_by_name(name)
        except LookupFailed as e:
            logger.warning(f"   ⚠️  User lookup failed for \"{name}\": {e}")
            return None

    def resolve_owner(self, call: CallEvent) -> Tuple[str, Optional[str], str]:
        """
        Pick the Task owner: the sales rep's User, else the integration user.

        Returns:
            (owner_id, rep_name, owner_source)
        """
        rep_name = resolve_party_name(call)
        owner_id = self._find_user(rep_name) if rep_name else None
        if owner_id:
            logger.info(f"   ✓ Found User: {rep_name} ({owner_id})")
            return owner_id, rep_name, "user"

        if rep_name:
            logger.info(f"   ⚠️  No User found for sales rep: {rep_name}")
        owner_id = self.sf_client.integration_user_id
        logger.info(f"   ℹ️  Defaulting to integration user: {owner_id}")
        return owner_id, rep_name, "integration_user"

    def resolve(self, call: CallEvent) -> ResolvedIdentity:
        phone = external_phone_number(call)
        digits = normalize_phone(phone)
        logger.info(f"   Matching phone: {phone} (last 10: {digits})")

        who_id = what_id = record_kind = None
        if digits:
            contact = self._find_party("Contact", digits)
            if contact:
                who_id, what_id, record_kind = contact.id, contact.account_id, "Contact"
                logger.info(f"   ✓ Found Contact: {contact.name} ({who_id})")
            else:
                lead = self._find_party("Lead", digits)
                if lead:
                    who_id, record_kind = lead.id, "Lead"
                    logger.info(f"   ✓ Found Lead: {lead.name} ({who_id})")
        if not who_id:
            logger.info(f"   ⚠️  No Contact or Lead found for {phone}")

        owner_id, rep_name, owner_source = self.resolve_owner(call)

        return ResolvedIdentity(
            owner_id=owner_id,
            who_id=who_id,
            what_id=what_id,
            record_kind=record_kind,
            rep_name=rep_name,
            owner_source=owner_source,
        )
