"""
Salesforce API Client

Handles authentication, the lookups a call sync needs (existing Tasks,
Contacts/Leads by phone, Users by name) and Task creation.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set

import requests
from jose import jwt
from jose.exceptions import JOSEError
from simple_salesforce import Salesforce, format_soql
from simple_salesforce.exceptions import SalesforceError

import config
from .errors import AuthFailed, LookupFailed, WriteFailed

logger = logging.getLogger(__name__)

JWT_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"

TASK_OBJECT = "Task"
CALL_UNIQUE_ID_FIELD = "rcsfl__CALL_UNIQUE_ID__c"
PARTY_KINDS = ("Contact", "Lead")


def extract_user_id(identity_url: Optional[str]) -> Optional[str]:
    """
    Pull the user ID off the end of an OAuth identity URL.

    https://login.salesforce.com/id/00DHp000004Abj7MAC/005VO00000AF8ifYAD -> 005VO00000AF8ifYAD
    """
    if not identity_url:
        return None
    return identity_url.rstrip("/").split("/")[-1] or None


@dataclass
class PartyMatch:
    id: str
    name: Optional[str] = None
    account_id: Optional[str] = None


class SalesforceClient:
    """
    Wrapper around simple-salesforce for the call sync.

    Supports the OAuth JWT bearer flow (preferred: its token response names
    the integration user) or a pre-issued access token.
    """

    def __init__(self, timeout: Optional[float] = None, chunk_size: Optional[int] = None):
        self.login_url = config.SF_LOGIN_URL
        self.consumer_key = config.SF_CONSUMER_KEY
        self.username = config.SF_USERNAME
        self.private_key = config.SF_PRIVATE_KEY
        self.api_version = config.SF_API_VERSION
        self.timeout = timeout if timeout is not None else config.HTTP_TIMEOUT_SECONDS
        self.chunk_size = chunk_size or config.EXISTENCE_CHUNK_SIZE

        self.sf = None
        self.token: Dict[str, Any] = {}
        self.integration_user_id: Optional[str] = None

    def request_token(self) -> Dict[str, Any]:
        """
        Exchange a signed JWT assertion for an access token.

        Raises:
            AuthFailed: if credentials are missing or the exchange fails
        """
        if not (self.consumer_key and self.username and self.private_key):
            raise AuthFailed(
                "Missing Salesforce credentials: SF_CONSUMER_KEY, SF_USERNAME and SF_PRIVATE_KEY "
                "(or SALESFORCE_ACCESS_TOKEN + SALESFORCE_INSTANCE_URL)"
            )

        claims = {
            "iss": self.consumer_key,
            "sub": self.username,
            "aud": self.login_url,
            "exp": int(time.time()) + 180,
        }
        try:
            assertion = jwt.encode(claims, self.private_key, algorithm="RS256")
        except JOSEError as e:
            raise AuthFailed(f"Could not sign Salesforce JWT assertion: {e}") from e

        try:
            resp = requests.post(
                f"{self.login_url}/services/oauth2/token",
                data={"grant_type": JWT_GRANT_TYPE, "assertion": assertion},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            return resp.json()
        except requests.HTTPError as e:
            raise AuthFailed(f"Salesforce token request failed: {e}", details=_response_body(e.response)) from e
        except (requests.RequestException, ValueError) as e:
            raise AuthFailed(f"Salesforce token request failed: {e}") from e

    def connect(self) -> None:
        """Establish a fresh Salesforce session."""
        # Validate before assigning so a failed reconnect leaves the old session intact
        if config.SALESFORCE_ACCESS_TOKEN and config.SALESFORCE_INSTANCE_URL:
            logger.info("Connecting to Salesforce with OAuth access token...")
            token = {
                "access_token": config.SALESFORCE_ACCESS_TOKEN,
                "instance_url": config.SALESFORCE_INSTANCE_URL,
            }
            user_id = config.SALESFORCE_USER_ID
        else:
            logger.info("Connecting to Salesforce with JWT bearer flow...")
            token = self.request_token()
            user_id = extract_user_id(token.get("id"))

        if not token.get("access_token") or not token.get("instance_url"):
            raise AuthFailed("Salesforce token response missing access_token or instance_url")
        if not user_id:
            raise AuthFailed("Could not determine the integration user ID (set SALESFORCE_USER_ID)")

        self.sf = Salesforce(
            instance_url=token["instance_url"],
            session_id=token["access_token"],
            version=self.api_version,
        )
        self.token = token
        self.integration_user_id = user_id
        logger.info(f"✓ Connected to Salesforce as user {self.integration_user_id}")

    def query(self, soql: str) -> List[Dict[str, Any]]:
        """
        Execute a SOQL query and return results.

        Raises:
            LookupFailed: on any transport or API error
        """
        if not self.sf:
            raise LookupFailed("Salesforce connection not established")
        try:
            result = self.sf.query_all(soql, timeout=self.timeout)
        except (SalesforceError, requests.RequestException) as e:
            logger.debug(f"Salesforce query failed: {e}\nQuery: {soql}")
            raise LookupFailed(f"Salesforce query failed: {e}", details=getattr(e, "content", None)) from e
        records = result.get("records", [])
        for record in records:
            record.pop("attributes", None)
        return records

    def find_existing_by_correlation_keys(self, keys: Iterable[str]) -> Set[str]:
        """
        Return the subset of keys already stored on a Task.

        The stored unique ID may embed the session ID inside a longer string,
        so each key is matched with LIKE '%key%'.
        """
        keys = [k for k in dict.fromkeys(keys) if k]
        existing: Set[str] = set()

        for start in range(0, len(keys), self.chunk_size):
            chunk = keys[start:start + self.chunk_size]
            conditions = " OR ".join(f"{CALL_UNIQUE_ID_FIELD} LIKE '%{{:like}}%'" for _ in chunk)
            soql = format_soql(
                f"SELECT {CALL_UNIQUE_ID_FIELD} FROM {TASK_OBJECT} WHERE {conditions}", *chunk
            )
            for record in self.query(soql):
                stored = record.get(CALL_UNIQUE_ID_FIELD) or ""
                for key in chunk:
                    if key in stored:
                        existing.add(key)
                        logger.debug(f"Found existing: {key} in {stored}")

        return existing

    def find_party_by_phone(self, kind: str, digits: str) -> Optional[PartyMatch]:
        """Find the first Contact or Lead whose Phone contains the given digits."""
        if kind not in PARTY_KINDS:
            raise ValueError(f"Unsupported party kind: {kind}")
        if not digits:
            return None

        fields = "Id, AccountId, Name" if kind == "Contact" else "Id, Name"
        soql = format_soql(f"SELECT {fields} FROM {kind} WHERE Phone LIKE '%{{:like}}%' LIMIT 1", digits)
        records = self.query(soql)
        if not records:
            return None
        record = records[0]
        return PartyMatch(id=record["Id"], name=record.get("Name"), account_id=record.get("AccountId"))

    def find_user_by_name(self, name: str) -> Optional[str]:
        """Exact-name User lookup. Returns the User ID or None."""
        if not name or not name.strip():
            return None
        soql = format_soql("SELECT Id, Name FROM User WHERE Name = {} LIMIT 1", name.strip())
        records = self.query(soql)
        return records[0]["Id"] if records else None

    def create_activity(self, payload: Dict[str, Any]) -> str:
        """
        Create a Task and return its ID.

        Raises:
            WriteFailed: on any transport or API error
        """
        if not self.sf:
            raise WriteFailed("Salesforce connection not established")
        try:
            result = self.sf.restful(
                f"sobjects/{TASK_OBJECT}",
                method="POST",
                data=json.dumps(payload),
                timeout=self.timeout,
            )
        except (SalesforceError, requests.RequestException) as e:
            raise WriteFailed(f"Task create failed: {e}", details=getattr(e, "content", None)) from e

        task_id = (result or {}).get("id")
        if not task_id:
            raise WriteFailed("Task create returned no id", details=result)
        return task_id


def _response_body(response) -> Any:
    if response is None:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
