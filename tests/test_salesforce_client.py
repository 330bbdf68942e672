"""Tests for the Salesforce client (simple-salesforce mocked)."""

from unittest.mock import MagicMock, patch

import pytest
import requests
from simple_salesforce.exceptions import SalesforceMalformedRequest

from workflows.call_sync import salesforce_client as sfc
from workflows.call_sync.errors import AuthFailed, LookupFailed, WriteFailed
from workflows.call_sync.salesforce_client import SalesforceClient, extract_user_id


@pytest.fixture
def client():
    client = SalesforceClient(timeout=5, chunk_size=2)
    client.sf = MagicMock()
    client.sf.query_all.return_value = {"records": []}
    return client


def last_soql(client):
    return client.sf.query_all.call_args[0][0]


class TestExtractUserId:
    def test_identity_url(self):
        assert extract_user_id("https://login.salesforce.com/id/00DABC/005XYZ") == "005XYZ"

    def test_trailing_slash(self):
        assert extract_user_id(".../id/00DABC/005XYZ/") == "005XYZ"

    def test_missing(self):
        assert extract_user_id(None) is None
        assert extract_user_id("") is None


class TestQuery:
    def test_strips_attributes_and_passes_timeout(self, client):
        client.sf.query_all.return_value = {"records": [{"attributes": {"type": "User"}, "Id": "005A"}]}
        assert client.query("SELECT Id FROM User") == [{"Id": "005A"}]
        client.sf.query_all.assert_called_once_with("SELECT Id FROM User", timeout=5)

    def test_api_error_becomes_lookup_failed(self, client):
        client.sf.query_all.side_effect = SalesforceMalformedRequest(
            "https://x/query", 400, "query", [{"message": "unexpected token"}]
        )
        with pytest.raises(LookupFailed) as exc:
            client.query("SELECT")
        assert exc.value.details == [{"message": "unexpected token"}]

    def test_timeout_becomes_lookup_failed(self, client):
        client.sf.query_all.side_effect = requests.Timeout("read timed out")
        with pytest.raises(LookupFailed):
            client.query("SELECT Id FROM User")

    def test_not_connected(self):
        with pytest.raises(LookupFailed):
            SalesforceClient().query("SELECT Id FROM User")


class TestFindExisting:
    def test_substring_match(self, client):
        client.sf.query_all.return_value = {"records": [
            {"attributes": {}, "rcsfl__CALL_UNIQUE_ID__c": "Y3M2:s-1:ext-101"},
        ]}
        assert client.find_existing_by_correlation_keys(["s-1", "s-2"]) == {"s-1"}
        soql = last_soql(client)
        assert "FROM Task WHERE" in soql
        assert "rcsfl__CALL_UNIQUE_ID__c LIKE '%s-1%' OR rcsfl__CALL_UNIQUE_ID__c LIKE '%s-2%'" in soql

    def test_chunks_keys(self, client):
        client.find_existing_by_correlation_keys(["a", "b", "c", "b"])
        assert client.sf.query_all.call_count == 2

    def test_quotes_escaped(self, client):
        client.find_existing_by_correlation_keys(["x' OR Id != '"])
        assert "x\\' OR Id != \\'" in last_soql(client)

    def test_no_keys_no_query(self, client):
        assert client.find_existing_by_correlation_keys([]) == set()
        client.sf.query_all.assert_not_called()


class TestFindParty:
    def test_contact(self, client):
        client.sf.query_all.return_value = {"records": [{"Id": "003C", "Name": "Jane", "AccountId": "001A"}]}
        match = client.find_party_by_phone("Contact", "5551234567")

        assert (match.id, match.name, match.account_id) == ("003C", "Jane", "001A")
        assert last_soql(client) == "SELECT Id, AccountId, Name FROM Contact WHERE Phone LIKE '%5551234567%' LIMIT 1"

    def test_lead_has_no_account(self, client):
        client.sf.query_all.return_value = {"records": [{"Id": "00QL", "Name": "Lee"}]}
        match = client.find_party_by_phone("Lead", "5551234567")

        assert match.account_id is None
        assert last_soql(client).startswith("SELECT Id, Name FROM Lead")

    def test_not_found(self, client):
        assert client.find_party_by_phone("Contact", "5551234567") is None

    def test_rejects_other_kinds(self, client):
        with pytest.raises(ValueError):
            client.find_party_by_phone("Account", "5551234567")


class TestFindUser:
    def test_exact_name(self, client):
        client.sf.query_all.return_value = {"records": [{"Id": "005R", "Name": "Bob Smith"}]}
        assert client.find_user_by_name("  Bob Smith ") == "005R"
        assert last_soql(client) == "SELECT Id, Name FROM User WHERE Name = 'Bob Smith' LIMIT 1"

    def test_name_quote_escaped(self, client):
        client.find_user_by_name("Pat O'Brien")
        assert "Name = 'Pat O\\'Brien'" in last_soql(client)

    def test_blank_name(self, client):
        assert client.find_user_by_name("  ") is None
        client.sf.query_all.assert_not_called()


class TestCreateActivity:
    def test_returns_id(self, client):
        client.sf.restful.return_value = {"id": "00T1", "success": True, "errors": []}
        assert client.create_activity({"Subject": "Inbound to +1"}) == "00T1"
        args, kwargs = client.sf.restful.call_args
        assert args == ("sobjects/Task",)
        assert kwargs["method"] == "POST"
        assert kwargs["timeout"] == 5

    def test_api_error_becomes_write_failed(self, client):
        client.sf.restful.side_effect = SalesforceMalformedRequest(
            "https://x/sobjects/Task", 400, "Task", [{"errorCode": "INVALID_FIELD"}]
        )
        with pytest.raises(WriteFailed) as exc:
            client.create_activity({})
        assert exc.value.details == [{"errorCode": "INVALID_FIELD"}]

    def test_missing_id(self, client):
        client.sf.restful.return_value = {"success": False}
        with pytest.raises(WriteFailed):
            client.create_activity({})


class TestConnect:
    def test_jwt_flow_sets_integration_user(self, monkeypatch):
        monkeypatch.setattr(sfc.config, "SALESFORCE_ACCESS_TOKEN", None)
        client = SalesforceClient()
        client.consumer_key, client.username, client.private_key = "key", "svc@example.com", "PEM"
        token = {
            "access_token": "00D!abc",
            "instance_url": "https://example.my.salesforce.com",
            "id": "https://login.salesforce.com/id/00DABC/005XYZ",
        }
        response = MagicMock()
        response.json.return_value = token

        with patch.object(sfc.jwt, "encode", return_value="signed") as encode, \
                patch.object(sfc.requests, "post", return_value=response) as post, \
                patch.object(sfc, "Salesforce") as salesforce:
            client.connect()

        assert client.integration_user_id == "005XYZ"
        assert encode.call_args[0][0]["sub"] == "svc@example.com"
        assert post.call_args[1]["data"]["assertion"] == "signed"
        salesforce.assert_called_once_with(
            instance_url="https://example.my.salesforce.com", session_id="00D!abc", version=client.api_version
        )

    def test_missing_credentials(self, monkeypatch):
        monkeypatch.setattr(sfc.config, "SALESFORCE_ACCESS_TOKEN", None)
        client = SalesforceClient()
        client.consumer_key = None
        with pytest.raises(AuthFailed):
            client.connect()

    def test_token_http_error(self, monkeypatch):
        monkeypatch.setattr(sfc.config, "SALESFORCE_ACCESS_TOKEN", None)
        client = SalesforceClient()
        client.consumer_key, client.username, client.private_key = "key", "svc@example.com", "PEM"
        response = MagicMock()
        response.json.return_value = {"error": "invalid_grant"}
        response.raise_for_status.side_effect = requests.HTTPError("400", response=response)

        with patch.object(sfc.jwt, "encode", return_value="signed"), \
                patch.object(sfc.requests, "post", return_value=response):
            with pytest.raises(AuthFailed) as exc:
                client.connect()
        assert exc.value.details == {"error": "invalid_grant"}

    def test_failed_reconnect_keeps_session(self, monkeypatch):
        monkeypatch.setattr(sfc.config, "SALESFORCE_ACCESS_TOKEN", None)
        client = SalesforceClient()
        client.consumer_key, client.username, client.private_key = "key", "svc@example.com", "PEM"
        client.sf, client.integration_user_id = MagicMock(), "005XYZ"
        previous = client.sf
        response = MagicMock()
        response.json.return_value = {"access_token": "00D!abc", "instance_url": "https://example.my.salesforce.com"}

        with patch.object(sfc.jwt, "encode", return_value="signed"), \
                patch.object(sfc.requests, "post", return_value=response):
            with pytest.raises(AuthFailed):
                client.connect()

        assert client.integration_user_id == "005XYZ"
        assert client.sf is previous

    def test_access_token_option(self, monkeypatch):
        monkeypatch.setattr(sfc.config, "SALESFORCE_ACCESS_TOKEN", "00D!pre")
        monkeypatch.setattr(sfc.config, "SALESFORCE_INSTANCE_URL", "https://example.my.salesforce.com")
        monkeypatch.setattr(sfc.config, "SALESFORCE_USER_ID", "005PRE")
        with patch.object(sfc, "Salesforce"):
            client = SalesforceClient()
            client.connect()
        assert client.integration_user_id == "005PRE"
