"""
Tests for the ledger, email and notification adapters.
"""
import json
from decimal import Decimal

import httpx
import pytest
from redis import RedisError

from tabtrust.core.errors import ErrorKind, ServiceError
from tabtrust.services.email_service import EmailSender
from tabtrust.services.ledger_service import LedgerVerifier, to_currency_amount
from tabtrust.services.notification_service import NotificationPublisher, NotificationType
from tabtrust.tests.conftest import tx_hash

BASE_URL = "https://ledger.test/v1"


def _verifier(handler):
    return LedgerVerifier(httpx.Client(transport=httpx.MockTransport(handler)), BASE_URL)


def test_coin_transfer_is_parsed():
    def handler(request):
        assert request.url.path == f"/v1/transactions/by_hash/{tx_hash(7)}"
        return httpx.Response(200, json={
            "type": "user_transaction",
            "version": "12345",
            "success": True,
            "sender": "0xbob",
            "payload": {
                "function": "0x1::aptos_account::transfer_coins",
                "type_arguments": ["0x1::aptos_coin::AptosCoin"],
                "arguments": ["0xse771e", "5000000000"],
            },
        })

    tx = _verifier(handler).verify_transaction(tx_hash(7))

    assert tx.confirmed is True
    assert (tx.from_address, tx.to_address, tx.amount) == ("0xbob", "0xse771e", 5000000000)
    assert tx.asset == "0x1::aptos_coin::AptosCoin"
    assert tx.block_number == 12345


def test_fungible_asset_transfer_is_parsed():
    def handler(request):
        return httpx.Response(200, json={
            "type": "user_transaction",
            "version": "9",
            "success": True,
            "sender": "0xbob",
            "payload": {
                "function": "0x1::primary_fungible_store::transfer",
                "type_arguments": ["0x1::fungible_asset::Metadata"],
                "arguments": [{"inner": "0xusdc"}, "0xse771e", "50000000"],
            },
        })

    tx = _verifier(handler).verify_transaction(tx_hash(1))

    assert (tx.to_address, tx.amount, tx.asset) == ("0xse771e", 50000000, "0xusdc")
    assert to_currency_amount(tx.amount, "USDC") == Decimal("50.00")


def test_failed_and_pending_transactions_are_unconfirmed():
    responses = iter([
        {"type": "user_transaction", "success": False, "sender": "0xbob", "payload": {}},
        {"type": "pending_transaction", "sender": "0xbob"},
    ])
    verifier = _verifier(lambda request: httpx.Response(200, json=next(responses)))

    assert verifier.verify_transaction(tx_hash(1)).confirmed is False
    assert verifier.verify_transaction(tx_hash(2)).confirmed is False


@pytest.mark.parametrize("status,kind", [(404, ErrorKind.NOT_FOUND), (503, ErrorKind.INTERNAL)])
def test_ledger_errors(status, kind):
    verifier = _verifier(lambda request: httpx.Response(status, json={"message": "nope"}))

    with pytest.raises(ServiceError) as exc:
        verifier.verify_transaction(tx_hash(1))
    assert exc.value.kind == kind


def test_ledger_network_error_is_internal():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(ServiceError) as exc:
        _verifier(handler).verify_transaction(tx_hash(1))
    assert exc.value.kind == ErrorKind.INTERNAL


def test_email_posts_to_mailgun():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"id": "<1@mg>"})

    sender = EmailSender(httpx.Client(transport=httpx.MockTransport(handler)), "mg.test", "key-123")
    sender.send_tab_participation_otp("bob@example.com", "123456", "Dinner", Decimal("50"), "USDC")

    assert len(requests) == 1
    assert requests[0].url.path == "/v3/mg.test/messages"
    assert requests[0].headers["authorization"].startswith("Basic ")
    assert b"123456" in requests[0].content


def test_email_failure_is_internal():
    sender = EmailSender(
        httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(401))), "mg.test", "bad"
    )
    with pytest.raises(ServiceError) as exc:
        sender.send("bob@example.com", "Hi", "<p>Hi</p>")
    assert exc.value.kind == ErrorKind.INTERNAL


class RecordingRedis:
    def __init__(self, fail=False):
        self.messages = []
        self.fail = fail

    def publish(self, channel, message):
        if self.fail:
            raise RedisError("connection refused")
        self.messages.append((channel, json.loads(message)))
        return 1


def test_notification_payload():
    redis_client = RecordingRedis()

    ok = NotificationPublisher(redis_client).publish(
        7, NotificationType.TAB_SETTLED, "Tab Settled", "done", {"tabId": 3, "amount": Decimal("1.50")}
    )

    assert ok is True
    channel, payload = redis_client.messages[0]
    assert channel == "notifications:7"
    assert payload == {
        "type": "TAB_SETTLED",
        "title": "Tab Settled",
        "body": "done",
        "data": {"tabId": 3, "amount": "1.50"},
        "userId": 7,
    }


def test_notification_failure_is_swallowed():
    assert NotificationPublisher(RecordingRedis(fail=True)).publish(
        7, NotificationType.TAB_UPDATED, "t", "b"
    ) is False
