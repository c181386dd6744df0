import pytest

from conftest import RecordingTransport
from mail_transport import ConfigurationError, TransportError
from order_email import normalize
from order_notifier import DEFAULT_FROM_EMAIL, OrderEmailDispatcher

HOST = "https://shop.example.com"


def make_dispatcher(transport, **overrides):
    options = {"from_email": "orders@yarnly.test", "owner_email": "owner@yarnly.test"}
    options.update(overrides)
    return OrderEmailDispatcher(transport, **options)


def test_sends_owner_then_customer(sample_order):
    transport = RecordingTransport()

    result = make_dispatcher(transport).dispatch(normalize(sample_order, HOST))

    assert result == {"ok": True, "recipients": ["owner@yarnly.test", "amina@example.com"]}
    assert [message["subject"] for message in transport.sent] == [
        "New Order #1042",
        "Your Order Confirmation #1042",
    ]
    assert all(message["sender"] == "Yarnly Chic <orders@yarnly.test>" for message in transport.sent)
    assert "Customer Details" in transport.sent[0]["html"]
    assert "Thank you for your order!" in transport.sent[1]["html"]


def test_missing_customer_email_sends_only_owner(sample_order):
    del sample_order["customer"]["email"]
    transport = RecordingTransport()

    result = make_dispatcher(transport).dispatch(normalize(sample_order, HOST))

    assert result["recipients"] == ["owner@yarnly.test"]
    assert len(transport.sent) == 1


@pytest.mark.parametrize("owner_email", ["", "not-an-address"])
def test_owner_falls_back_to_sender_address(owner_email):
    transport = RecordingTransport()
    make_dispatcher(transport, owner_email=owner_email).dispatch(normalize({}, HOST))
    assert transport.sent[0]["to"] == "orders@yarnly.test"


def test_blank_sender_uses_default_address():
    dispatcher = OrderEmailDispatcher(RecordingTransport(), from_email=" ")
    assert dispatcher.owner_recipient == DEFAULT_FROM_EMAIL


def test_unconfigured_transport_fails_before_rendering(sample_order):
    dispatcher = OrderEmailDispatcher(None)
    with pytest.raises(ConfigurationError, match="No mail transport configured"):
        dispatcher.dispatch(normalize(sample_order, HOST))
    assert dispatcher.readiness() == {"configured": False, "transport": None, "error": None}


def test_configuration_error_message_is_reported():
    dispatcher = OrderEmailDispatcher(None, configuration_error="SMTP needs credentials")
    with pytest.raises(ConfigurationError, match="SMTP needs credentials"):
        dispatcher.dispatch(normalize({}, HOST))


def test_owner_failure_stops_dispatch(sample_order):
    transport = RecordingTransport(fail_on_call=1)
    with pytest.raises(TransportError):
        make_dispatcher(transport).dispatch(normalize(sample_order, HOST))
    assert transport.sent == []


def test_customer_failure_is_propagated(sample_order):
    transport = RecordingTransport(fail_on_call=2)
    with pytest.raises(TransportError):
        make_dispatcher(transport).dispatch(normalize(sample_order, HOST))
    assert [message["to"] for message in transport.sent] == ["owner@yarnly.test"]
