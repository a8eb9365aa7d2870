"""Unit tests for auth/sms.py -- SMSGateway delivery.

requests.Session is replaced with a MagicMock so no network traffic happens.

Covers:
- simulation mode when SMS_GATEWAY_URL is empty (nothing is posted)
- real mode posts {"to", "text"} with a Bearer key and a bounded timeout
- HTTP errors, timeouts and connection errors become SMSResult(success=False)
- a non-JSON success body still counts as delivered
"""

from unittest.mock import MagicMock

import pytest
import requests
from conftest import make_settings

from auth.sms import SMSGateway

GATEWAY = "https://sms.example.test/send"


@pytest.fixture
def http():
    session = MagicMock(spec=requests.Session)
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = {"id": "msg-1"}
    session.post.return_value = response
    return session


def test_simulated_when_no_gateway_url(http, caplog) -> None:
    gateway = SMSGateway(make_settings(sms_gateway_url=""), session=http)
    assert gateway.simulated
    with caplog.at_level("INFO", logger="classsite.sms"):
        result = gateway.send("89123456789", "code 123456")
    assert result.success
    assert result.message_id.startswith("sim_")
    http.post.assert_not_called()
    assert "+79123456789" in caplog.text


def test_real_delivery(http) -> None:
    gateway = SMSGateway(
        make_settings(sms_gateway_url=GATEWAY, sms_api_key="k3y", sms_timeout_seconds=2.5), session=http
    )
    result = gateway.send("89123456789", "code 123456")

    assert result.success
    assert result.message_id == "msg-1"
    http.post.assert_called_once_with(
        GATEWAY,
        json={"to": "+79123456789", "text": "code 123456"},
        headers={"Authorization": "Bearer k3y"},
        timeout=2.5,
    )


@pytest.mark.parametrize(
    "error",
    [requests.Timeout("slow"), requests.ConnectionError("down"), requests.HTTPError("500 Server Error")],
)
def test_delivery_failures_are_reported_not_raised(http, error) -> None:
    if isinstance(error, requests.HTTPError):
        http.post.return_value.raise_for_status.side_effect = error
    else:
        http.post.side_effect = error
    gateway = SMSGateway(make_settings(sms_gateway_url=GATEWAY), session=http)

    result = gateway.send("79123456789", "hello")

    assert result.success is False
    assert result.error


def test_non_json_body_still_delivered(http) -> None:
    http.post.return_value.json.side_effect = ValueError("no json")
    gateway = SMSGateway(make_settings(sms_gateway_url=GATEWAY), session=http)
    result = gateway.send("79123456789", "hello")
    assert result.success
    assert result.message_id is None
