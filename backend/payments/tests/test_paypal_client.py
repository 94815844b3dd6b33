import io
import json
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

from django.core.cache import cache
from django.test import SimpleTestCase, override_settings

from payments.tools.paypal import (
    ORDER_ALREADY_CAPTURED,
    PayPalClient,
    PayPalConfigurationError,
    PayPalError,
    amount_to_cents,
    build_billing_cycles,
    build_price_override,
    cents_to_amount,
    get_paypal_client,
    summarize_order_captures,
)


def _response(payload):
    response = MagicMock()
    response.read.return_value = json.dumps(payload).encode("utf-8")
    response.__enter__.return_value = response
    return response


def _http_error(code, payload):
    return HTTPError(
        "https://api-m.sandbox.paypal.com/v2/checkout/orders/X/capture",
        code,
        "error",
        {},
        io.BytesIO(json.dumps(payload).encode("utf-8")),
    )


TOKEN = {"access_token": "A21-token", "expires_in": 32400}


class MoneyHelpersTests(SimpleTestCase):
    def test_amount_conversions(self):
        self.assertEqual(cents_to_amount(1349), "13.49")
        self.assertEqual(cents_to_amount(5), "0.05")
        self.assertEqual(amount_to_cents("13.49"), 1349)
        self.assertEqual(amount_to_cents("10"), 1000)
        self.assertEqual(amount_to_cents("0.005"), 1)

    def test_unparseable_amount(self):
        with self.assertRaises(PayPalError):
            amount_to_cents("twelve")

    def test_summarize_sums_all_captures(self):
        summary = summarize_order_captures(
            {
                "status": "COMPLETED",
                "payer": {"email_address": "payer@example.com"},
                "purchase_units": [
                    {"payments": {"captures": [
                        {"id": "C1", "status": "COMPLETED", "amount": {"currency_code": "USD", "value": "10.00"}},
                        {"id": "C2", "status": "DECLINED", "amount": {"currency_code": "USD", "value": "99.00"}},
                    ]}},
                    {"payments": {"captures": [
                        {"id": "C3", "status": "COMPLETED", "amount": {"currency_code": "USD", "value": "3.49"}},
                    ]}},
                ],
            }
        )
        self.assertEqual(summary.total_cents, 1349)
        self.assertEqual(summary.currencies, {"USD"})
        self.assertEqual(summary.capture_ids, ["C1", "C3"])
        self.assertEqual(summary.capture_id, "C1")
        self.assertEqual(summary.payer_email, "payer@example.com")

    def test_billing_cycles_with_trial(self):
        cycles = build_billing_cycles(price_cents=999, currency="USD", interval_months=1, trial_days=7)
        self.assertEqual([cycle["tenure_type"] for cycle in cycles], ["TRIAL", "REGULAR"])
        self.assertEqual(cycles[1]["sequence"], 2)
        self.assertEqual(cycles[1]["pricing_scheme"]["fixed_price"]["value"], "9.99")

        override = build_price_override(price_cents=500, currency="USD", trial_days=7)
        self.assertEqual(override["billing_cycles"][0]["sequence"], 2)


@override_settings(PAYPAL_ENVIRONMENT="sandbox", PAYPAL_TIMEOUT_SECONDS=7)
class PayPalClientTests(SimpleTestCase):
    def setUp(self):
        cache.clear()
        self.client = get_paypal_client()

    def test_from_settings(self):
        self.assertTrue(self.client.is_configured)
        self.assertEqual(self.client.timeout, 7)
        self.assertEqual(self.client.base_url, "https://api-m.sandbox.paypal.com")
        self.assertEqual(PayPalClient("id", "secret", environment="live").base_url, "https://api-m.paypal.com")

    def test_missing_credentials(self):
        with self.assertRaises(PayPalConfigurationError):
            PayPalClient("", "").get_access_token()

    @patch("payments.tools.paypal.client.urlopen")
    def test_access_token_is_cached(self, mock_urlopen):
        mock_urlopen.side_effect = [_response(TOKEN), _response({"id": "O-1"}), _response({"id": "O-1"})]

        self.client.get_order("O-1")
        self.client.get_order("O-1")

        self.assertEqual(mock_urlopen.call_count, 3)
        token_request = mock_urlopen.call_args_list[0].args[0]
        self.assertTrue(token_request.full_url.endswith("/v1/oauth2/token"))
        self.assertTrue(token_request.get_header("Authorization").startswith("Basic "))
        self.assertEqual(mock_urlopen.call_args_list[0].kwargs["timeout"], 7)
        order_request = mock_urlopen.call_args_list[2].args[0]
        self.assertEqual(order_request.get_header("Authorization"), "Bearer A21-token")

    @patch("payments.tools.paypal.client.urlopen")
    def test_create_order_sends_discount_breakdown(self, mock_urlopen):
        mock_urlopen.side_effect = [_response(TOKEN), _response({"id": "O-2", "links": []})]

        self.client.create_order(
            currency="USD",
            items=[{"name": "Book", "unit_amount_cents": 999}, {"name": "Course", "unit_amount_cents": 500}],
            discount_cents=150,
            return_url="https://app.test/ok",
            cancel_url="https://app.test/cancel",
        )

        body = json.loads(mock_urlopen.call_args_list[1].args[0].data)
        amount = body["purchase_units"][0]["amount"]
        self.assertEqual(body["intent"], "CAPTURE")
        self.assertEqual(amount["value"], "13.49")
        self.assertEqual(amount["breakdown"]["item_total"]["value"], "14.99")
        self.assertEqual(amount["breakdown"]["discount"]["value"], "1.50")
        self.assertEqual(len(body["purchase_units"][0]["items"]), 2)

    @patch("payments.tools.paypal.client.urlopen")
    def test_capture_is_idempotent_per_order(self, mock_urlopen):
        mock_urlopen.side_effect = [_response(TOKEN), _response({"status": "COMPLETED"})]

        self.client.capture_order("O-3")

        capture_request = mock_urlopen.call_args_list[1].args[0]
        self.assertEqual(capture_request.get_header("Paypal-request-id"), "capture-O-3")

    @patch("payments.tools.paypal.client.urlopen")
    def test_http_error_exposes_issue(self, mock_urlopen):
        mock_urlopen.side_effect = [
            _response(TOKEN),
            _http_error(422, {"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": ORDER_ALREADY_CAPTURED}]}),
        ]

        with self.assertRaises(PayPalError) as ctx:
            self.client.capture_order("O-4")

        self.assertEqual(ctx.exception.status_code, 422)
        self.assertEqual(ctx.exception.issue, ORDER_ALREADY_CAPTURED)
        self.assertFalse(ctx.exception.retryable)

    @patch("payments.tools.paypal.client.urlopen")
    def test_network_failure_is_retryable(self, mock_urlopen):
        mock_urlopen.side_effect = [_response(TOKEN), URLError("connection reset")]

        with self.assertRaises(PayPalError) as ctx:
            self.client.get_order("O-5")
        self.assertTrue(ctx.exception.retryable)

    @patch("payments.tools.paypal.client.urlopen")
    def test_timeout_is_retryable(self, mock_urlopen):
        mock_urlopen.side_effect = [_response(TOKEN), TimeoutError()]

        with self.assertRaisesMessage(PayPalError, "timed out"):
            self.client.get_order("O-6")

    @patch("payments.tools.paypal.client.urlopen")
    def test_verify_webhook_signature(self, mock_urlopen):
        mock_urlopen.side_effect = [_response(TOKEN), _response({"verification_status": "SUCCESS"})]

        verified = self.client.verify_webhook_signature(
            {"paypal-transmission-id": "tx-1", "paypal-auth-algo": "SHA256withRSA"},
            {"id": "WH-1"},
        )

        self.assertTrue(verified)
        body = json.loads(mock_urlopen.call_args_list[1].args[0].data)
        self.assertEqual(body["webhook_id"], "WH-TEST")
        self.assertEqual(body["transmission_id"], "tx-1")
        self.assertEqual(body["webhook_event"], {"id": "WH-1"})

    @override_settings(PAYPAL_WEBHOOK_ID="")
    def test_verify_requires_webhook_id(self):
        with self.assertRaises(PayPalConfigurationError):
            get_paypal_client().verify_webhook_signature({}, {})
