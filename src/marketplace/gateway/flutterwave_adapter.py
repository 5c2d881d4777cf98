"""Flutterwave gateway adapter (production).

Talks to the Flutterwave v3 REST API over httpx:

- mobile money (MTN, Airtel, Africell Uganda): direct charge, the payer
  approves the prompt on their phone
- card and digital wallet: hosted payment page, the payer is redirected
- verification by transaction id, or by our transaction ref when the provider
  id is not known yet
- refunds against a settled transaction
- webhooks, authenticated by the `verif-hash` secret

Every request carries an explicit timeout. Transport failures and provider
server errors surface as GatewayError; nothing is retried here.
"""

import hmac
import json
import os
import re

import httpx
import structlog

from marketplace.errors import GatewayError, InvalidSignatureError
from marketplace.gateway.port import (
    GATEWAY_FAILED,
    GATEWAY_PROCESSING,
    GATEWAY_SUCCESSFUL,
    ChargeRequest,
    ChargeResult,
    PaymentGateway,
    RefundResult,
    VerificationResult,
    WebhookEvent,
    normalize_provider_status,
    webhook_event_from_body,
)

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://api.flutterwave.com/v3"
DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_PAYER_EMAIL = "customer@marketplace.ug"

_METHOD_NETWORKS = {
    "mtn_mobile_money": "MTN",
    "airtel_money": "AIRTEL",
    "africell_money": "AFRICELL",
}

_NETWORK_PREFIXES = {
    "MTN": ("77", "78", "76"),
    "AIRTEL": ("70", "75", "74"),
    "AFRICELL": ("79",),
}


def format_msisdn(phone: str) -> str:
    """Normalize a Ugandan phone number to 256XXXXXXXXX."""
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("0"):
        digits = "256" + digits[1:]
    if not digits.startswith("256"):
        digits = "256" + digits
    return digits


def detect_mobile_network(phone: str) -> str:
    """Guess the mobile network from the subscriber prefix. Defaults to MTN."""
    digits = re.sub(r"\D", "", phone or "")
    prefix = digits[-9:-6]
    for network, prefixes in _NETWORK_PREFIXES.items():
        if prefix.startswith(prefixes):
            return network
    return "MTN"


class FlutterwaveGateway(PaymentGateway):
    """Flutterwave v3 adapter."""

    provider = "flutterwave"

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        base_url: str = DEFAULT_BASE_URL,
        redirect_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.webhook_secret = webhook_secret
        self.redirect_url = redirect_url
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {secret_key}",
                "Content-Type": "application/json",
            },
        )

    @classmethod
    def from_env(cls) -> "FlutterwaveGateway":
        secret_key = os.environ.get("FLUTTERWAVE_SECRET_KEY")
        webhook_secret = os.environ.get("FLUTTERWAVE_WEBHOOK_SECRET")
        if not secret_key or not webhook_secret:
            raise RuntimeError("FLUTTERWAVE_SECRET_KEY and FLUTTERWAVE_WEBHOOK_SECRET must be set")
        return cls(
            secret_key=secret_key,
            webhook_secret=webhook_secret,
            base_url=os.environ.get("FLUTTERWAVE_BASE_URL", DEFAULT_BASE_URL),
            redirect_url=os.environ.get("PAYMENT_REDIRECT_URL"),
            timeout=float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)),
        )

    def close(self) -> None:
        self._client.close()

    # -------------------------------------------------------------------
    # HTTP plumbing
    # -------------------------------------------------------------------
    def _request(self, method: str, path: str, **kwargs) -> tuple[int, dict]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("Flutterwave request timed out", path=path)
            raise GatewayError("Payment provider timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("Flutterwave request failed", path=path, error=str(exc))
            raise GatewayError("Payment provider is unreachable") from exc

        if response.status_code >= 500 or response.status_code in (401, 403):
            logger.error("Flutterwave rejected request", path=path, status_code=response.status_code)
            raise GatewayError(
                f"Payment provider error ({response.status_code})",
                raw_response=response.text[:500],
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise GatewayError("Payment provider returned an unreadable response", raw_response=response.text[:500]) from exc
        return response.status_code, body

    # -------------------------------------------------------------------
    # Charges
    # -------------------------------------------------------------------
    def charge(self, request: ChargeRequest) -> ChargeResult:
        if request.method_category == "mobile_money":
            return self._charge_mobile_money(request)
        return self._charge_hosted(request)

    def _meta(self, request: ChargeRequest) -> dict:
        return {"payment_id": request.payment_id, "order_id": request.order_id}

    def _declined(self, body: dict) -> ChargeResult:
        message = body.get("message") or "Charge declined"
        return ChargeResult(
            accepted=False,
            status=GATEWAY_FAILED,
            provider=self.provider,
            message=message,
            raw_code=str(body.get("status", "error")),
            raw_message=message,
        )

    def _charge_mobile_money(self, request: ChargeRequest) -> ChargeResult:
        payload = {
            "tx_ref": request.transaction_ref,
            "amount": request.amount,
            "currency": request.currency,
            "email": request.payer_email or DEFAULT_PAYER_EMAIL,
            "phone_number": format_msisdn(request.payer_phone or ""),
            "fullname": request.payer_name,
            "network": request.payer_network
            or _METHOD_NETWORKS.get(request.method)
            or detect_mobile_network(request.payer_phone or ""),
            "meta": self._meta(request),
        }
        if self.redirect_url:
            payload["redirect_url"] = self.redirect_url

        _, body = self._request("POST", "/charges", params={"type": "mobile_money_uganda"}, json=payload)
        if body.get("status") != "success":
            return self._declined(body)

        data = body.get("data") or {}
        provider_id = data.get("id")
        status = normalize_provider_status(data.get("status"))
        return ChargeResult(
            accepted=True,
            status=GATEWAY_SUCCESSFUL if status == GATEWAY_SUCCESSFUL else GATEWAY_PROCESSING,
            provider=self.provider,
            provider_transaction_id=str(provider_id) if provider_id is not None else None,
            requires_action=status != GATEWAY_SUCCESSFUL,
            action_type="mobile_money_approval",
            message="Please approve the payment on your mobile phone. Check your phone for a prompt.",
            raw_code=str(data.get("status") or body.get("status")),
            raw_message=body.get("message"),
        )

    def _charge_hosted(self, request: ChargeRequest) -> ChargeResult:
        payload = {
            "tx_ref": request.transaction_ref,
            "amount": request.amount,
            "currency": request.currency,
            "redirect_url": self.redirect_url,
            "customer": {
                "email": request.payer_email or DEFAULT_PAYER_EMAIL,
                "name": request.payer_name,
                "phonenumber": request.payer_phone,
            },
            "customizations": {
                "title": "Marketplace Payment",
                "description": f"Payment for order {request.order_id}",
            },
            "meta": self._meta(request),
        }

        _, body = self._request("POST", "/payments", json=payload)
        if body.get("status") != "success":
            return self._declined(body)

        data = body.get("data") or {}
        return ChargeResult(
            accepted=True,
            status=GATEWAY_PROCESSING,
            provider=self.provider,
            requires_action=True,
            action_type="redirect",
            redirect_url=data.get("link"),
            message="Redirecting to payment page...",
            raw_code=str(body.get("status")),
            raw_message=body.get("message"),
        )

    # -------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------
    def verify(self, transaction_ref: str, provider_transaction_id: str | None = None) -> VerificationResult:
        if provider_transaction_id:
            _, body = self._request("GET", f"/transactions/{provider_transaction_id}/verify")
        else:
            _, body = self._request("GET", "/transactions/verify_by_reference", params={"tx_ref": transaction_ref})

        if body.get("status") != "success":
            # Not found yet: the payer has not completed the charge
            return VerificationResult(
                status="pending",
                transaction_ref=transaction_ref,
                raw_code=str(body.get("status")),
                raw_message=body.get("message"),
            )

        data = body.get("data") or {}
        status = normalize_provider_status(data.get("status"))
        provider_id = data.get("id")
        amount = data.get("amount")
        return VerificationResult(
            status=status,
            transaction_ref=data.get("tx_ref") or transaction_ref,
            provider_transaction_id=str(provider_id) if provider_id is not None else provider_transaction_id,
            amount=float(amount) if amount is not None else None,
            currency=data.get("currency"),
            reason=data.get("processor_response") if status == GATEWAY_FAILED else None,
            raw_code=str(data.get("status")),
            raw_message=data.get("processor_response"),
        )

    # -------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------
    def parse_webhook(self, signature: str | None, payload: bytes | str) -> WebhookEvent:
        if not signature or not hmac.compare_digest(signature.encode(), self.webhook_secret.encode()):
            raise InvalidSignatureError("Invalid webhook signature")
        try:
            body = json.loads(payload)
        except ValueError as exc:
            raise GatewayError("Webhook payload is not valid JSON") from exc
        return webhook_event_from_body(body)

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def refund(self, provider_transaction_id: str, amount: float, reason: str) -> RefundResult:
        _, body = self._request(
            "POST",
            f"/transactions/{provider_transaction_id}/refund",
            json={"amount": amount, "comments": reason},
        )
        if body.get("status") != "success":
            return RefundResult(
                success=False,
                failure_reason=body.get("message") or "Refund failed",
                raw_code=str(body.get("status")),
                raw_message=body.get("message"),
            )
        data = body.get("data") or {}
        refund_id = data.get("id")
        return RefundResult(
            success=True,
            refund_transaction_id=str(refund_id) if refund_id is not None else None,
            raw_code=str(data.get("status")),
            raw_message=body.get("message"),
        )
