"""
Email gateway client for verification code delivery.

Requests are signed with HMAC-SHA256 over the exact JSON body.
"""

import hashlib
import hmac
import json
import logging

import requests

logger = logging.getLogger(__name__)

# Gateway template per verification purpose
_CODE_TEMPLATES = {
    "registration": "verify_registration",
    "password_reset": "verify_password_reset",
    "login_verification": "verify_login",
}


class EmailGatewayError(Exception):
    """Raised when email gateway request fails."""


class EmailGatewayClient:
    """Send emails via HTTP gateway with HMAC signature verification."""

    def __init__(self, gateway_url: str, api_key: str, hmac_secret: str, timeout: float = 10):
        """
        Args:
            gateway_url: Full URL to the email gateway endpoint
            api_key: API key for X-API-Key header
            hmac_secret: Secret for HMAC-SHA256 signature

        Raises:
            ValueError: If any credential is empty
        """
        if not gateway_url:
            raise ValueError("gateway_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        if not hmac_secret:
            raise ValueError("hmac_secret is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.timeout = timeout

    def _sign(self, body: str) -> str:
        return hmac.new(
            self.hmac_secret.encode("utf-8"),
            body.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _sign_and_send(self, payload: dict) -> None:
        """
        Sign payload with HMAC and POST it to the gateway.

        Raises:
            EmailGatewayError: On any failure
        """
        body = json.dumps(payload, separators=(",", ":"))

        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
            "X-Signature": self._sign(body),
        }

        try:
            response = requests.post(
                self.gateway_url,
                data=body,
                headers=headers,
                timeout=self.timeout,
            )
        except (requests.exceptions.RequestException, ConnectionError) as e:
            logger.error("Email gateway connection failed: %s", e)
            raise EmailGatewayError(f"Connection failed: {e}")

        try:
            response_data = response.json()
        except ValueError:
            logger.error("Email gateway returned invalid JSON: %s", response.text)
            raise EmailGatewayError("Invalid response from gateway")

        if response.status_code != 200 or not response_data.get("success"):
            error_msg = response_data.get("message", "Unknown error")
            logger.error("Email gateway error: %s", error_msg)
            raise EmailGatewayError(f"Gateway error: {error_msg}")

    def send_verification_code(
        self,
        email: str,
        code: str,
        purpose: str,
        expires_minutes: int,
    ) -> None:
        """
        Send a one-time verification code.

        Args:
            email: Recipient address
            code: Six-digit code
            purpose: registration, password_reset or login_verification
            expires_minutes: Shown to the reader in the message

        Raises:
            ValueError: If purpose is unknown
            EmailGatewayError: On any gateway failure
        """
        template = _CODE_TEMPLATES.get(purpose)
        if template is None:
            raise ValueError(f"Unknown verification purpose '{purpose}'")

        self._sign_and_send({
            "type": "template",
            "template": template,
            "email": email,
            "variables": {"code": code, "expires_minutes": expires_minutes},
            "sender": "auth",
        })
        logger.info("Verification code email sent (%s)", purpose)

