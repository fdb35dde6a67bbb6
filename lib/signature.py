from typing import Mapping, Optional
import logging
from twilio.request_validator import RequestValidator

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Twilio-Signature"

class SignatureValidator:
    """Checks the X-Twilio-Signature header of an inbound webhook.

    Twilio signs ``url + key1 + value1 + key2 + value2 ...`` (form keys sorted)
    with HMAC-SHA1 keyed by the account auth token and base64-encodes the digest.
    Any failure rejects the request.
    """

    def __init__(self, auth_token: str):
        self.auth_token = auth_token

    def is_valid(self, url: str, params: Mapping[str, str], signature: Optional[str]) -> bool:
        if not self.auth_token:
            logger.error("Twilio auth token missing, rejecting webhook")
            return False
        if not signature:
            return False
        try:
            validator = RequestValidator(self.auth_token)
            return bool(validator.validate(url, params, signature))
        except Exception as e:
            logger.error(f"Error validating Twilio signature: {str(e)}")
            return False
