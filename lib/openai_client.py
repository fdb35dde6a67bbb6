from openai import OpenAI, APIStatusError, APIError
from typing import Any, Dict, List, Optional
import logging
from lib.config import Settings
from lib.error_handler import AppError

logger = logging.getLogger(__name__)

class GatewayClient:
    """Thin wrapper over an OpenAI-compatible chat completions gateway."""

    def __init__(self, client: Optional[OpenAI], model: str):
        self.client = client
        self.model = model

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayClient":
        if not settings.ai_gateway_api_key:
            logger.error("AI gateway API key is not configured")
            return cls(None, settings.ai_model)
        # Rate limits are surfaced to the user rather than retried
        client = OpenAI(
            api_key=settings.ai_gateway_api_key,
            base_url=settings.ai_gateway_url,
            max_retries=0
        )
        return cls(client, settings.ai_model)

    @property
    def configured(self) -> bool:
        return self.client is not None

    def complete(self, messages: List[Dict[str, Any]]) -> Optional[str]:
        """
        Run a single non-streaming completion and return the first choice's
        text, or None when the response has no string content.
        """
        if self.client is None:
            raise AppError("AI gateway not configured", status_code=503)
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                stream=False
            )
        except APIStatusError as e:
            raise AppError(f"Gateway returned {e.status_code}: {e.message}", status_code=e.status_code)
        except APIError as e:
            raise AppError(f"Gateway request failed: {str(e)}", status_code=502)

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError):
            logger.warning("Unexpected completion shape from AI gateway")
            return None
        return content if isinstance(content, str) else None
