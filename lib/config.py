from typing import Optional
from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv()

class Settings(BaseSettings):
    # Twilio settings
    twilio_account_sid: str = ''
    twilio_auth_token: str = ''
    twilio_whatsapp_number: str = ''

    # Supabase settings
    supabase_url: str = ''
    supabase_service_role_key: str = ''

    # AI gateway settings (OpenAI-compatible chat completions)
    ai_gateway_url: str = 'https://ai.gateway.lovable.dev/v1'
    ai_gateway_api_key: str = ''
    ai_model: str = 'google/gemini-2.5-flash'

    # Public URL Twilio posts to, when it differs from what Flask sees behind a proxy
    public_webhook_url: Optional[str] = None

    # Conversation limits
    rate_limit_per_hour: int = 30
    history_limit: int = 5

    signup_url: str = 'https://dietafy.com.br/auth?mode=signup'

    # Bearer token required on the welcome and broadcast routes
    internal_api_token: str = ''

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_whatsapp_number)

def get_settings() -> Settings:
    return Settings()
