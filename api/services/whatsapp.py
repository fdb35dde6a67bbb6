import logging
from typing import Optional

from pydantic import ValidationError

from api.models import InboundMessage, UserProfile
from api.services.chat import ChatService
from api.services.commands import CommandService
from api.services.photo import PhotoService
from lib.database import Database
from lib.error_handler import AppError
from lib.rate_limiter import RateLimiter
from lib.twilio_client import WhatsAppClient

logger = logging.getLogger(__name__)

NOT_REGISTERED_TEXT = (
    "Olá! 👋 Ainda não te conheço no DietaFY. "
    "Baixe o app, faça seu cadastro e cadastre este número de WhatsApp no seu perfil para ativar a integração."
)
PREMIUM_ONLY_TEXT = (
    "O canal WhatsApp do DietaFY é exclusivo para assinantes Premium. Acesse o app para fazer upgrade."
)
SLOW_DOWN_TEXT = (
    "Você enviou muitas mensagens na última hora 😊 Vamos continuar depois um pouco para evitar sobrecarga."
)

class WhatsAppRouter:
    """
    Takes one verified inbound WhatsApp message through the whole exchange:
    resolve the sender, throttle, pick a handler, reply once and log it.
    """

    def __init__(self, database: Database, whatsapp: WhatsAppClient, rate_limiter: RateLimiter,
                 commands: CommandService, photos: PhotoService, chat: ChatService):
        self.database = database
        self.whatsapp = whatsapp
        self.rate_limiter = rate_limiter
        self.commands = commands
        self.photos = photos
        self.chat = chat

    async def handle_message(self, message: InboundMessage) -> None:
        phone = message.from_phone
        if not phone:
            logger.warning("Missing From in Twilio payload")
            return

        profile = self._resolve_profile(phone)
        if profile is None:
            logger.info(f"Unknown WhatsApp sender {phone}")
            await self.whatsapp.send(phone, NOT_REGISTERED_TEXT)
            return

        if not profile.has_whatsapp_access:
            logger.info(f"WhatsApp access denied for {profile.user_id} (plan={profile.plan_type})")
            await self.whatsapp.send(phone, PREMIUM_ONLY_TEXT)
            return

        self._log(profile.user_id, 'inbound', message.body, media_url=message.media_url)

        if self.rate_limiter.check_limit(profile.user_id):
            await self._reply(profile, phone, SLOW_DOWN_TEXT)
            return

        reply = await self._dispatch(profile, message)
        if reply is None:
            return
        await self._reply(profile, phone, reply)

    async def _dispatch(self, profile: UserProfile, message: InboundMessage) -> Optional[str]:
        if message.num_media > 0:
            if not message.media_url:
                logger.warning(f"NumMedia={message.num_media} without MediaUrl0 from {profile.user_id}")
                return None
            logger.info(f"Food photo from {profile.user_id}")
            return await self.photos.analyze(profile.user_id, message.media_url, caption=message.body)

        text = message.body.strip()
        if text.startswith('/'):
            return await self.commands.handle(profile.user_id, text)

        logger.info(f"Free text from {profile.user_id}, asking Vita")
        return await self.chat.process_message(profile, text)

    async def _reply(self, profile: UserProfile, phone: str, reply: str) -> None:
        await self.whatsapp.send(phone, reply)
        self._log(profile.user_id, 'outbound', reply)
        try:
            self.database.touch_profile(profile_id=profile.id)
        except AppError as e:
            logger.error(f"Error updating user profile last_message_at: {e.message}")

    def _resolve_profile(self, phone: str) -> Optional[UserProfile]:
        try:
            row = self.database.find_profile_by_phone(phone)
        except AppError as e:
            logger.error(f"Error fetching user profile by WhatsApp: {e.message}")
            return None
        if not row:
            return None
        try:
            return UserProfile.model_validate(row)
        except ValidationError as e:
            logger.error(f"Malformed user profile for {phone}: {e.error_count()} errors")
            return None

    def _log(self, user_id: str, direction: str, text: str, media_url: Optional[str] = None) -> None:
        try:
            self.database.log_message(user_id, direction, text, media_url=media_url)
        except AppError as e:
            logger.error(e.message)
