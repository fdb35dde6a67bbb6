import logging
from typing import Optional

from lib.database import Database, utcnow
from lib.error_handler import AppError
from lib.twilio_client import WhatsAppClient, format_phone_number

logger = logging.getLogger(__name__)

BROADCAST_TYPES = ('morning_checkin', 'lunch_reminder', 'workout_reminder', 'water_reminder')

def build_welcome_message(name: str, signup_url: str) -> str:
    return f"""🍉 Olá, {name}! Bem-vindo(a) ao *DietaFY*!

Eu sou a *Vita*, sua assistente de nutrição e fitness. Estou aqui para te ajudar 24h! 💚

📸 Me mande uma *foto da sua refeição* e eu analiso na hora
💧 Use */agua 500* para registrar água
⚖️ Use */peso 78.5* para registrar seu peso
🏋️ Use */treino* para sugestões de treino
📊 Use */relatorio* para ver seu resumo semanal

⭐ *BENEFÍCIOS PREMIUM*:
✅ Mensagens ilimitadas comigo
✅ Todos os treinos liberados
✅ Blocos de 4-8 semanas
✅ Análises avançadas de nutrição
✅ Suporte prioritário

👉 Faça upgrade agora: {signup_url}

Vamos começar? Me manda sua primeira mensagem! 🚀"""

def build_broadcast_message(kind: str, name: Optional[str]) -> Optional[str]:
    if kind == 'morning_checkin':
        return (
            f"☀️ Bom dia, {name or 'tudo bem'}! Como você dormiu? "
            "[1] Muito bem 😴 [2] Normal 😊 [3] Mal 😓 Responda com o número!"
        )
    if kind == 'lunch_reminder':
        return "Hora do almoço! 🍽️ O que vai comer? Me manda uma foto que eu analiso pra você."
    if kind == 'workout_reminder':
        return "Treinou hoje? 💪 Se quiser, te sugiro um treino rápido baseado nos seus objetivos."
    if kind == 'water_reminder':
        return "Bebeu 2L de água hoje? 💧 Se ainda não chegou lá, me manda /agua 300 para registrar um copo agora."
    return None

class NotificationService:
    """Outbound-only WhatsApp messages: the welcome after signup and scheduled broadcasts"""

    def __init__(self, database: Database, whatsapp: WhatsAppClient, signup_url: str):
        self.database = database
        self.whatsapp = whatsapp
        self.signup_url = signup_url

    async def send_welcome(self, user_id: str, phone: str, name: Optional[str] = None) -> bool:
        formatted_phone = format_phone_number(phone)
        logger.info(f"Processing welcome message for user {user_id}, phone: {formatted_phone}")
        message = build_welcome_message(name or "amigo(a)", self.signup_url)

        sent = await self.whatsapp.send(formatted_phone, message)
        if not sent:
            self._log_notification(user_id, formatted_phone, 'failed', "Twilio API failed to send message")
            return False

        self._log_notification(user_id, formatted_phone, 'sent')
        now = utcnow()
        try:
            self.database.log_message(user_id, 'outbound', message, now=now)
        except AppError as e:
            logger.error(f"Error logging welcome whatsapp_message: {e.message}")
        try:
            self.database.touch_profile(user_id=user_id, now=now)
        except AppError as e:
            logger.error(f"Error updating profile whatsapp_last_message_at: {e.message}")
        return True

    async def broadcast(self, kind: str) -> int:
        """Send one broadcast to every opted-in, active profile. Returns how many were sent."""
        recipients = self.database.list_broadcast_recipients()
        if not recipients:
            logger.info(f"No recipients for {kind} broadcast")
            return 0

        now = utcnow()
        sent_count = 0
        for profile in recipients:
            message = build_broadcast_message(kind, profile.get('full_name'))
            if message is None:
                logger.warning(f"Unknown broadcast type {kind}")
                return 0

            if await self.whatsapp.send(profile['whatsapp_phone'], message):
                sent_count += 1

            try:
                self.database.log_message(profile['user_id'], 'outbound', message, now=now)
            except AppError as e:
                logger.error(f"Error logging broadcast whatsapp_message: {e.message}")
            try:
                self.database.touch_profile(profile_id=profile['id'], activate=False, now=now)
            except AppError as e:
                logger.error(f"Error updating profile last_message_at in broadcast: {e.message}")

        logger.info(f"{kind} broadcast sent to {sent_count}/{len(recipients)} recipients")
        return sent_count

    def _log_notification(self, user_id: str, phone: str, status: str, error: Optional[str] = None) -> None:
        try:
            self.database.log_notification(user_id, phone, status, error_message=error)
        except AppError as e:
            logger.error(e.message)
