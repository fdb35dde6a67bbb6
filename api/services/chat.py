import asyncio
import logging
from typing import Dict, List

from api.models import UserProfile
from lib.database import Database
from lib.error_handler import AppError, ErrorHandler
from lib.openai_client import GatewayClient

logger = logging.getLogger(__name__)

class ChatService:
    def __init__(self, gateway: GatewayClient, database: Database, history_limit: int = 5):
        self.gateway = gateway
        self.database = database
        self.history_limit = history_limit

    def _build_system_prompt(self, context: str) -> str:
        """Build the system prompt with context"""
        return (
            "Você é o Vita, assistente de saúde do app DietaFY, respondendo via WhatsApp em português do Brasil. "
            "Seja direto, empático e prático. Use respostas curtas, listas com bullets quando ajudar e nunca peça "
            "para o usuário abrir o chat do app se não for necessário. "
            "Contexto do usuário (resuma mentalmente, não repita literalmente):\n"
            f"{context}"
        )

    def _build_user_context(self, profile: UserProfile) -> str:
        parts = []
        if profile.full_name:
            parts.append(f"Nome: {profile.full_name}")
        if profile.goals:
            parts.append(f"Objetivos: {', '.join(profile.goals)}")
        if profile.activity_level:
            parts.append(f"Nível de atividade: {profile.activity_level}")
        return " | ".join(parts)

    def _load_history(self, user_id: str) -> List[Dict[str, str]]:
        try:
            rows = self.database.recent_history(user_id, limit=self.history_limit)
        except AppError as e:
            logger.error(f"Proceeding without WhatsApp history: {e.message}")
            return []
        return [
            {
                "role": "user" if row.get('direction') == 'inbound' else "assistant",
                "content": row['message_text']
            }
            for row in rows
            if row.get('message_text')
        ]

    async def process_message(self, profile: UserProfile, message: str) -> str:
        """Answer a free-text message with the Vita persona"""
        if not self.gateway.configured:
            logger.error("AI gateway is not configured")
            return "Estou com um problema temporário na IA. Tente de novo daqui a pouco."

        messages = [
            {"role": "system", "content": self._build_system_prompt(self._build_user_context(profile))},
            *self._load_history(profile.user_id),
            {"role": "user", "content": message},
        ]

        try:
            # Gateway call is blocking, keep it off the event loop
            loop = asyncio.get_running_loop()
            content = await loop.run_in_executor(
                None,
                lambda: self.gateway.complete(messages)
            )
        except AppError as e:
            return ErrorHandler.handle_ai_error(e)

        if content is None:
            return "Pronto!"
        return content
