from typing import Optional
import logging

logger = logging.getLogger(__name__)

class AppError(Exception):
    def __init__(self, message: str, status_code: int = 500, user_message: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.user_message = user_message or "Tive um problema agora. Tente novamente mais tarde."
        super().__init__(self.message)

class ErrorHandler:
    @staticmethod
    def handle_ai_error(error: AppError) -> str:
        logger.error(f"AI gateway error ({error.status_code}): {error.message}")
        if error.status_code == 429:
            return "Recebi muitas perguntas em pouco tempo. Me chama de novo em alguns minutos, por favor 🙏"
        if error.status_code == 402:
            return "No momento não consigo responder com IA por uma limitação de uso. Tente novamente mais tarde."
        return "Tive um problema ao falar com a IA agora. Tente novamente mais tarde."

    @staticmethod
    def handle_photo_error(error: AppError) -> str:
        logger.error(f"Photo analysis error ({error.status_code}): {error.message}")
        return "Tive um problema ao analisar a foto agora. Tente novamente mais tarde."

    @staticmethod
    def handle_storage_error(error: Exception, what: str) -> str:
        logger.error(f"Storage error saving {what}: {str(error)}")
        return f"Tive um problema ao registrar {what}. Tente novamente mais tarde."
