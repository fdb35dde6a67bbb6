import logging
import math
import re
from datetime import date, timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from lib.database import Database, utcnow
from lib.error_handler import AppError, ErrorHandler

logger = logging.getLogger(__name__)

WELCOME_TEXT = (
    "Olá! 👋 Eu sou o Vita, seu assistente do DietaFY no WhatsApp. "
    "Posso registrar seu peso, água, refeições por foto e sugerir treinos. "
    "Use /menu para ver opções."
)

MENU_TEXT = "\n".join([
    "Aqui vão alguns comandos que você pode usar:",
    "/inicio – mensagem de boas-vindas",
    "/peso 78.5 – registra seu peso em kg",
    "/agua 500 – adiciona 500ml de água",
    "/treino – ver sugestões de treino de hoje",
    "/relatorio – resumo simples da sua semana",
])

UNKNOWN_COMMAND_TEXT = "Comando não reconhecido. Use /menu para ver as opções disponíveis."

def round_half_up(value: float) -> int:
    """Round like a person would (2.5 -> 3), not banker's rounding"""
    return int(math.floor(value + 0.5))

def parse_weight(raw: str) -> Optional[float]:
    """Accept '82.3' or '82,3'; None for anything that is not a positive finite number"""
    try:
        value = float(raw.replace(',', '.', 1))
    except ValueError:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value

def parse_water(raw: str) -> Optional[int]:
    """Leading integer of the argument, so '500ml' counts as 500"""
    match = re.match(r'\s*([+-]?\d+)', raw)
    if not match:
        return None
    value = int(match.group(1))
    if value <= 0:
        return None
    return value

CommandHandler = Callable[[str, List[str]], Awaitable[str]]

class CommandService:
    def __init__(self, database: Database, today: Optional[Callable[[], date]] = None):
        self.database = database
        self.today = today or (lambda: utcnow().date())
        self.handlers: Dict[str, CommandHandler] = {
            '/inicio': self.start,
            '/menu': self.menu,
            '/peso': self.weight,
            '/agua': self.water,
            '/treino': self.workouts,
            '/relatorio': self.report,
        }

    async def handle(self, user_id: str, text: str) -> str:
        """Dispatch a slash command and return the reply text"""
        command, *args = text.strip().split()
        handler = self.handlers.get(command.lower())
        if handler is None:
            logger.info(f"Unknown command from {user_id}: {command}")
            return UNKNOWN_COMMAND_TEXT
        logger.info(f"Running {command.lower()} for {user_id}")
        return await handler(user_id, args)

    async def start(self, user_id: str, args: List[str]) -> str:
        return WELCOME_TEXT

    async def menu(self, user_id: str, args: List[str]) -> str:
        return MENU_TEXT

    async def weight(self, user_id: str, args: List[str]) -> str:
        if not args:
            return "Use assim: /peso 78.5"
        value = parse_weight(args[0])
        if value is None:
            return "Não entendi o peso. Tente algo como /peso 78.5"

        try:
            self.database.insert_weight_log(user_id, self.today(), value)
        except AppError as e:
            return ErrorHandler.handle_storage_error(e, "seu peso")

        return f"Anotei seu peso de {value:.1f}kg hoje ✅"

    async def water(self, user_id: str, args: List[str]) -> str:
        if not args:
            return "Use assim: /agua 500"
        value = parse_water(args[0])
        if value is None:
            return "Não entendi a quantidade de água. Tente algo como /agua 500"

        try:
            self.database.add_water_intake(user_id, self.today(), value)
        except AppError as e:
            return ErrorHandler.handle_storage_error(e, "sua água")

        return f"Adicionei mais {value}ml na sua água de hoje 💧"

    async def workouts(self, user_id: str, args: List[str]) -> str:
        try:
            workouts = self.database.list_workouts(limit=3)
        except AppError as e:
            logger.error(f"Failed to load workouts: {e.message}")
            workouts = []

        if not workouts:
            return "Não encontrei treinos para sugerir agora, tente novamente mais tarde."

        lines = ["Sugestões para hoje:"]
        for idx, workout in enumerate(workouts, start=1):
            lines.append(
                f"{idx}) {workout.get('title')} – {workout.get('duration_min')}min ({workout.get('difficulty')})"
            )
        lines.append("Abra o app DietaFY para ver o treino completo 💪")
        return "\n".join(lines)

    async def report(self, user_id: str, args: List[str]) -> str:
        since = self.today() - timedelta(days=7)
        summary = self.database.weekly_summary(user_id, since)

        workouts_count = len(summary.get('workouts', []))
        meals_count = len(summary.get('meals', []))
        water_days = summary.get('water', [])
        avg_water = 0
        if water_days:
            total = sum(day.get('ml_consumed') or 0 for day in water_days)
            avg_water = round_half_up(total / len(water_days))

        return "\n".join([
            "Seu resumo simples da última semana:",
            f"• Treinos concluídos: {workouts_count}",
            f"• Média de água/dia: {avg_water} ml",
            f"• Refeições registradas: {meals_count}",
            "Continue me mandando fotos e atualizando peso/água que eu ajusto suas recomendações 💚",
        ])
