import asyncio
import json
import math
import logging
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from api.models import MealAnalysis
from api.services.commands import round_half_up
from lib.database import Database, utcnow
from lib.error_handler import AppError, ErrorHandler
from lib.openai_client import GatewayClient

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "Você é o Vita, nutricionista do DietaFY. Analise a refeição na imagem e responda em JSON com os campos: "
    "prato (string), calorias (number, estimativa), proteina_g (number), carbo_g (number), gordura_g (number), "
    "comentario (string curta em PT-BR)."
)

DEFAULT_DISH = "Sua refeição"
DEFAULT_COMMENT = "Boa escolha!"

def extract_json_object(text: Optional[str]) -> Optional[str]:
    """
    Return the first balanced top-level ``{...}`` block in ``text``.

    Braces inside JSON strings are ignored. Returns None when no block
    opens or the first one never closes.
    """
    if not text:
        return None
    start = text.find('{')
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        char = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0:
                return text[start:idx + 1]
    return None

def parse_meal_analysis(content: Optional[str]) -> Tuple[Optional[MealAnalysis], Optional[Dict[str, Any]]]:
    """Parse the model answer into a validated analysis plus the raw object"""
    block = extract_json_object(content)
    if block is None:
        logger.warning("No JSON object found in food photo analysis")
        return None, None
    try:
        raw = json.loads(block)
    except json.JSONDecodeError as e:
        logger.error(f"Error parsing AI response for food photo: {str(e)}")
        return None, None
    if not isinstance(raw, dict):
        return None, None
    try:
        return MealAnalysis.model_validate(raw), raw
    except ValidationError as e:
        logger.error(f"Food photo analysis missing fields: {e.error_count()} errors")
        return None, raw

def format_analysis_reply(dish: str, calories: float, protein: float, carbs: float,
                          fat: float, comment: str, logged: bool) -> str:
    lines = [
        "📸 Análise da sua refeição:",
        "",
        f"🍽️ Prato: {dish}",
    ]
    if calories:
        lines.append(f"🔥 Calorias: ~{round_half_up(calories)} kcal")
    if protein or carbs or fat:
        lines.append(
            f"💪 Proteína: {round_half_up(protein)}g | Carbo: {round_half_up(carbs)}g | Gordura: {round_half_up(fat)}g"
        )
    lines.extend(["", f"✅ {comment}"])
    if logged:
        lines.extend(["", "Registrei automaticamente no app!"])
    return "\n".join(lines)

class PhotoService:
    def __init__(self, gateway: GatewayClient, database: Database):
        self.gateway = gateway
        self.database = database

    def _build_messages(self, media_url: str, caption: str = '') -> list:
        content = [
            {"type": "text", "text": "Analise esta refeição da forma mais útil possível para o usuário."},
        ]
        if caption:
            content.append({"type": "text", "text": f"Comentário do usuário: {caption}"})
        content.append({"type": "image_url", "image_url": {"url": media_url}})
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ]

    async def analyze(self, user_id: str, media_url: str, caption: str = '') -> str:
        """Analyze a food photo, log the meal when the answer is usable and return the reply"""
        if not self.gateway.configured:
            logger.error("AI gateway is not configured for food photo analysis")
            return "No momento não consigo analisar fotos. Tente novamente mais tarde."

        try:
            # Gateway call is blocking, keep it off the event loop
            loop = asyncio.get_running_loop()
            content = await loop.run_in_executor(
                None,
                lambda: self.gateway.complete(self._build_messages(media_url, caption.strip()))
            )
        except AppError as e:
            return ErrorHandler.handle_photo_error(e)

        analysis, raw = parse_meal_analysis(content)
        if analysis is None:
            partial = raw or {}
            return format_analysis_reply(
                dish=_str_or(partial.get('prato'), DEFAULT_DISH),
                calories=_number_or_zero(partial.get('calorias')),
                protein=_number_or_zero(partial.get('proteina_g')),
                carbs=_number_or_zero(partial.get('carbo_g')),
                fat=_number_or_zero(partial.get('gordura_g')),
                comment=_str_or(partial.get('comentario'), DEFAULT_COMMENT),
                logged=False
            )

        logged = True
        try:
            self.database.insert_meal(
                analysis.to_meal_record(user_id, media_url, raw, utcnow().isoformat())
            )
        except AppError as e:
            logger.error(f"Error inserting meal from WhatsApp photo: {e.message}")
            logged = False

        return format_analysis_reply(
            dish=analysis.prato,
            calories=analysis.calorias,
            protein=analysis.proteina_g,
            carbs=analysis.carbo_g,
            fat=analysis.gordura_g,
            comment=analysis.comentario or DEFAULT_COMMENT,
            logged=logged
        )

def _number_or_zero(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value) or value < 0:
        return 0
    return value

def _str_or(value: Any, default: str) -> str:
    return value if isinstance(value, str) and value else default
