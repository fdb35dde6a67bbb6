from typing import Any, Dict, List, Mapping, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from lib.twilio_client import normalize_whatsapp_number

class InboundMessage(BaseModel):
    """One Twilio WhatsApp webhook call"""
    model_config = ConfigDict(frozen=True)

    from_phone: Optional[str]
    body: str = ''
    num_media: int = 0
    media_url: Optional[str] = None
    raw_form: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_form(cls, form: Mapping[str, str]) -> "InboundMessage":
        raw = {key: form[key] for key in form}
        try:
            num_media = int(raw.get('NumMedia') or '0')
        except ValueError:
            num_media = 0
        return cls(
            from_phone=normalize_whatsapp_number(raw.get('From')),
            body=raw.get('Body') or '',
            num_media=num_media,
            media_url=raw.get('MediaUrl0') or None,
            raw_form=raw
        )

class UserProfile(BaseModel):
    id: str
    user_id: str
    full_name: Optional[str] = None
    goals: Optional[List[str]] = None
    activity_level: Optional[str] = None
    whatsapp_phone: Optional[str] = None
    whatsapp_opt_in: Optional[bool] = False
    whatsapp_active: Optional[bool] = False
    plan_type: Optional[str] = None

    @property
    def has_whatsapp_access(self) -> bool:
        return self.plan_type == 'premium' and bool(self.whatsapp_active)

class MealAnalysis(BaseModel):
    """What the vision model must return for a food photo"""
    prato: str
    calorias: float = Field(ge=0, allow_inf_nan=False, strict=True)
    proteina_g: float = Field(ge=0, allow_inf_nan=False, strict=True)
    carbo_g: float = Field(ge=0, allow_inf_nan=False, strict=True)
    gordura_g: float = Field(ge=0, allow_inf_nan=False, strict=True)
    comentario: Optional[str] = None

    @field_validator('comentario', mode='before')
    @classmethod
    def drop_non_string_comment(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) else None

    def to_meal_record(self, user_id: str, photo_url: str, raw: Dict[str, Any], datetime_iso: str) -> Dict[str, Any]:
        return {
            'user_id': user_id,
            'datetime': datetime_iso,
            'type': 'whatsapp',
            'description': self.prato,
            'calories': self.calorias,
            'protein': self.proteina_g,
            'carbs': self.carbo_g,
            'fat': self.gordura_g,
            'photo_url': photo_url,
            'ai_analysis': raw
        }
