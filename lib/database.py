from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Any
from supabase import create_client, Client
import logging

from lib.config import Settings
from lib.error_handler import AppError

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = (
    "id, user_id, full_name, goals, activity_level, "
    "whatsapp_phone, whatsapp_opt_in, whatsapp_active, plan_type"
)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class Database:
    def __init__(self, supabase: Client):
        self.supabase = supabase
        self.profiles_table = 'user_profiles'
        self.messages_table = 'whatsapp_messages'

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        client = create_client(
            settings.supabase_url,
            settings.supabase_service_role_key
        )
        return cls(client)

    # Profiles

    def find_profile_by_phone(self, phone: str) -> Optional[Dict[str, Any]]:
        """Look up the profile whose registered WhatsApp number is exactly ``phone``"""
        try:
            response = self.supabase.table(self.profiles_table)\
                .select(PROFILE_COLUMNS)\
                .eq('whatsapp_phone', phone)\
                .maybe_single()\
                .execute()
            # maybe_single() yields no response at all when nothing matched
            return response.data if response else None
        except Exception as e:
            raise AppError(f"Error fetching profile by phone: {str(e)}")

    def touch_profile(self, profile_id: Optional[str] = None, user_id: Optional[str] = None,
                      activate: bool = True, now: Optional[datetime] = None) -> None:
        """Record that a WhatsApp message was just exchanged with this profile"""
        values: Dict[str, Any] = {'whatsapp_last_message_at': (now or utcnow()).isoformat()}
        if activate:
            values['whatsapp_active'] = True
        try:
            query = self.supabase.table(self.profiles_table).update(values)
            if profile_id is not None:
                query = query.eq('id', profile_id)
            elif user_id is not None:
                query = query.eq('user_id', user_id)
            else:
                raise ValueError("profile_id or user_id is required")
            query.execute()
        except Exception as e:
            raise AppError(f"Error updating profile last message: {str(e)}")

    def list_broadcast_recipients(self) -> List[Dict[str, Any]]:
        try:
            response = self.supabase.table(self.profiles_table)\
                .select("id, user_id, full_name, whatsapp_phone")\
                .eq('whatsapp_opt_in', True)\
                .eq('whatsapp_active', True)\
                .not_.is_('whatsapp_phone', 'null')\
                .execute()
            return response.data or []
        except Exception as e:
            raise AppError(f"Error fetching broadcast recipients: {str(e)}")

    # Message log

    def log_message(self, user_id: str, direction: str, text: str,
                    media_url: Optional[str] = None, now: Optional[datetime] = None) -> None:
        record = {
            'user_id': user_id,
            'direction': direction,
            'message_text': text,
            'media_url': media_url,
            'timestamp': (now or utcnow()).isoformat()
        }
        try:
            self.supabase.table(self.messages_table).insert(record).execute()
        except Exception as e:
            raise AppError(f"Error inserting {direction} whatsapp_message: {str(e)}")

    def count_recent_inbound(self, user_id: str, since: datetime) -> int:
        try:
            response = self.supabase.table(self.messages_table)\
                .select('id', count='exact')\
                .eq('user_id', user_id)\
                .eq('direction', 'inbound')\
                .gte('timestamp', since.isoformat())\
                .execute()
        except Exception as e:
            raise AppError(f"Error counting recent whatsapp_messages: {str(e)}")
        if response.count is not None:
            return response.count
        return len(response.data or [])

    def recent_history(self, user_id: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Last ``limit`` logged messages for the user, oldest first"""
        try:
            response = self.supabase.table(self.messages_table)\
                .select('direction, message_text')\
                .eq('user_id', user_id)\
                .order('timestamp', desc=True)\
                .limit(limit)\
                .execute()
        except Exception as e:
            raise AppError(f"Error fetching WhatsApp history: {str(e)}")
        return list(reversed(response.data or []))

    # Tracking

    def insert_weight_log(self, user_id: str, day: date, weight_kg: float) -> None:
        try:
            self.supabase.table('weight_logs').insert({
                'user_id': user_id,
                'date': day.isoformat(),
                'weight_kg': weight_kg,
                'fasting': False
            }).execute()
        except Exception as e:
            raise AppError(f"Error inserting weight log: {str(e)}")

    def add_water_intake(self, user_id: str, day: date, ml: int) -> int:
        """
        Add ``ml`` to the user's water total for ``day`` and return the new total.

        The increment happens inside Postgres (see sql/increment_water_intake.sql)
        so concurrent messages for the same day cannot lose an update.
        """
        try:
            response = self.supabase.rpc('increment_water_intake', {
                'p_user_id': user_id,
                'p_date': day.isoformat(),
                'p_ml': ml
            }).execute()
        except Exception as e:
            raise AppError(f"Error adding water intake: {str(e)}")
        return response.data if isinstance(response.data, int) else ml

    def list_workouts(self, limit: int = 3) -> List[Dict[str, Any]]:
        try:
            response = self.supabase.table('workouts')\
                .select('id, title, duration_min, difficulty')\
                .limit(limit)\
                .execute()
            return response.data or []
        except Exception as e:
            raise AppError(f"Error fetching workouts: {str(e)}")

    def weekly_summary(self, user_id: str, since: date) -> Dict[str, Any]:
        """
        Raw rows behind the weekly report. A table that cannot be read
        contributes an empty list so the report still renders.
        """
        since_str = since.isoformat()
        queries = {
            'workouts': ('workout_logs', 'id', 'date'),
            'water': ('water_intake', 'ml_consumed', 'date'),
            'meals': ('meals', 'id', 'datetime'),
        }
        summary: Dict[str, Any] = {}
        for key, (table, columns, date_column) in queries.items():
            try:
                response = self.supabase.table(table)\
                    .select(columns)\
                    .eq('user_id', user_id)\
                    .gte(date_column, since_str)\
                    .execute()
                summary[key] = response.data or []
            except Exception as e:
                logger.error(f"Error fetching {table} for weekly summary: {str(e)}")
                summary[key] = []
        return summary

    def insert_meal(self, meal: Dict[str, Any]) -> None:
        try:
            self.supabase.table('meals').insert(meal).execute()
        except Exception as e:
            raise AppError(f"Error inserting meal: {str(e)}")

    # Notifications

    def log_notification(self, user_id: str, phone: str, status: str,
                         error_message: Optional[str] = None) -> None:
        """Record a welcome message in email_logs, where the admin panel looks"""
        try:
            self.supabase.table('email_logs').insert({
                'user_id': user_id,
                'email_to': phone,
                'email_type': 'whatsapp_welcome',
                'function_name': 'whatsapp-welcome',
                'subject': 'Mensagem de Boas-vindas WhatsApp',
                'status': status,
                'error_message': error_message
            }).execute()
        except Exception as e:
            raise AppError(f"Error logging WhatsApp notification: {str(e)}")
