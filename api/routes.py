from flask import Flask, request, Response, jsonify
from typing import Optional
import hmac
import logging
import sys

from api.models import InboundMessage
from api.services.chat import ChatService
from api.services.commands import CommandService
from api.services.notifications import NotificationService, BROADCAST_TYPES
from api.services.photo import PhotoService
from api.services.whatsapp import WhatsAppRouter
from lib.config import Settings, get_settings
from lib.database import Database
from lib.error_handler import AppError
from lib.openai_client import GatewayClient
from lib.rate_limiter import RateLimiter
from lib.signature import SignatureValidator, SIGNATURE_HEADER
from lib.twilio_client import WhatsAppClient

logger = logging.getLogger(__name__)

def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout,
        force=True  # Ensure our config takes precedence
    )

def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    whatsapp_client: Optional[WhatsAppClient] = None,
    gateway_client: Optional[GatewayClient] = None,
) -> Flask:
    """Build the Flask app. Anything not passed in is built from settings."""
    settings = settings or get_settings()

    if database is None:
        logger.info("Initializing Supabase client...")
        database = Database.from_settings(settings)
    if whatsapp_client is None:
        logger.info("Initializing Twilio client...")
        whatsapp_client = WhatsAppClient.from_settings(settings)
    if gateway_client is None:
        logger.info("Initializing AI gateway client...")
        gateway_client = GatewayClient.from_settings(settings)

    validator = SignatureValidator(settings.twilio_auth_token)
    router = WhatsAppRouter(
        database=database,
        whatsapp=whatsapp_client,
        rate_limiter=RateLimiter(database, max_requests=settings.rate_limit_per_hour),
        commands=CommandService(database),
        photos=PhotoService(gateway_client, database),
        chat=ChatService(gateway_client, database, history_limit=settings.history_limit)
    )
    notifications = NotificationService(database, whatsapp_client, settings.signup_url)
    logger.info("All services initialized successfully")

    app = Flask(__name__)

    def signed_url() -> str:
        # Twilio signs the URL without the query string
        if settings.public_webhook_url:
            return settings.public_webhook_url
        return request.base_url

    def authorized() -> bool:
        # Fails closed when no token is configured
        expected = settings.internal_api_token
        header = request.headers.get('Authorization', '')
        if not expected or not header.startswith('Bearer '):
            return False
        return hmac.compare_digest(header[len('Bearer '):].encode(), expected.encode())

    @app.route('/', methods=['GET'])
    def root():
        """Basic health check"""
        return jsonify({'status': 'healthy'})

    @app.route('/whatsapp/webhook', methods=['POST'])
    async def whatsapp_webhook():
        """Handle incoming WhatsApp webhooks from Twilio"""
        signature = request.headers.get(SIGNATURE_HEADER)
        if not validator.is_valid(signed_url(), request.form, signature):
            logger.warning("Invalid Twilio signature")
            return Response("Invalid signature", status=403)

        message = InboundMessage.from_form(request.form)
        logger.info(f"Webhook received from {message.from_phone} (NumMedia={message.num_media})")

        try:
            await router.handle_message(message)
        except Exception as e:
            # Twilio retries on 5xx, so business failures are still acknowledged
            logger.error(f"Webhook error: {str(e)}", exc_info=True)

        return Response("OK", status=200)

    @app.route('/whatsapp/welcome', methods=['POST'])
    async def whatsapp_welcome():
        if not authorized():
            logger.warning("Unauthorized whatsapp-welcome request")
            return Response("Unauthorized", status=401)

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            logger.error("Invalid JSON in whatsapp-welcome")
            return Response("Bad Request", status=400)

        phone = payload.get('phone')
        user_id = payload.get('user_id')
        if not phone or not user_id:
            logger.error("Missing phone or user_id in whatsapp-welcome")
            return Response("Missing required fields", status=400)

        sent = await notifications.send_welcome(user_id, phone, payload.get('name'))
        if sent:
            return jsonify({'success': True, 'message': 'Welcome message sent'})
        return jsonify({'success': False, 'message': 'Failed to send welcome message'}), 500

    @app.route('/whatsapp/broadcast', methods=['POST'])
    async def whatsapp_broadcast():
        if not authorized():
            logger.warning("Unauthorized whatsapp-broadcast request")
            return Response("Unauthorized", status=401)

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            logger.error("Invalid JSON in whatsapp-broadcast")
            return Response("Bad Request", status=400)

        kind = payload.get('type')
        if not kind:
            return Response("Missing type", status=400)
        if kind not in BROADCAST_TYPES:
            logger.warning(f"Unknown broadcast type {kind}")
            return Response("Unknown type", status=400)

        try:
            sent = await notifications.broadcast(kind)
        except AppError as e:
            logger.error(f"Error fetching profiles for broadcast: {e.message}")
            return Response("Internal Error", status=500)
        return jsonify({'status': 'ok', 'sent': sent})

    return app
