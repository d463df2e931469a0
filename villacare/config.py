import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./villacare.db")

# Field-level encryption for property access notes
# Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
ACCESS_NOTES_KEY = os.getenv("ACCESS_NOTES_KEY")
if not ACCESS_NOTES_KEY:
    import warnings

    warnings.warn(
        "ACCESS_NOTES_KEY not set! Access notes cannot be encrypted or decrypted",
        RuntimeWarning,
        stacklevel=2,
    )

# Twilio Configuration (WhatsApp preferred, SMS fallback)
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_WHATSAPP_NUMBER = os.getenv("TWILIO_WHATSAPP_NUMBER")  # e.g. whatsapp:+14155238886
TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER")
TWILIO_API_BASE = os.getenv("TWILIO_API_BASE", "https://api.twilio.com/2010-04-01")

# Externally visible base URL of this API. Twilio signs the URL it was configured
# with, which proxies may rewrite before the request reaches us.
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL")

# Shared secret for external schedulers hitting /cron/*
CRON_SECRET = os.getenv("CRON_SECRET")

# Booking response escalation thresholds (minutes after the request was created)
REMINDER_AFTER_MINUTES = int(os.getenv("REMINDER_AFTER_MINUTES", "60"))
ESCALATE_AFTER_MINUTES = int(os.getenv("ESCALATE_AFTER_MINUTES", "120"))
AUTO_DECLINE_AFTER_MINUTES = int(os.getenv("AUTO_DECLINE_AFTER_MINUTES", "360"))

# Recurring series: how many future pending bookings each active series keeps
MIN_FUTURE_BOOKINGS = int(os.getenv("MIN_FUTURE_BOOKINGS", "4"))

# Access notes become visible this many hours before the booking starts
ACCESS_WINDOW_HOURS = int(os.getenv("ACCESS_WINDOW_HOURS", "24"))

# Country calling code assumed for local numbers without one (Spain)
DEFAULT_PHONE_COUNTRY_CODE = os.getenv("DEFAULT_PHONE_COUNTRY_CODE", "34")

# Frontend base URL used in outbound messages
FRONTEND_URL = os.getenv("FRONTEND_URL", "https://villacare.app")

# Booking dates and times are wall-clock times at the property; this is the
# zone assumed for properties without their own
PROPERTY_TIMEZONE = os.getenv("PROPERTY_TIMEZONE", "Europe/Madrid")
