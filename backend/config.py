"""Configuration management for Creamie chat sync."""
import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Hosted backend (table store + realtime change feed)
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# REST backend
API_BASE_URL = os.getenv("API_BASE_URL", "http://127.0.0.1:9000")
API_TIMEOUT = float(os.getenv("API_TIMEOUT", "30.0"))  # seconds, request and resource

# Server Configuration
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:3001"
).split(",")

# Local session cache (the only state persisted on this side)
AUTH_CACHE_PATH = os.path.expanduser(
    os.getenv("AUTH_CACHE_PATH", "~/.creamie/auth.json")
)

# Table names
CONVERSATIONS_TABLE = os.getenv("CONVERSATIONS_TABLE", "conversations")
MESSAGES_TABLE = os.getenv("MESSAGES_TABLE", "messages")
REALTIME_SCHEMA = os.getenv("REALTIME_SCHEMA", "public")

# Change feed subscription policy
SUBSCRIBE_MAX_ATTEMPTS = int(os.getenv("SUBSCRIBE_MAX_ATTEMPTS", "5"))
SUBSCRIBE_INITIAL_DELAY = float(os.getenv("SUBSCRIBE_INITIAL_DELAY", "1.0"))  # seconds
SUBSCRIBE_MAX_DELAY = float(os.getenv("SUBSCRIBE_MAX_DELAY", "30.0"))  # seconds
SUBSCRIBE_TIMEOUT = float(os.getenv("SUBSCRIBE_TIMEOUT", "10.0"))  # seconds per attempt

# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
