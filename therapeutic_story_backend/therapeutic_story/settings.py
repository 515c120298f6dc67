import os
from dotenv import load_dotenv
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    logger.info("Loaded .env file for local development")
else:
    logger.info("No .env file found, using environment variables")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.4"))
OPENAI_MAX_TOKENS = int(os.getenv("OPENAI_MAX_TOKENS", "1200"))

# Root directory of the JSON document store
DATA_DIR = os.getenv("DATA_DIR", os.path.join(os.path.dirname(__file__), "..", "data"))

RULES_CACHE_TTL_S = float(os.getenv("RULES_CACHE_TTL_S", "300"))

# Keep raw LLM output on drafts and suggestions (debugging only)
STORE_RAW_MODEL_OUTPUT = os.getenv("STORE_RAW_MODEL_OUTPUT", "false").strip().lower() in ("1", "true", "yes")

# Comma-separated list of allowed origins for CORS (e.g., "https://app.vercel.app,https://www.example.com").
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
if _allowed_origins_env:
    ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins_env.split(",") if o.strip()]
else:
    ALLOWED_ORIGINS = ["*"]


def parse_auth_tokens(raw: str) -> dict:
    """Parse "token:specialistId,token2:specialistId2" into a lookup table."""
    tokens = {}
    for pair in raw.split(","):
        token, _, specialist_id = pair.strip().partition(":")
        if token and specialist_id:
            tokens[token] = specialist_id
    return tokens


# Empty means authentication is disabled (local development)
AUTH_TOKENS = parse_auth_tokens(os.getenv("AUTH_TOKENS", ""))


def has_openai_key() -> bool:
    if not OPENAI_API_KEY:
        logger.warning("Missing API keys: OPENAI_API_KEY")
        return False
    if not OPENAI_API_KEY.startswith("sk-"):
        logger.warning("OPENAI_API_KEY does not start with 'sk-'. Check if this is intentional.")
    return True
