"""
Configuration constants for the check-in service
"""
import logging
import os

from dotenv import load_dotenv

# Look for .env in the backend directory (parent of this config directory)
current_file_dir = os.path.dirname(__file__)
backend_dir = os.path.dirname(current_file_dir)
dotenv_path = os.path.join(backend_dir, '.env')
env_loaded = load_dotenv(dotenv_path)

logger = logging.getLogger("checkin-config")
logger.info(f"Environment loading: .env path={dotenv_path}, exists={os.path.exists(dotenv_path)}, loaded={env_loaded}")

# Redis key namespace shared by every store
KEY_PREFIX = os.getenv("CHECKIN_KEY_PREFIX", "checkin")

# RQ queues
CALL_QUEUE_NAME = os.getenv("CHECKIN_CALL_QUEUE", "checkin_calls")
GENERATION_QUEUE_NAME = os.getenv("CHECKIN_GENERATION_QUEUE", "checkin_generation")

# Executor
EXECUTOR_INTERVAL_SECONDS = int(os.getenv("EXECUTOR_INTERVAL_SECONDS", "60"))
EXECUTOR_BATCH_LIMIT = int(os.getenv("EXECUTOR_BATCH_LIMIT", "100"))

# Call provider (LiveKit)
LIVEKIT_AGENT_NAME = os.getenv("LIVEKIT_AGENT_NAME", "checkin-agent")
SIP_OUTBOUND_TRUNK_ID = os.getenv("SIP_OUTBOUND_TRUNK_ID")
AGENT_DISPLAY_NAME = os.getenv("AGENT_NAME", "Sunny")
# Place calls through the mock adapter (local runs without a SIP trunk)
USE_MOCK_CALLS = os.getenv("CHECKIN_MOCK_CALLS", "false").lower() == "true"

# Caps applied to values interpolated into the agent instructions
OWNER_NAME_MAX_LENGTH = int(os.getenv("OWNER_NAME_MAX_LENGTH", "50"))
LOCAL_TIME_MAX_LENGTH = int(os.getenv("LOCAL_TIME_MAX_LENGTH", "40"))
WEEKDAY_LABEL_MAX_LENGTH = int(os.getenv("WEEKDAY_LABEL_MAX_LENGTH", "12"))

# Stage A: structured extraction
OPENAI_EXTRACTION_MODEL = os.getenv("OPENAI_EXTRACTION_MODEL", "gpt-4o-mini")
EXTRACTION_MAX_ATTEMPTS = int(os.getenv("EXTRACTION_MAX_ATTEMPTS", "3"))
MAX_TRANSCRIPT_LENGTH = int(os.getenv("MAX_TRANSCRIPT_LENGTH", "12000"))

# Stage B: media synthesis
MEDIA_SYNTHESIS_URL = os.getenv("MEDIA_SYNTHESIS_URL", "https://api.sunoapi.org/api/v1/generate")
MEDIA_SYNTHESIS_API_KEY = os.getenv("MEDIA_SYNTHESIS_API_KEY")
MEDIA_SYNTHESIS_MODEL = os.getenv("MEDIA_SYNTHESIS_MODEL", "V5")
MEDIA_CALLBACK_URL = os.getenv("MEDIA_CALLBACK_URL", "http://localhost:8000/webhooks/media")
MEDIA_SYNTHESIS_TIMEOUT = float(os.getenv("MEDIA_SYNTHESIS_TIMEOUT", "30"))

# Quota
QUOTA_DEFAULT_LIMIT = int(os.getenv("QUOTA_DEFAULT_LIMIT", "10"))

if not SIP_OUTBOUND_TRUNK_ID:
    logger.info("SIP_OUTBOUND_TRUNK_ID not set - outbound calls require a mock adapter")
if not MEDIA_SYNTHESIS_API_KEY:
    logger.info("MEDIA_SYNTHESIS_API_KEY not set - media synthesis requests will be rejected")
