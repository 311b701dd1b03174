# core/config.py
import os
from pydantic_settings import BaseSettings
from dotenv import load_dotenv
import logging

# Load variables from .env file located in the project root directory
dotenv_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path)
else:
    load_dotenv() # Fallback

class Settings(BaseSettings):
    """Loads configuration settings from environment variables and .env file."""

    # --- Supabase (document store) Configuration ---
    SUPABASE_URL: str | None = None
    SUPABASE_SERVICE_KEY: str | None = None # SERVICE_ROLE key, the service bypasses RLS

    BUCKETS_TABLE: str = "buckets"
    FILES_TABLE: str = "files"
    STATS_TABLE: str = "storage_stats"
    INCREMENT_FUNCTION: str = "increment_counters" # RPC used for atomic $inc updates

    # --- Google Cloud Storage (remote object store) Configuration ---
    GCS_PROJECT_ID: str | None = None
    GCS_KEY_FILE: str | None = None # Path to service account JSON
    BUCKET_PREFIX: str = "webinate-bucket"
    BUCKET_LOCATION: str = "EU"
    PUBLIC_URL_BASE: str = "https://storage.googleapis.com"

    # --- Quota defaults for new accounts ---
    DEFAULT_MEMORY_ALLOCATED: int = 500_000_000 # 500mb
    DEFAULT_API_CALLS_ALLOCATED: int = 20_000

    # --- Streaming ---
    STREAM_CHUNK_SIZE: int = int(os.getenv("STREAM_CHUNK_SIZE", 64 * 1024))

    # --- Batch deletes: "collect_and_continue" or "fail_fast" ---
    BATCH_ERROR_POLICY: str = "collect_and_continue"

    class Config:
        env_file = '.env'
        env_file_encoding = 'utf-8'
        extra = 'ignore'

# Instantiate settings once for import
settings = Settings()

# --- Logging Setup ---
log_level_str = os.getenv("LOG_LEVEL", "INFO").upper(); log_level = getattr(logging, log_level_str, logging.INFO)
logging.basicConfig(level=log_level, format='%(asctime)s - %(name)s - [%(levelname)s] - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
logger = logging.getLogger("BucketStore_Core")
logging.getLogger("httpx").setLevel(logging.WARNING); logging.getLogger("supabase").setLevel(logging.WARNING)
logging.getLogger("google").setLevel(logging.WARNING); logging.getLogger("urllib3").setLevel(logging.WARNING)

# --- Configuration Validation Checks ---
logger.info(f"Core Settings loaded. Log Level: {log_level_str}")
if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_KEY: logger.warning("Supabase URL/Service Key missing. Document store calls will fail.")
if not settings.GCS_PROJECT_ID: logger.warning("GCS_PROJECT_ID missing, relying on ambient Google credentials.")
else: logger.info(f"Using Google Cloud project: {settings.GCS_PROJECT_ID} (location {settings.BUCKET_LOCATION})")

if settings.BATCH_ERROR_POLICY not in ("collect_and_continue", "fail_fast"):
    logger.error(f"Invalid BATCH_ERROR_POLICY '{settings.BATCH_ERROR_POLICY}', falling back to 'collect_and_continue'.")
    settings.BATCH_ERROR_POLICY = "collect_and_continue"

try: assert settings.STREAM_CHUNK_SIZE > 0; logger.info(f"Stream chunk size: {settings.STREAM_CHUNK_SIZE} bytes")
except (AssertionError, ValueError): logger.error(f"Invalid STREAM_CHUNK_SIZE: {settings.STREAM_CHUNK_SIZE}.")
logger.info(f"Default quotas: memory={settings.DEFAULT_MEMORY_ALLOCATED} bytes, api_calls={settings.DEFAULT_API_CALLS_ALLOCATED}")
