import os
import logging
import time
from functools import wraps

from supabase import create_client, Client

logger = logging.getLogger(__name__)

# Supabase configuration
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_ANON_KEY")

supabase: Client = None
supabase_enabled = False

CONNECTION_ERROR_KEYWORDS = ('server disconnected', 'connection', 'timeout', 'network')


def retry_on_connection_error(max_retries=3, delay=1):
    """Decorator to retry database operations on connection errors"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    last_exception = e
                    error_msg = str(e).lower()

                    if not any(keyword in error_msg for keyword in CONNECTION_ERROR_KEYWORDS):
                        raise

                    if attempt < max_retries - 1:
                        logger.warning(f"⚠️ Connection error on attempt {attempt + 1}/{max_retries}: {e}")
                        time.sleep(delay * (attempt + 1))
                    else:
                        logger.error(f"❌ All {max_retries} connection attempts failed: {e}")

            raise last_exception
        return wrapper
    return decorator


def get_supabase_client(retries=3):
    """Get Supabase client instance, creating it on first use"""
    global supabase, supabase_enabled

    if supabase_enabled and supabase:
        return supabase

    if not SUPABASE_URL or not SUPABASE_KEY or SUPABASE_URL == "your-supabase-url":
        logger.warning("⚠️ Supabase not configured - set SUPABASE_URL and SUPABASE_ANON_KEY")
        return None

    for attempt in range(retries):
        try:
            supabase = create_client(SUPABASE_URL, SUPABASE_KEY)
            supabase_enabled = True
            logger.info("✅ Supabase client initialized successfully")
            return supabase
        except Exception as e:
            logger.error(f"❌ Supabase initialization failed on attempt {attempt + 1}: {e}")
            if attempt < retries - 1:
                time.sleep(2)

    supabase_enabled = False
    return None


def safe_supabase_operation(operation, fallback_result=None, operation_name="database operation"):
    """
    Safely execute a Supabase operation with error handling

    Args:
        operation: Lambda function containing the Supabase operation
        fallback_result: Value to return if operation fails
        operation_name: Name of the operation for logging

    Returns:
        Result of operation or fallback_result if it fails
    """
    try:
        return operation()
    except Exception as e:
        logger.error(f"❌ Error in {operation_name}: {e}")
        return fallback_result


# SQL COMMANDS TO RUN IN YOUR SUPABASE SQL EDITOR:

"""
-- Append-only attempt log. session_id is the settlement idempotency key.
CREATE TABLE IF NOT EXISTS quiz_attempts (
    id SERIAL PRIMARY KEY,
    user_id VARCHAR(128) NOT NULL,
    tier VARCHAR(20) NOT NULL,
    session_id VARCHAR(64) UNIQUE NOT NULL,
    score INTEGER NOT NULL CHECK (score >= 0),
    max_score INTEGER NOT NULL CHECK (max_score > 0 AND score <= max_score),
    percentage INTEGER NOT NULL CHECK (percentage BETWEEN 0 AND 100),
    created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_quiz_attempts_user ON quiz_attempts(user_id);
CREATE INDEX IF NOT EXISTS idx_quiz_attempts_user_tier ON quiz_attempts(user_id, tier);
CREATE INDEX IF NOT EXISTS idx_quiz_attempts_created_at ON quiz_attempts(created_at);

ALTER TABLE quiz_attempts ENABLE ROW LEVEL SECURITY;
"""
