"""Application configuration loaded from environment variables."""

import os

from dotenv import load_dotenv

load_dotenv()

# Script table override
SCRIPTS_FILE = os.getenv("SCRIPTS_FILE", "")

# Session manager
SESSION_MANAGER_HOST = os.getenv("SESSION_MANAGER_HOST", "127.0.0.1")
SESSION_MANAGER_PORT = int(os.getenv("SESSION_MANAGER_PORT", "8025"))
SESSION_MANAGER_URL = f"http://{SESSION_MANAGER_HOST}:{SESSION_MANAGER_PORT}"

# Remote browser
CDP_HOST = os.getenv("CDP_HOST", "localhost")
CDP_PORT = int(os.getenv("CDP_PORT", "9222"))
BROWSER_HEADLESS = os.getenv("BROWSER_HEADLESS", "false").lower() == "true"
TARGET_URL = os.getenv("TARGET_URL", "https://gemini.google.com/app")
TARGET_HOST = os.getenv("TARGET_HOST", "gemini.google.com")

# Connection
CONNECT_ATTEMPTS = int(os.getenv("CONNECT_ATTEMPTS", "5"))
CONNECT_TIMEOUT = float(os.getenv("CONNECT_TIMEOUT", "5"))
CONNECT_RETRY_DELAY = float(os.getenv("CONNECT_RETRY_DELAY", "1"))
HEALTH_CHECK_TIMEOUT = float(os.getenv("HEALTH_CHECK_TIMEOUT", "3"))
NAVIGATION_TIMEOUT = float(os.getenv("NAVIGATION_TIMEOUT", "30"))

# Actions
ACTION_TIMEOUT = float(os.getenv("ACTION_TIMEOUT", "10"))
UPLOAD_STRATEGY_TIMEOUT = float(os.getenv("UPLOAD_STRATEGY_TIMEOUT", "5"))
ATTACHMENT_TIMEOUT = float(os.getenv("ATTACHMENT_TIMEOUT", "60"))
SEND_BUTTON_TIMEOUT = float(os.getenv("SEND_BUTTON_TIMEOUT", "10"))
SETTLE_DELAY = float(os.getenv("SETTLE_DELAY", "0.5"))

# Response watching
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "0.5"))
RESPONSE_TIMEOUT = float(os.getenv("RESPONSE_TIMEOUT", "180"))
COMPLETION_GRACE_DELAY = float(os.getenv("COMPLETION_GRACE_DELAY", "0.3"))
IMAGE_MARKER_MIN_ELAPSED = float(os.getenv("IMAGE_MARKER_MIN_ELAPSED", "0"))
READY_FOR_INPUT_TIMEOUT = float(os.getenv("READY_FOR_INPUT_TIMEOUT", "2"))

# Workflow
WORKFLOW_MAX_ATTEMPTS = int(os.getenv("WORKFLOW_MAX_ATTEMPTS", "3"))
WORKFLOW_RETRY_DELAY = float(os.getenv("WORKFLOW_RETRY_DELAY", "10"))
WORKFLOW_FALLBACK_ATTEMPT = int(os.getenv("WORKFLOW_FALLBACK_ATTEMPT", "3"))
EXTRACT_ATTEMPTS = int(os.getenv("EXTRACT_ATTEMPTS", "2"))
UPLOAD_FAILURES_BEFORE_RESET = int(os.getenv("UPLOAD_FAILURES_BEFORE_RESET", "2"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_BUFFER_SIZE = int(os.getenv("LOG_BUFFER_SIZE", "500"))
