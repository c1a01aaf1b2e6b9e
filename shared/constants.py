"""Centralized constants"""

import re

# Redis TTLs
REDIS_KEY_TTL_SECONDS = 7 * 24 * 60 * 60  # 7 days
WORKFLOW_KEY_TTL_SECONDS = 30 * 24 * 60 * 60  # 30 days

# Task timeouts
HTTP_TASK_TIMEOUT_SECONDS = 30
GPT_TASK_TIMEOUT_SECONDS = 120
PARALLEL_TASKS_TIMEOUT_SECONDS = 300  # 5 minutes
OUTBOUND_HTTP_TIMEOUT_SECONDS = 30
LLM_REQUEST_TIMEOUT_SECONDS = 90

# Retry Configuration (parallel tasks only)
PARALLEL_TASK_MAX_RETRIES = 2
INITIAL_RETRY_DELAY_SECONDS = 1
MAX_RETRY_DELAY_SECONDS = 5

# Completion gate
MIN_GPT_SUCCESS_RATE = 0.8
MAX_PARALLEL_FAILURE_RATE = 0.5

# Context seeding
TRIGGER_ALIAS_COUNT = 10
TRIGGER_RESULT_ALIAS_COUNT = 5
NUMBERED_FIELD_PATTERN = re.compile(r"^(prompt|image_size|keyword|seo)\d*$")

# Limits
MAX_NODES_PER_WORKFLOW = 1000
MAX_CONFIG_SIZE_BYTES = 64 * 1024   # 64KB, prompts can be long
MAX_TEMPLATE_LENGTH = 500

# Retryable HTTP Status Codes
RETRYABLE_HTTP_STATUS_CODES = {500, 502, 503, 504, 408, 429}

# LLM defaults
DEFAULT_LLM_BASE_URL = "https://api.openai.com/v1"
DEFAULT_GPT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_TOKENS = 150
DEFAULT_TEMPERATURE = 0.7
# Model families that take max_completion_tokens and reject temperature
COMPLETION_TOKEN_MODEL_MARKERS = ("gpt-5", "gpt-4.1", "o3", "o4")
