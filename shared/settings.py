"""Runtime settings, read from the environment with defaults from constants."""

import os
from typing import Optional
from pydantic import BaseModel, Field
from shared.constants import (
    HTTP_TASK_TIMEOUT_SECONDS,
    GPT_TASK_TIMEOUT_SECONDS,
    PARALLEL_TASKS_TIMEOUT_SECONDS,
    PARALLEL_TASK_MAX_RETRIES,
    INITIAL_RETRY_DELAY_SECONDS,
    MAX_RETRY_DELAY_SECONDS,
    MIN_GPT_SUCCESS_RATE,
    MAX_PARALLEL_FAILURE_RATE,
    OUTBOUND_HTTP_TIMEOUT_SECONDS,
    LLM_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_LLM_BASE_URL,
    DEFAULT_GPT_MODEL,
)


class EngineSettings(BaseModel):
    http_task_timeout: float = Field(default=HTTP_TASK_TIMEOUT_SECONDS, gt=0)
    gpt_task_timeout: float = Field(default=GPT_TASK_TIMEOUT_SECONDS, gt=0)
    parallel_timeout: float = Field(default=PARALLEL_TASKS_TIMEOUT_SECONDS, gt=0)
    max_retries: int = Field(default=PARALLEL_TASK_MAX_RETRIES, ge=0)
    initial_retry_delay: float = Field(default=INITIAL_RETRY_DELAY_SECONDS, ge=0)
    max_retry_delay: float = Field(default=MAX_RETRY_DELAY_SECONDS, ge=0)
    min_gpt_success_rate: float = Field(default=MIN_GPT_SUCCESS_RATE, ge=0, le=1)
    max_parallel_failure_rate: float = Field(default=MAX_PARALLEL_FAILURE_RATE, ge=0, le=1)

    @classmethod
    def from_env(cls) -> "EngineSettings":
        env = {
            "http_task_timeout": os.getenv("HTTP_TASK_TIMEOUT_SECONDS"),
            "gpt_task_timeout": os.getenv("GPT_TASK_TIMEOUT_SECONDS"),
            "parallel_timeout": os.getenv("PARALLEL_TASKS_TIMEOUT_SECONDS"),
            "max_retries": os.getenv("PARALLEL_TASK_MAX_RETRIES"),
        }
        return cls(**{k: v for k, v in env.items() if v is not None})


class WorkerSettings(BaseModel):
    llm_base_url: str = DEFAULT_LLM_BASE_URL
    llm_api_key: Optional[str] = None
    default_model: str = DEFAULT_GPT_MODEL
    http_timeout: float = OUTBOUND_HTTP_TIMEOUT_SECONDS
    llm_timeout: float = LLM_REQUEST_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "WorkerSettings":
        return cls(
            llm_base_url=os.getenv("LLM_BASE_URL", DEFAULT_LLM_BASE_URL),
            llm_api_key=os.getenv("OPENAI_API_KEY"),
            default_model=os.getenv("DEFAULT_GPT_MODEL", DEFAULT_GPT_MODEL),
        )
