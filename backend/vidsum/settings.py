import os
from dataclasses import dataclass


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default) in (
        "1",
        "true",
        "True",
        "yes",
        "YES",
    )


@dataclass(frozen=True)
class Settings:
    data_dir: str = os.getenv(
        "VIDSUM_DATA_DIR",
        os.path.join(os.path.expanduser("~"), ".vidsum"),
    )
    db_relpath: str = os.getenv("VIDSUM_DB", "data/database.db")

    log_level: str = os.getenv("VIDSUM_LOG_LEVEL", "INFO")
    cors_origins: str = os.getenv("VIDSUM_CORS_ORIGINS", "")

    max_chunk_size: int = int(os.getenv("MAX_CHUNK_SIZE", "8000"))
    chunk_overlap: int = int(os.getenv("CHUNK_OVERLAP", "200"))
    tokenizer_encoding: str = os.getenv("TOKENIZER_ENCODING", "cl100k_base")

    minimum_cost: int = int(os.getenv("MINIMUM_COST", "10"))
    signup_coins: int = int(os.getenv("SIGNUP_COINS", "50"))

    generation_timeout_seconds: float = float(
        os.getenv("GENERATION_TIMEOUT_SECONDS", "120")
    )
    job_timeout_seconds: float = float(
        os.getenv("JOB_TIMEOUT_SECONDS", "600")
    )
    map_concurrency: int = int(os.getenv("MAP_CONCURRENCY", "4"))
    llm_concurrency: int = int(os.getenv("LLM_CONCURRENCY", "4"))

    generation_backend: str = os.getenv("GENERATION_BACKEND", "fake")

    standard_max_tokens: int = int(os.getenv("STANDARD_MAX_TOKENS", "2048"))
    standard_temperature: float = float(
        os.getenv("STANDARD_TEMPERATURE", "0.3")
    )
    standard_safety_threshold: str = os.getenv(
        "STANDARD_SAFETY_THRESHOLD", "BLOCK_ONLY_HIGH"
    )
    conservative_max_tokens: int = int(
        os.getenv("CONSERVATIVE_MAX_TOKENS", "1024")
    )
    conservative_temperature: float = float(
        os.getenv("CONSERVATIVE_TEMPERATURE", "0.1")
    )
    conservative_safety_threshold: str = os.getenv(
        "CONSERVATIVE_SAFETY_THRESHOLD", "BLOCK_LOW_AND_ABOVE"
    )

    dashscope_api_key: str = os.getenv("DASHSCOPE_API_KEY", "")
    cloud_llm_model: str = os.getenv("CLOUD_LLM_MODEL", "qwen-plus")

    google_api_key: str = os.getenv("GOOGLE_API_KEY", "")
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")

    llm_base_url: str = os.getenv("LLM_BASE_URL", "http://127.0.0.1:11434/v1")
    llm_api_key: str = os.getenv("LLM_API_KEY", "")
    llm_model: str = os.getenv("LLM_MODEL", "qwen2.5:7b-instruct")

    prompts_path: str = os.getenv("PROMPTS_PATH", "")
    transcript_language: str = os.getenv("TRANSCRIPT_LANGUAGE", "en")

    disable_title_lookup: bool = _env_flag("VIDSUM_DISABLE_TITLE_LOOKUP")


settings = Settings()
