# signalcore/config.py
import logging
import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    def __init__(self):
        self.env = os.getenv("ENV", "development")
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()

        # Document store
        self.data_dir = os.getenv("SIGNALS_DATA_DIR", "./data")
        self.signal_suffix = os.getenv("SIGNALS_SUFFIX", ".signal.json")
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./signals.db")

        # Index cache (empty disables)
        self.redis_url = os.getenv("REDIS_URL", "")
        self.index_cache_key = os.getenv("INDEX_CACHE_KEY", "signals:metadata_index")

        # OpenAI (streaming extraction + term clustering)
        self.openai_api_key = os.getenv("OPENAI_API_KEY", "")
        self.openai_chat_model = os.getenv("OPENAI_CHAT_MODEL", "gpt-4.1-2025-04-14")
        self.openai_timeout_seconds = float(os.getenv("OPENAI_TIMEOUT_SECONDS", "120"))
        self.openai_max_tokens = int(os.getenv("OPENAI_MAX_TOKENS", "4096"))

        # Relationships
        self.related_limit = int(os.getenv("RELATED_LIMIT", 10))
        self.graph_max_nodes = int(os.getenv("GRAPH_MAX_NODES", 100))
        self.graph_min_score = int(os.getenv("GRAPH_MIN_SCORE", 2))

        # Streaming repaint rate-limit
        self.stream_render_interval_ms = int(os.getenv("STREAM_RENDER_INTERVAL_MS", "100"))


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level), logging.INFO),
        format="%(levelname)s:%(name)s:%(message)s",
    )
