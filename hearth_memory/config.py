"""Configuration for the home-assistant memory and wake-context system."""

from pathlib import Path

# Base data directory, all runtime data stored here
DATA_DIR = Path("data")
DB_PATH = DATA_DIR / "hearth.db"

MEMORY_CONFIG = {
    # Embeddings
    "text_embedding_model": "all-MiniLM-L6-v2",
    "remote_embedding_model": "ollama/nomic-embed-text",
    "remote_embedding_api_base": "http://localhost:11434",
    "embedding_max_retries": 3,

    # Fact search
    "fact_search_limit": 50,

    # Semantic fact injection
    "semantic_max_facts": 5,
    "semantic_min_score": 0.3,

    # semantic_recall tool
    "semantic_recall_default_limit": 5,
    "semantic_recall_max_limit": 20,

    # Subject-keyed fact injection
    "subject_max_facts": 10,

    # State window
    "state_window_size": 50,
    "state_window_max_age_minutes": 30,

    # Anticipations
    "anticipation_cooldown_seconds": 300,
    "max_context_entities": 10,

    # Wake bridge
    "wake_timeout_seconds": 300,
    "wake_lock_cleanup_seconds": 600,
}
