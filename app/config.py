"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8080"))
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")

# Hosted model API (Gemini)
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "")
GEMINI_BASE_URL = os.getenv(
    "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
)
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-004")  # 768 dims
CHAT_MODEL = os.getenv("CHAT_MODEL", "gemini-2.5-flash")
CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.3"))
EMBED_BATCH_SIZE = int(os.getenv("EMBED_BATCH_SIZE", "100"))  # API hard limit
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "60.0"))

# Document store
MONGODB_URI = os.getenv("MONGODB_URI", "")
MONGODB_DB = os.getenv("MONGODB_DB", "transit")
MONGODB_COLLECTION = os.getenv("MONGODB_COLLECTION", "chunks")
MONGODB_MAX_POOL_SIZE = int(os.getenv("MONGODB_MAX_POOL_SIZE", "5"))
VECTOR_INDEX_NAME = os.getenv("VECTOR_INDEX_NAME", "vector_index")
# "atlas" or "faiss"; local FAISS when no MongoDB URI is configured
VECTOR_STORE = os.getenv("VECTOR_STORE", "atlas" if MONGODB_URI else "faiss")

# Local store (FAISS + SQLite)
DB_PATH = Path(os.getenv("DB_PATH", str(DATA_DIR / "chunks.sqlite")))
VECTOR_INDEX_PATH = DATA_DIR / "vectors.index"
METADATA_PATH = DATA_DIR / "metadata.json"

# Page fetching
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "20.0"))
USER_AGENT = os.getenv("USER_AGENT", "Mozilla/5.0 (compatible; TransitAsk/1.0)")
CONTENT_SELECTOR = os.getenv("CONTENT_SELECTOR", "#content")
DEFAULT_SECTION = "General"
DEFAULT_CATEGORY = os.getenv("DEFAULT_CATEGORY", "Transit")

# RAG parameters (character-based, no tokenizer)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "900"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "120"))
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "8"))
NUM_CANDIDATES = int(os.getenv("NUM_CANDIDATES", "200"))
CITATION_COUNT = int(os.getenv("CITATION_COUNT", "5"))
MAX_CONTEXT_CHARS = int(os.getenv("MAX_CONTEXT_CHARS", "12000"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")  # "json" or "console"
