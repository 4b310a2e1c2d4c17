"""Configuration management for the Manifest Guru chat backend."""
import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# API Keys
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# Server Configuration
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:8081,http://localhost:19006"
).split(",")

# Model Configuration
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_API_URL = os.getenv("EMBEDDING_API_URL", "https://api.openai.com/v1/embeddings")
EMBEDDING_DIMENSIONS = 1536
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama-3.3-70b-versatile")
MAX_REPLY_TOKENS = 1024

# Timeouts (seconds) and retries
EMBEDDING_TIMEOUT = float(os.getenv("EMBEDDING_TIMEOUT", "15"))
EMBEDDING_MAX_RETRIES = 3
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "60"))
LLM_MAX_RETRIES = 3
LLM_INITIAL_DELAY = 1.0
PERSISTENCE_MAX_RETRIES = 3

# Chat Configuration
AI_MESSAGE_MAX_LENGTH = 1000
HISTORY_MAX_MESSAGES = 10
PROMPT_TOKEN_BUDGET = int(os.getenv("PROMPT_TOKEN_BUDGET", "6000"))
TITLE_MAX_LENGTH = 50

# Retrieval Configuration
RETRIEVAL_TOP_K = 5
RELEVANCE_THRESHOLD = float(os.getenv("RELEVANCE_THRESHOLD", "0.7"))
DEGRADE_ON_RETRIEVAL_FAILURE = os.getenv("DEGRADE_ON_RETRIEVAL_FAILURE", "true").lower() == "true"

# Supabase tables
CONVERSATIONS_TABLE = "ai_conversations"
KNOWLEDGE_TABLE = "knowledge_embeddings"
KNOWLEDGE_MATCH_FUNCTION = "match_knowledge"

# Knowledge ingestion
KNOWLEDGE_DIR = os.getenv("KNOWLEDGE_DIR", "knowledge")
CHUNK_SIZE = 1000  # characters
CHUNK_OVERLAP = 200  # characters

# Client Configuration
CHAT_API_URL = os.getenv("CHAT_API_URL", f"http://localhost:{PORT}")
CLIENT_TIMEOUT = float(os.getenv("CLIENT_TIMEOUT", "90"))

# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
