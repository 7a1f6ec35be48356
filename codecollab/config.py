"""
Runtime configuration, read from the environment (and a local .env file).
"""
import os
import shlex

from dotenv import load_dotenv

load_dotenv()

# Document store
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.getenv("DB_NAME", "codecollab")

# Tokens are issued by the external auth service; we only verify them here.
DEFAULT_JWT_SECRET = "codecollab-development-secret-change-me"
JWT_SECRET = os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET)
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if o.strip()
]

# AI provider configuration
# Use Ollama directly at localhost:11434 (default Ollama port)
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.2")
# OpenAI-compatible API (e.g., Open WebUI, vLLM, etc.)
OPENAI_API_BASE = os.getenv("OPENAI_API_BASE", None)  # e.g., "http://localhost:8080/v1"
OPENAI_API_MODEL = os.getenv("OPENAI_API_MODEL", "gpt-4o-mini")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
USE_OPENAI_API = os.getenv("USE_OPENAI_API", "false").lower() == "true"
AI_TIMEOUT_S = float(os.getenv("AI_TIMEOUT_S", "300"))

# Client session defaults
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8001")
SANDBOX_INSTALL_CMD = shlex.split(os.getenv("SANDBOX_INSTALL_CMD", "npm install"))
SANDBOX_START_CMD = shlex.split(os.getenv("SANDBOX_START_CMD", "npm start"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8001"))
