"""
AI assistant for project rooms.

Answers ``@ai`` mentions. The model is asked to reply with a JSON object
``{"text": ..., "fileTree": {...}}``; whatever comes back is passed through
untouched (the client session decodes it resiliently).
"""
import logging
from typing import Dict, Optional

import httpx

from codecollab import config
from codecollab.errors import AIServiceError

logger = logging.getLogger(__name__)

AI_MENTION = "@ai"

SYSTEM_PROMPT = """You are an expert software engineer working inside a collaborative coding room.
Always answer with a single JSON object and nothing else:
{
  "text": "<markdown explanation for the humans in the room>",
  "fileTree": {
    "<path>": {"file": {"contents": "<full file contents>"}}
  }
}
Include "fileTree" only when you create or change files, and when you do, include
EVERY file of the project, not only the ones you changed.
Use flat path keys such as "src/app.js". Never wrap the JSON in markdown fences."""


def mentions_ai(message: object) -> bool:
    return isinstance(message, str) and AI_MENTION in message.lower()


def strip_mention(message: str) -> str:
    idx = message.lower().find(AI_MENTION)
    if idx == -1:
        return message.strip()
    return (message[:idx] + message[idx + len(AI_MENTION):]).strip()


def build_prompt(message: str, file_tree: Optional[Dict] = None) -> str:
    parts = []
    if file_tree:
        parts.append("Current project files: " + ", ".join(sorted(file_tree.keys())))
    parts.append(f"Request: {message}")
    return "\n\n".join(parts)


async def generate_openai_response(prompt: str) -> str:
    """Non-streaming completion from an OpenAI-compatible API"""
    headers = {}
    if config.OPENAI_API_KEY:
        headers["Authorization"] = f"Bearer {config.OPENAI_API_KEY}"
    payload = {
        "model": config.OPENAI_API_MODEL,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        "stream": False,
    }
    try:
        async with httpx.AsyncClient(timeout=config.AI_TIMEOUT_S) as client:
            response = await client.post(f"{config.OPENAI_API_BASE}/chat/completions", json=payload, headers=headers)
    except httpx.ConnectError:
        raise AIServiceError(f"AI API is not reachable at {config.OPENAI_API_BASE}")
    except httpx.HTTPError as e:
        raise AIServiceError(str(e))
    if response.status_code != 200:
        raise AIServiceError(f"AI API returned {response.status_code}: {response.text[:200]}")
    data = response.json()
    choices = data.get("choices") or [{}]
    return (choices[0].get("message") or {}).get("content", "")


async def generate_ollama_response(prompt: str) -> str:
    """Non-streaming completion from Ollama"""
    payload = {
        "model": config.OLLAMA_MODEL,
        "system": SYSTEM_PROMPT,
        "prompt": prompt,
        "format": "json",
        "stream": False,
    }
    try:
        async with httpx.AsyncClient(timeout=config.AI_TIMEOUT_S) as client:
            response = await client.post(f"{config.OLLAMA_BASE_URL}/api/generate", json=payload)
    except httpx.ConnectError:
        raise AIServiceError("Ollama is not running. Please start Ollama: ollama serve")
    except httpx.HTTPError as e:
        raise AIServiceError(str(e))
    if response.status_code != 200:
        raise AIServiceError(f"Ollama returned {response.status_code}: {response.text[:200]}")
    return response.json().get("response", "")


async def generate_result(message: str, file_tree: Optional[Dict] = None) -> str:
    """Ask the configured provider and return its raw reply text"""
    prompt = build_prompt(strip_mention(message), file_tree)
    if config.USE_OPENAI_API and config.OPENAI_API_BASE:
        result = await generate_openai_response(prompt)
    else:
        result = await generate_ollama_response(prompt)
    logger.info("[ai] generated %d characters", len(result))
    return result
