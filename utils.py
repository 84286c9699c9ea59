# utils.py
import hashlib
import json
import logging
import os
import re
from typing import Any, Optional

import diskcache

logger = logging.getLogger(__name__)

# --- Persistent Caching Setup ---
CACHE_DIR = os.getenv("OPENAPI_CACHE_DIR", os.path.join(os.getcwd(), ".openapi_cache"))
SCHEMA_CACHE: Optional[diskcache.Cache] = None
try:
    os.makedirs(CACHE_DIR, exist_ok=True)
    SCHEMA_CACHE = diskcache.Cache(CACHE_DIR)
    logger.info(f"Initialized schema cache at: {CACHE_DIR}")
except OSError as e:
    logger.error(f"Failed to initialize disk cache at {CACHE_DIR}: {e}. Caching disabled.", exc_info=True)


def get_cache_key(spec_text: str, namespace: str = "") -> str:
    """SHA256 of the spec text, optionally prefixed so different derived artifacts don't collide."""
    digest = hashlib.sha256(spec_text.encode('utf-8')).hexdigest()
    return f"{namespace}:{digest}" if namespace else digest


def load_cached_schema(cache_key: str) -> Optional[Any]:
    if SCHEMA_CACHE is None:
        return None
    try:
        cached = SCHEMA_CACHE.get(cache_key)
        if cached is not None:
            logger.debug(f"Cache hit for key: {cache_key}")
        return cached
    except Exception as e:
        logger.error(f"Error loading from cache (key: {cache_key}): {e}", exc_info=True)
        return None


def save_schema_to_cache(cache_key: str, value: Any):
    if SCHEMA_CACHE is None:
        return
    try:
        SCHEMA_CACHE.set(cache_key, value)
        logger.debug(f"Saved to cache with key: {cache_key}")
    except Exception as e:
        logger.error(f"Error saving to cache (key: {cache_key}): {e}", exc_info=True)


# --- LLM Call Helper ---
async def llm_call_helper(llm: Any, prompt: Any, attempt: int = 1, max_attempts: int = 2) -> str:
    """Awaits ``llm.ainvoke(prompt)`` and returns the text content. Retries once, then re-raises."""
    prompt_repr = str(prompt)[:500] + '...' if len(str(prompt)) > 500 else str(prompt)
    logger.debug(f"LLM call (Attempt {attempt}/{max_attempts}) Prompt: {prompt_repr}")
    try:
        response_obj = await llm.ainvoke(prompt)
        if hasattr(response_obj, 'content'):
            content = response_obj.content
        elif isinstance(response_obj, str):
            content = response_obj
        else:
            logger.warning(f"LLM response object type ({type(response_obj)}) has no 'content' and is not str. Using str().")
            content = str(response_obj)

        if not isinstance(content, str):
            # Some chat models return a list of content parts.
            if isinstance(content, list):
                content = "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content)
            else:
                content = str(content)

        logger.debug(f"LLM call successful. Response: {content[:500]}...")
        return content
    except Exception as e:
        logger.error(f"LLM call failed (Attempt {attempt}/{max_attempts}): {e}", exc_info=True)
        if attempt < max_attempts:
            logger.info("Retrying LLM call.")
            return await llm_call_helper(llm, prompt, attempt + 1, max_attempts)
        raise


# --- JSON Parsing Helper ---
FENCE_REGEX = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")


def extract_json_block(llm_output: str) -> str:
    """Strips markdown fences and any prose before the first '[' or '{'."""
    text = llm_output.strip()
    fence = FENCE_REGEX.search(text)
    if fence:
        text = fence.group(1).strip()
    if text and text[0] not in "[{":
        starts = [i for i in (text.find("["), text.find("{")) if i >= 0]
        if starts:
            text = text[min(starts):]
    return text


def parse_llm_json_output(llm_output: str) -> Any:
    """Parses JSON out of an LLM reply. Returns the parsed data, or None on failure."""
    if not isinstance(llm_output, str):
        logger.error(f"Cannot parse non-string LLM output as JSON. Type: {type(llm_output)}")
        return None

    json_block = extract_json_block(llm_output)
    try:
        parsed_data = json.loads(json_block)
    except json.JSONDecodeError as jde:
        context_start = max(0, jde.pos - 30)
        problem_snippet = jde.doc[context_start:jde.pos + 30]
        logger.error(f"JSON parsing failed: {jde.msg}. At char {jde.pos}. Snippet: '{problem_snippet}'")
        logger.debug(f"Full text attempted for JSON parsing: {json_block}")
        return None
    return parsed_data
