# llm_config.py
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_google_genai import ChatGoogleGenerativeAI

load_dotenv()

logger = logging.getLogger(__name__)

PLANNER_MODEL = os.getenv("PLANNER_MODEL", "gemini-1.5-pro-latest")
PLANNER_TEMPERATURE = float(os.getenv("PLANNER_TEMPERATURE", "0.1"))


def initialize_planner_llm() -> Optional[BaseChatModel]:
    """
    Builds the Gemini chat model used for workflow planning.
    Returns None when GOOGLE_API_KEY is not configured; planning endpoints then report 503.
    """
    google_api_key = os.getenv("GOOGLE_API_KEY")
    if not google_api_key:
        logger.warning("GOOGLE_API_KEY environment variable not set. Workflow planning is disabled.")
        return None

    try:
        planner_llm = ChatGoogleGenerativeAI(
            model=PLANNER_MODEL,
            temperature=PLANNER_TEMPERATURE,
            google_api_key=google_api_key,
        )
    except Exception as e:
        logger.error(f"Failed to initialize Google Gemini planner LLM: {e}", exc_info=True)
        return None

    logger.info(f"Planner LLM ({PLANNER_MODEL}) initialized successfully.")
    return planner_llm
