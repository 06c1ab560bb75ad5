"""
Runtime settings loaded from the environment (.env supported)
"""
import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, validator

from app.utils.logging_config import get_logger

logger = get_logger(__name__)


class AgentSettings(BaseModel):
    """All tunables of the recruitment agent"""

    # Candidate directory
    user_api_url: Optional[str] = Field(default=None, description="Base URL of the users/offers API")
    results_api_url: Optional[str] = Field(default=None, description="Base URL of the evaluation results API")
    directory_timeout: float = Field(default=5.0, gt=0, description="Per-call timeout in seconds")
    directory_cache_ttl: float = Field(default=300.0, ge=0, description="Candidate cache window in seconds")
    candidate_list_cap: int = Field(default=60, ge=1)

    # Conversation memory
    context_ttl_seconds: float = Field(default=0.0, ge=0, description="Idle expiry, 0 keeps entries forever")

    # Matching
    default_country_code: str = Field(default="507")
    home_location: str = Field(default="panamá")

    # LLM
    intent_resolver: str = Field(default="llm", description="'llm' or 'rules'")
    llm_provider: str = Field(default="ollama", description="'ollama' or 'none'")
    ollama_base_url: str = Field(default="http://localhost:11434")
    llm_model: str = Field(default="llama3.1:8b")
    llm_timeout: float = Field(default=60.0, gt=0)

    # WhatsApp Business API
    whatsapp_access_token: Optional[str] = None
    whatsapp_phone_number_id: Optional[str] = None
    whatsapp_api_version: str = Field(default="v21.0")
    whatsapp_verify_token: Optional[str] = None
    whatsapp_timeout: float = Field(default=10.0, gt=0)
    reference_template_name: str = Field(default="referencia_laboral")
    reference_template_language: str = Field(default="es")

    # Storage
    data_dir: str = Field(default="./data")
    mongo_details: str = Field(default="mongodb://localhost:27017")
    db_name: str = Field(default="recruit_agent_db")

    @validator('default_country_code')
    def validate_country_code(cls, v):
        v = v.lstrip('+')
        if not v.isdigit() or not 1 <= len(v) <= 3:
            raise ValueError('default_country_code must be 1-3 digits')
        return v

    @validator('intent_resolver')
    def validate_intent_resolver(cls, v):
        if v not in ("llm", "rules"):
            raise ValueError("intent_resolver must be 'llm' or 'rules'")
        return v

    @validator('llm_provider')
    def validate_llm_provider(cls, v):
        if v not in ("ollama", "none"):
            raise ValueError("llm_provider must be 'ollama' or 'none'")
        return v


def load_settings() -> AgentSettings:
    """Build settings from environment variables, reading .env first"""
    load_dotenv()

    values = {}
    for name in AgentSettings.__fields__:
        raw = os.getenv(name.upper())
        if raw is not None and raw != "":
            values[name] = raw

    settings = AgentSettings(**values)
    logger.info(
        f"Settings loaded - resolver: {settings.intent_resolver}, llm: {settings.llm_provider}, "
        f"country code: +{settings.default_country_code}"
    )
    return settings


@lru_cache()
def get_settings() -> AgentSettings:
    return load_settings()
