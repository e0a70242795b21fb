from __future__ import annotations
import os
from urllib.parse import quote
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    anthropic_api_key: str = ""
    anthropic_model: str = "claude-opus-4-6"
    extraction_max_tokens: int = 8192

    supabase_url: str = ""
    supabase_key: str = ""
    storage_bucket: str = "recipe-images"
    signed_url_ttl: int = 120

    primary_relay: str = "https://corsproxy.io/?url={url}"
    fallback_relay: str = "https://api.allorigins.win/get?url={url}"
    relay_timeout: float = 30.0
    max_page_chars: int = 50_000

    link_retries: int = 1

    system_prompt: str = (
        "You are a recipe assistant that turns cookbook photos and web page text "
        "into structured recipes.\n"
        "Return ONLY a JSON object with these keys:\n"
        "  title: string\n"
        "  description: string (short summary)\n"
        "  ingredients: array of {amount: number|null, unit: string|null, name: string, "
        "group_name: string|null}\n"
        "  instructions: array of {step_number: number, description: string}\n"
        "  prep_time: string|null\n"
        "  cook_time: string|null\n"
        "  servings: number|null\n"
        "  difficulty: string|null\n"
        "  cuisine: string|null\n"
        "  ai_tags: array of strings\n"
        "  introduction: string|null\n\n"
        "Rules:\n"
        "1. Stay faithful to the source. Do not invent anything.\n"
        "2. Only fill in metadata (times, servings) when it is visible or certain.\n"
        "3. Split ingredients cleanly (500g flour -> 500, g, flour).\n"
        "4. If the input contains no recipe, return an empty object {}."
    )

    @field_validator("anthropic_api_key", mode="after")
    @classmethod
    def require_api_key(cls, v: str) -> str:
        env_val = os.environ.get("ANTHROPIC_API_KEY", v)
        if not env_val:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")
        return env_val

    def relay_url(self, template: str, url: str) -> str:
        return template.format(url=quote(url, safe=""))
