from __future__ import annotations
import json
import logging
import re
import time
from typing import Any, Optional
import anthropic
from forkify_ingest.config import Config
from forkify_ingest.models import ExtractionUsage, Ingredient, RecipeFields, Step, Tool
from forkify_ingest.scraper import parse_amount, parse_ingredient

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    pass


class NoRecipeFoundError(ExtractionError):
    pass


def _extract_json(text: str) -> str:
    """Extract JSON object from text that may contain extra prose."""
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if match:
        return match.group(0)
    return text


def _first(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _amount(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return parse_amount(str(value).strip())


def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, int):
        return value
    match = re.search(r"\d+", str(value or ""))
    return int(match.group(0)) if match else None


def _text(value: Any) -> Optional[str]:
    """Coerce a loosely typed scalar (number, list of names, person object) to text."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dict):
        value = _first(value, "name", "text", "value")
        return _text(value)
    if isinstance(value, (list, tuple)):
        parts = [t for t in (_text(v) for v in value) if t]
        return ", ".join(parts) or None
    text = str(value).strip()
    return text or None


def _entries(value: Any, separators: str) -> list[Any]:
    """List entries of a recipe section; a bare string is split, anything unusable is dropped."""
    if isinstance(value, str):
        value = re.split(separators, value)
    elif isinstance(value, dict):
        value = [value]
    elif not isinstance(value, (list, tuple)):
        return []
    return [v.strip() if isinstance(v, str) else v for v in value if isinstance(v, (str, dict)) and v]


def normalize_recipe(raw: dict[str, Any]) -> RecipeFields:
    """Turn extraction output into RecipeFields, tolerating older and looser key names."""
    title = _text(_first(raw, "title", "name"))
    if not title:
        raise NoRecipeFoundError("No recipe found: the extraction result has no title.")

    ingredients = []
    for idx, ing in enumerate(_entries(raw.get("ingredients"), r"[\n;,]")):
        if isinstance(ing, str):
            if ing:
                ingredients.append(parse_ingredient(ing, idx))
            continue
        name = _text(_first(ing, "name", "item"))
        if not name:
            continue
        order_index = _int_or_none(ing.get("order_index"))
        ingredients.append(
            Ingredient(
                amount=_amount(_first(ing, "amount", "quantity")),
                unit=_text(ing.get("unit")),
                name=name,
                group_name=_text(_first(ing, "group_name", "group")),
                notes=_text(ing.get("notes")),
                order_index=idx if order_index is None else order_index,
            )
        )

    instructions = []
    for idx, step in enumerate(_entries(raw.get("instructions"), r"\n"), start=1):
        if isinstance(step, str):
            instructions.append(Step(step_number=idx, description=step))
            continue
        extra = step.get("extra")
        instructions.append(
            Step(
                step_number=_int_or_none(step.get("step_number")) or idx,
                description=_text(_first(step, "description", "text")) or "",
                extra=extra if isinstance(extra, dict) and extra else None,
            )
        )

    tools = []
    for t in _entries(raw.get("tools"), r"[\n,]"):
        name = t if isinstance(t, str) else _text(t.get("name"))
        if name:
            tools.append(Tool(name=name, notes=None if isinstance(t, str) else _text(t.get("notes"))))

    extra_data = raw.get("extra_data")
    extra_data = dict(extra_data) if isinstance(extra_data, dict) else {}
    total_time = _text(_first(raw, "total_time", "totalTime", "total_duration"))
    if total_time:
        extra_data["total_time"] = total_time

    tags = _first(raw, "ai_tags", "tags", "keywords") or []
    if isinstance(tags, str):
        tags = tags.split(",")
    elif not isinstance(tags, (list, tuple)):
        tags = [tags]
    tags = [t for t in (_text(tag) for tag in tags) if t]

    return RecipeFields(
        title=title,
        subtitle=_text(_first(raw, "subtitle", "sub_title")),
        introduction=_text(_first(raw, "introduction", "intro")),
        description=_text(_first(raw, "description", "desc", "summary")) or "",
        ingredients=ingredients,
        instructions=[s for s in instructions if s.description],
        tools=tools,
        servings=_int_or_none(_first(raw, "servings", "portions", "yield")),
        prep_time=_text(_first(raw, "prep_time", "prepTime", "preparation_time")),
        cook_time=_text(_first(raw, "cook_time", "cookTime", "cooking_time")),
        difficulty=_text(_first(raw, "difficulty", "level", "skill_level")),
        cuisine=_text(_first(raw, "cuisine", "category")),
        author=_text(_first(raw, "author", "chef", "creator", "by")),
        cookbook_name=_text(_first(raw, "cookbook_name", "cookbook", "book", "source_book")),
        isbn=_text(_first(raw, "isbn", "ISBN")),
        source_language=_text(_first(raw, "source_language", "language", "lang")) or "en",
        ai_tags=tags,
        extra_data=extra_data,
    )


class RecipeExtractor:
    """Asks the Anthropic API to read a recipe from a photo or from page text."""

    def __init__(self, config: Config, client: anthropic.AsyncAnthropic | None = None):
        self.config = config
        self._client = client

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.config.anthropic_api_key)
        return self._client

    async def from_image(self, image_url: str) -> tuple[RecipeFields, ExtractionUsage, dict[str, Any]]:
        content = [
            {"type": "image", "source": {"type": "url", "url": image_url}},
            {"type": "text", "text": "Extract the recipe from this image."},
        ]
        return await self._extract(content)

    async def from_text(self, text: str) -> tuple[RecipeFields, ExtractionUsage, dict[str, Any]]:
        content = [{"type": "text", "text": f"Extract the recipe from this text:\n{text}"}]
        return await self._extract(content)

    async def _extract(self, content: list[dict[str, Any]]) -> tuple[RecipeFields, ExtractionUsage, dict[str, Any]]:
        started = time.perf_counter()
        try:
            response = await self.client.messages.create(
                model=self.config.anthropic_model,
                max_tokens=self.config.extraction_max_tokens,
                system=self.config.system_prompt,
                messages=[{"role": "user", "content": content}],
            )
        except anthropic.APIError as e:
            raise ExtractionError(f"Extraction service call failed: {e}") from e
        duration_ms = int((time.perf_counter() - started) * 1000)

        raw_text = response.content[0].text
        try:
            data = json.loads(_extract_json(raw_text))
        except (json.JSONDecodeError, AttributeError) as e:
            raise ExtractionError(
                f"Failed to parse extraction response as JSON: {e}\n\nRaw response:\n{raw_text}"
            ) from e

        if not isinstance(data, dict):
            raise ExtractionError("Extraction service returned no usable recipe data.")

        usage = ExtractionUsage(
            model=self.config.anthropic_model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            duration_ms=duration_ms,
        )
        logger.info(
            "Extracted recipe with %s (%d tokens, %d ms)", usage.model, usage.total_tokens, duration_ms
        )
        return normalize_recipe(data), usage, data
