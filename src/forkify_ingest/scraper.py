from __future__ import annotations
import json
import logging
import re
from fractions import Fraction
from typing import Any, Literal, Optional
from urllib.parse import urljoin
from bs4 import BeautifulSoup, Comment
from pydantic import BaseModel
from recipe_scrapers import scrape_html
from recipe_scrapers._exceptions import WebsiteNotImplementedError, NoSchemaFoundInWildMode
from forkify_ingest.models import Ingredient, RecipeFields, Step

logger = logging.getLogger(__name__)

MAX_IMAGES = 12

KNOWN_UNITS = {
    "g", "gram", "grams", "kg", "mg", "ml", "l", "dl", "cl", "liter", "liters", "litre", "litres",
    "tsp", "teaspoon", "teaspoons", "tbsp", "tablespoon", "tablespoons", "cup", "cups",
    "oz", "ounce", "ounces", "lb", "lbs", "pound", "pounds", "pinch", "clove", "cloves",
    "can", "cans", "slice", "slices", "bunch", "handful", "sprig", "sprigs", "stick", "sticks",
}

_INGREDIENT_RE = re.compile(r"^(?P<amount>\d+(?:[.,]\d+)?(?:/\d+)?)\s+(?P<rest>.+)$")
_NOISE_RE = re.compile(
    r"(?:^|[-_\s])(?:ad|ads|advert\w*|sponsor\w*|tracking|cookie\w*|popup|modal|sidebar|comments?|share|social)(?:$|[-_\s])",
    re.IGNORECASE,
)
_SKIPPED_IMAGE_HINTS = (
    "data:image", "pixel", "tracking", "avatar", "logo", "icon", "share", "button",
    "ad-", "sponsor", "gravatar", "emoji", ".svg", ".gif",
)
_SIZE_HINT_RE = re.compile(r"/\d+x\d+\.")


class ScrapeError(Exception):
    pass


class PreparedPage(BaseModel):
    kind: Literal["schema", "text"]
    recipe: Optional[RecipeFields] = None
    text: Optional[str] = None
    schema_data: Optional[dict[str, Any]] = None
    images: list[str] = []


def parse_amount(raw: str) -> Optional[float]:
    try:
        return float(Fraction(raw.replace(",", ".")))
    except (ValueError, ZeroDivisionError):
        return None


def parse_ingredient(text: str, index: int = 0) -> Ingredient:
    """Split '2 cups flour' into amount, unit and name; anything else is kept as the name."""
    text = text.strip()
    match = _INGREDIENT_RE.match(text)
    if not match:
        return Ingredient(name=text, order_index=index)

    amount = parse_amount(match.group("amount"))
    rest = match.group("rest")
    unit = None
    head, _, tail = rest.partition(" ")
    if tail and head.lower().rstrip(".") in KNOWN_UNITS:
        unit, rest = head.rstrip("."), tail
    return Ingredient(amount=amount, unit=unit, name=rest.strip(), order_index=index)


def _format_minutes(minutes: Any) -> Optional[str]:
    if not isinstance(minutes, int) or minutes <= 0:
        return None
    hours, mins = divmod(minutes, 60)
    parts = []
    if hours:
        parts.append(f"{hours} h")
    if mins:
        parts.append(f"{mins} min")
    return " ".join(parts)


def _parse_servings(yields: Any) -> Optional[int]:
    if isinstance(yields, int):
        return yields
    match = re.search(r"\d+", str(yields or ""))
    return int(match.group(0)) if match else None


def _as_tags(keywords: Any) -> list[str]:
    if not keywords:
        return []
    if isinstance(keywords, str):
        keywords = keywords.split(",")
    return [k.strip() for k in keywords if str(k).strip()]


def parse_schema(html: str, url: str) -> Optional[dict[str, Any]]:
    """Return the schema.org recipe fields found in the page, or None when it carries none."""
    try:
        scraper = scrape_html(html, org_url=url, supported_only=False)
        data = scraper.to_json()
    except (WebsiteNotImplementedError, NoSchemaFoundInWildMode):
        return None
    except Exception as e:
        raise ScrapeError(f"Unexpected error reading recipe markup from {url}: {e}") from e
    return data or None


def schema_to_recipe(data: dict[str, Any]) -> Optional[RecipeFields]:
    title = data.get("title")
    if not title:
        return None

    instructions = data.get("instructions_list")
    if not instructions and data.get("instructions"):
        instructions = str(data["instructions"]).split("\n")
    steps = [
        Step(step_number=i, description=text.strip())
        for i, text in enumerate((s for s in instructions or [] if s and s.strip()), start=1)
    ]

    extra_data: dict[str, Any] = {}
    total = _format_minutes(data.get("total_time"))
    if total:
        extra_data["total_time"] = total

    author = data.get("author")
    return RecipeFields(
        title=title,
        description=data.get("description") or "",
        ingredients=[parse_ingredient(text, i) for i, text in enumerate(data.get("ingredients") or [])],
        instructions=steps,
        servings=_parse_servings(data.get("yields")),
        prep_time=_format_minutes(data.get("prep_time")),
        cook_time=_format_minutes(data.get("cook_time")),
        cuisine=data.get("cuisine") or None,
        author=author if isinstance(author, str) and author else None,
        ai_tags=_as_tags(data.get("keywords")),
        extra_data=extra_data,
    )


def clean_html_for_ai(html: str) -> str:
    """Reduce a page to the readable text of its main content."""
    soup = BeautifulSoup(html, "html.parser")
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    for tag in soup.find_all(["script", "style", "noscript", "header", "footer", "nav", "aside"]):
        tag.decompose()
    for tag in soup.find_all(True):
        if tag.decomposed or tag.attrs is None:
            continue
        marker = " ".join(tag.get("class") or []) + " " + (tag.get("id") or "")
        if tag.name == "div" and _NOISE_RE.search(marker):
            tag.decompose()

    main = (
        soup.find("main")
        or soup.find("article")
        or soup.find("div", class_=re.compile(r"recipe|content|post", re.IGNORECASE))
        or soup
    )
    text = main.get_text("\n")
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    text = re.sub(r"\s*\n\s*(\n\s*)+", "\n\n", text)
    return text.strip()


def find_images(html: str, base_url: str, schema_image: Optional[str] = None) -> list[str]:
    """Collect candidate recipe photos: schema image, og:image, then content images."""
    images: list[str] = []

    def _add(src: Optional[str]) -> None:
        if not src:
            return
        src = urljoin(base_url, src.strip())
        if src.startswith("http") and src not in images:
            images.append(src)

    _add(schema_image)
    soup = BeautifulSoup(html, "html.parser")
    og = soup.find("meta", attrs={"property": "og:image"})
    if og:
        _add(og.get("content"))
    for img in soup.find_all("img", src=True):
        src = img["src"]
        lowered = src.lower()
        if any(hint in lowered for hint in _SKIPPED_IMAGE_HINTS) or _SIZE_HINT_RE.search(lowered):
            continue
        _add(src)
    return images[:MAX_IMAGES]


def prepare_page(html: str, url: str, max_chars: int = 50_000) -> PreparedPage:
    """Decide how a retrieved page becomes a recipe.

    Complete schema.org markup (title, ingredients and instructions) is used
    directly. Partial markup is handed to the AI as context alongside the page
    text; pages without markup go to the AI as cleaned text only.
    """
    try:
        schema_data = parse_schema(html, url)
    except ScrapeError as e:
        logger.warning("%s; falling back to page text", e)
        schema_data = None

    schema_image = schema_data.get("image") if schema_data else None
    images = find_images(html, url, schema_image if isinstance(schema_image, str) else None)

    if schema_data:
        recipe = schema_to_recipe(schema_data)
        if recipe and recipe.ingredients and recipe.instructions:
            logger.debug("Using schema.org markup for %s", url)
            return PreparedPage(kind="schema", recipe=recipe, schema_data=schema_data, images=images)

        logger.debug("Schema.org markup for %s is incomplete; passing it to extraction", url)
        text = (
            "STRUCTURED DATA FOUND:\n"
            f"{json.dumps(schema_data, indent=2, default=str)}\n\n"
            f"PAGE CONTENT:\n{clean_html_for_ai(html)[:max_chars]}"
        )
        return PreparedPage(kind="text", text=text, schema_data=schema_data, images=images)

    return PreparedPage(kind="text", text=clean_html_for_ai(html)[:max_chars], images=images)
