from __future__ import annotations
import logging
from typing import Any
import httpx
from postgrest.exceptions import APIError
from supabase import Client
from forkify_ingest.models import Ingredient, PersistedRecipe, Provenance, RecipeFields, Step, Tool

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    pass


def _describe(e: Exception) -> str:
    return getattr(e, "message", None) or str(e)


class RecipeRepository:
    """Recipe rows and their child tables in the Supabase database.

    A recipe is written as one `recipes` row followed by its ingredients,
    steps and tools. The child inserts are separate statements: if the
    ingredients or steps fail, the recipe row is deleted again so no half
    recipe is left behind. Tools are optional and only logged on failure.
    """

    def __init__(self, client: Client):
        self.client = client

    def _execute(self, action: str, query) -> list[dict[str, Any]]:
        try:
            return query.execute().data or []
        except (APIError, httpx.HTTPError) as e:
            raise PersistenceError(f"{action} failed: {_describe(e)}") from e

    def _rollback(self, recipe_id: str) -> None:
        try:
            self._execute("Recipe cleanup", self.client.table("recipes").delete().eq("id", recipe_id))
        except PersistenceError:
            logger.error("Could not remove incomplete recipe %s", recipe_id)

    def create_recipe(self, user_id: str, fields: RecipeFields, provenance: Provenance) -> PersistedRecipe:
        rows = self._execute(
            "Recipe insert",
            self.client.table("recipes").insert(
                {
                    "user_id": user_id,
                    "title": fields.title,
                    "subtitle": fields.subtitle,
                    "introduction": fields.introduction,
                    "description": fields.description,
                    "servings": fields.servings,
                    "prep_time": fields.prep_time,
                    "cook_time": fields.cook_time,
                    "difficulty": fields.difficulty,
                    "cuisine": fields.cuisine,
                    "author": fields.author,
                    "cookbook_name": fields.cookbook_name,
                    "isbn": fields.isbn,
                    "source_url": provenance.source_url,
                    "source_type": provenance.source_type,
                    "source_language": fields.source_language,
                    "ai_tags": fields.ai_tags,
                    "extraction_history": provenance.usage.model_dump() if provenance.usage else None,
                    "raw_extracted_data": provenance.raw_extracted_data,
                    "image_url": None,
                    "original_image_url": provenance.original_image_url,
                    "extra_data": fields.extra_data,
                    "verified": False,
                }
            ),
        )
        if not rows:
            raise PersistenceError("Recipe insert failed: no row returned")
        recipe = rows[0]
        recipe_id = recipe["id"]

        try:
            if fields.ingredients:
                self._execute(
                    "Ingredients insert",
                    self.client.table("recipe_ingredients").insert(
                        [
                            {
                                "recipe_id": recipe_id,
                                "name": ing.name,
                                "quantity": ing.amount,
                                "unit": ing.unit,
                                "group_name": ing.group_name,
                                "notes": ing.notes,
                                "order_index": ing.order_index,
                            }
                            for ing in fields.ingredients
                        ]
                    ),
                )
            if fields.instructions:
                self._execute(
                    "Steps insert",
                    self.client.table("recipe_steps").insert(
                        [
                            {
                                "recipe_id": recipe_id,
                                "step_number": step.step_number,
                                "description": step.description,
                                "extra": step.extra,
                            }
                            for step in fields.instructions
                        ]
                    ),
                )
        except PersistenceError:
            self._rollback(recipe_id)
            raise

        if fields.tools:
            try:
                self._execute(
                    "Tools insert",
                    self.client.table("recipe_tools").insert(
                        [{"recipe_id": recipe_id, "name": t.name, "notes": t.notes} for t in fields.tools]
                    ),
                )
            except PersistenceError as e:
                logger.warning("Recipe %s saved without tools: %s", recipe_id, e)

        self.log_activity(user_id, "create_recipe", f"New recipe created: {fields.title}", {"recipeId": recipe_id})
        return PersistedRecipe.model_validate(
            {
                **recipe,
                "ingredients": fields.ingredients,
                "instructions": fields.instructions,
                "tools": fields.tools,
            }
        )

    def link_to_collection(self, recipe_id: str, collection_id: str) -> None:
        self._execute(
            "Collection link insert",
            self.client.table("recipe_collections").insert(
                {"recipe_id": recipe_id, "collection_id": collection_id}
            ),
        )

    def fetch_recipe(self, recipe_id: str) -> PersistedRecipe:
        rows = self._execute("Recipe fetch", self.client.table("recipes").select("*").eq("id", recipe_id))
        if not rows:
            raise PersistenceError(f"Recipe '{recipe_id}' not found.")

        ingredients = self._execute(
            "Ingredients fetch",
            self.client.table("recipe_ingredients").select("*").eq("recipe_id", recipe_id).order("order_index"),
        )
        steps = self._execute(
            "Steps fetch",
            self.client.table("recipe_steps").select("*").eq("recipe_id", recipe_id).order("step_number"),
        )
        tools = self._execute(
            "Tools fetch", self.client.table("recipe_tools").select("*").eq("recipe_id", recipe_id)
        )
        return PersistedRecipe.model_validate(
            {
                **rows[0],
                "ingredients": [
                    Ingredient(
                        amount=row.get("quantity"),
                        unit=row.get("unit"),
                        name=row["name"],
                        group_name=row.get("group_name"),
                        notes=row.get("notes"),
                        order_index=row.get("order_index") or 0,
                    )
                    for row in ingredients
                ],
                "instructions": [
                    Step(step_number=row["step_number"], description=row["description"], extra=row.get("extra"))
                    for row in steps
                ],
                "tools": [Tool(name=row["name"], notes=row.get("notes")) for row in tools],
            }
        )

    def list_recipes(self, user_id: str) -> list[PersistedRecipe]:
        rows = self._execute(
            "Recipe list",
            self.client.table("recipes").select("*").eq("user_id", user_id).order("created_at", desc=True),
        )
        return [PersistedRecipe.model_validate(row) for row in rows]

    def update_recipe(self, recipe_id: str, changes: dict[str, Any]) -> PersistedRecipe:
        rows = self._execute(
            "Recipe update", self.client.table("recipes").update(changes).eq("id", recipe_id)
        )
        if not rows:
            raise PersistenceError(f"Recipe '{recipe_id}' not found.")
        return PersistedRecipe.model_validate(rows[0])

    def delete_recipe(self, recipe_id: str) -> None:
        self._execute("Recipe delete", self.client.table("recipes").delete().eq("id", recipe_id))

    def log_activity(self, user_id: str, kind: str, description: str, metadata: dict[str, Any]) -> None:
        try:
            self._execute(
                "Activity insert",
                self.client.table("user_activities").insert(
                    {"user_id": user_id, "type": kind, "description": description, "metadata": metadata}
                ),
            )
        except PersistenceError as e:
            logger.warning("Failed to log activity for %s: %s", user_id, e)
