"""Batch ingestion of recipe sources.

Every submitted image or URL becomes a QueueItem in the store before any
network work starts. Each item then runs its own asyncio task through
acquisition (upload or relay fetch), extraction and persistence, and ends in
``done`` or ``error``. A failure in one item never touches another, and no
exception escapes a task: every failure becomes the item's error message.
"""
from __future__ import annotations
import asyncio
import logging
from pathlib import PurePath
from typing import Iterable, Optional
import httpx
from forkify_ingest.config import Config
from forkify_ingest.extractor import ExtractionError, NoRecipeFoundError, RecipeExtractor
from forkify_ingest.fetcher import FetchError, fetch_page
from forkify_ingest.models import (
    SCHEMA_MARKER,
    ExtractionUsage,
    ImageSource,
    PersistedRef,
    Provenance,
    QueueContext,
    QueueItem,
    RecipeFields,
)
from forkify_ingest.queue import QueueStore
from forkify_ingest.repository import PersistenceError, RecipeRepository
from forkify_ingest.scraper import ScrapeError, prepare_page
from forkify_ingest.storage import ImageStore, UploadError

logger = logging.getLogger(__name__)


class IngestionQueue:
    def __init__(
        self,
        config: Config,
        images: ImageStore,
        repository: RecipeRepository,
        extractor: RecipeExtractor | None = None,
        store: QueueStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self.images = images
        self.repository = repository
        self.extractor = extractor or RecipeExtractor(config)
        self.store = store or QueueStore()
        self.http_client = http_client
        self._tasks: set[asyncio.Task] = set()
        self._sources: dict[str, ImageSource] = {}

    def submit_images(
        self,
        sources: Iterable[ImageSource],
        user_id: str,
        context: QueueContext | None = None,
    ) -> list[QueueItem]:
        """Register one processing item per image, then start their pipelines.

        Must be called from a running event loop.
        """
        sources = list(sources)
        if not sources:
            raise ValueError("No images to upload.")
        empty = [s.filename for s in sources if not s.data]
        if empty:
            raise ValueError(f"Empty image file(s): {', '.join(empty)}")

        items = []
        for source in sources:
            item = QueueItem.pending(
                "image",
                source=source.filename,
                title=PurePath(source.filename).stem or source.filename,
                context=context,
                preview_url=source.path.resolve().as_uri() if source.path else None,
            )
            self.store.add(item)
            self._sources[item.id] = source
            items.append(item)

        for item in items:
            self._start(self._process_image(item.id, user_id))
        return items

    def submit_url(self, url: str, user_id: str, context: QueueContext | None = None) -> QueueItem:
        """Register one processing item for a recipe URL, then start its pipeline.

        The URL is not validated here; a malformed URL fails during retrieval.
        """
        url = url.strip()
        if not url:
            raise ValueError("Recipe URL must not be empty.")

        item = self.store.add(QueueItem.pending("url", source=url, title=url, context=context))
        self._start(self._process_url(item.id, user_id))
        return item

    def delete(self, item_id: str) -> Optional[QueueItem]:
        """Remove an item from the queue. Work already in flight keeps running; its results are dropped."""
        self._sources.pop(item_id, None)
        return self.store.remove(item_id)

    async def drain(self) -> None:
        """Wait until every submitted item has finished its pipeline."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _start(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process_image(self, item_id: str, user_id: str) -> None:
        source = self._sources.pop(item_id, None)
        if source is None:
            return
        try:
            stored = await asyncio.to_thread(self.images.upload, source, user_id)
        except UploadError as e:
            self._fail(item_id, f"Upload failed: {e}")
            return
        except Exception as e:
            self._crash(item_id, e)
            return
        self.store.update(item_id, preview_url=stored.public_url)

        try:
            fields, usage, raw = await self.extractor.from_image(stored.signed_url)
        except NoRecipeFoundError as e:
            self._fail(item_id, f"No recipe found in {source.filename}. {e}")
            return
        except ExtractionError as e:
            self._fail(item_id, f"Extraction failed: {e}")
            return
        except Exception as e:
            self._crash(item_id, e)
            return

        provenance = Provenance(
            source_type="image",
            original_image_url=stored.public_url,
            usage=usage,
            raw_extracted_data=raw,
        )
        await self._persist(item_id, user_id, fields, usage, provenance)

    async def _process_url(self, item_id: str, user_id: str) -> None:
        item = self.store.get(item_id)
        if item is None:
            return
        url = item.source

        try:
            html = await fetch_page(url, self.config, client=self.http_client)
        except FetchError as e:
            self._fail(item_id, str(e))
            return
        except Exception as e:
            self._crash(item_id, e)
            return

        try:
            page = prepare_page(html, url, max_chars=self.config.max_page_chars)
            if page.images:
                self.store.update(item_id, preview_url=page.images[0])

            if page.kind == "schema":
                fields = page.recipe
                usage = ExtractionUsage(model=SCHEMA_MARKER)
                raw = page.schema_data
            else:
                fields, usage, raw = await self.extractor.from_text(page.text)
        except NoRecipeFoundError as e:
            self._fail(item_id, f"No recipe found at {url}. {e}")
            return
        except (ExtractionError, ScrapeError) as e:
            self._fail(item_id, f"Extraction failed: {e}")
            return
        except Exception as e:
            self._crash(item_id, e)
            return

        provenance = Provenance(
            source_type="url",
            source_url=url,
            original_image_url=page.images[0] if page.images else None,
            usage=usage,
            raw_extracted_data=raw,
        )
        await self._persist(item_id, user_id, fields, usage, provenance)

    async def _persist(
        self,
        item_id: str,
        user_id: str,
        fields: RecipeFields,
        usage: ExtractionUsage,
        provenance: Provenance,
    ) -> None:
        queued = self.store.update(item_id, title=fields.title, extracted_fields=fields, usage=usage)
        if queued is None:
            return

        try:
            record = await asyncio.to_thread(self.repository.create_recipe, user_id, fields, provenance)
        except PersistenceError as e:
            self._fail(item_id, f"Could not save recipe: {e}")
            return
        except Exception as e:
            self._crash(item_id, e)
            return

        self.store.complete(item_id, ref=PersistedRef(record_id=record.id), title=record.title)
        logger.info("Saved recipe %r as %s", record.title, record.id)

        collection_id = queued.context.collection_id
        if collection_id:
            await self._link(item_id, record.id, collection_id)

    async def _link(self, item_id: str, recipe_id: str, collection_id: str) -> None:
        """Second write phase: attach the saved recipe to its collection, retrying before giving up."""
        attempts = self.config.link_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                await asyncio.to_thread(self.repository.link_to_collection, recipe_id, collection_id)
                return
            except Exception as e:
                logger.warning(
                    "Linking recipe %s to collection %s failed (attempt %d/%d): %s",
                    recipe_id, collection_id, attempt, attempts, e,
                )
        self.store.update(
            item_id,
            warning=f"Recipe saved, but it could not be added to collection {collection_id}.",
        )

    def _fail(self, item_id: str, message: str) -> None:
        logger.warning("Ingestion of %s failed: %s", item_id, message)
        self.store.fail(item_id, message)

    def _crash(self, item_id: str, error: Exception) -> None:
        logger.exception("Unexpected error while ingesting %s", item_id, exc_info=error)
        self.store.fail(item_id, f"Unexpected error: {error}")
