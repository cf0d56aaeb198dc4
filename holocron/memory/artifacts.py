from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import urlparse

import httpx

from holocron.schemas.results import StoryResult

logger = logging.getLogger(__name__)


@dataclass
class SavedStory:
    story_path: Path
    image_path: Optional[Path] = None


class ArtifactsStore:
    """Writes finished stories, and their cover image, into an output directory."""

    def __init__(self, directory: str | Path = "output", client: Optional[httpx.AsyncClient] = None) -> None:
        self.directory = Path(directory)
        self._client = client

    async def save_story(self, story: StoryResult) -> SavedStory:
        self.directory.mkdir(parents=True, exist_ok=True)

        image_path = None
        if story.image_url:
            image_path = await self._download(story.image_url)

        lines = [f"# {story.title}", "", story.body, ""]
        if image_path is not None:
            lines += [f"![Image]({image_path.name})", ""]
        story_path = self.directory / f"{_safe_filename(story.title)}.md"
        story_path.write_text("\n".join(lines), encoding="utf-8")
        logger.info("Story %r saved to %s", story.title, story_path)
        return SavedStory(story_path=story_path, image_path=image_path)

    async def _download(self, url: str) -> Path:
        if self._client is not None:
            response = await self._client.get(url)
        else:
            async with httpx.AsyncClient(timeout=60.0, follow_redirects=True) as client:
                response = await client.get(url)
        response.raise_for_status()
        suffix = PurePosixPath(urlparse(url).path).suffix or ".png"
        path = self.directory / f"{uuid.uuid4()}{suffix}"
        path.write_bytes(response.content)
        return path


def _safe_filename(title: str) -> str:
    return re.sub(r'[<>:"/\\|?*\x00-\x1f]', "_", title).strip() or "story"
