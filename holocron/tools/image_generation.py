from __future__ import annotations

import json
import logging
import re
from typing import Callable, Dict, Optional

import openai
from openai import AsyncOpenAI

from holocron.tools.base import ToolDescriptor, function_tool, object_schema
from holocron.utils.llm_clients import is_content_policy_error

logger = logging.getLogger(__name__)

Sanitizer = Callable[[str], str]

IMAGE_PROMPT = """Generate a cartoon style image based on the following description or story:
"{description}"

The image should be in the style of a parody of the original Star Wars trilogy, looking like a movie from the 1970s or 1980s.
Make the image high quality, hyper real, with vivid colors and a cinematic feel from an animated movie.

This image is designed to be the used on front cover of a book that matches the given description or story.
"""

CONTENT_POLICY_GUIDANCE = (
    "A content error occurred while generating the image. "
    "Please retry this tool with an adjusted prompt, such as changing named characters to very detailed "
    "descriptions of the characters. Include details like race, gender, age, dress style, distinguishing features "
    "(e.g., 'an old, small, green Jedi Master with pointy ears, a tuft of white hair and wrinkles' instead of 'Yoda'). "
    "If the description contains anything sexual or violent, replace with a more PG version of the description."
)


class CharacterSanitizer:
    """Rewrites named characters into the visual descriptions given for them."""

    def __init__(self, descriptions: Dict[str, str]) -> None:
        self.descriptions = {name.lower(): text for name, text in descriptions.items()}
        names = sorted(descriptions, key=len, reverse=True)
        self._pattern = re.compile(r"\b(" + "|".join(re.escape(n) for n in names) + r")\b", re.IGNORECASE) if names else None

    def __call__(self, description: str) -> str:
        if self._pattern is None:
            return description
        return self._pattern.sub(lambda m: self.descriptions[m.group(0).lower()], description)


class ImageGenerator:
    """Cover art generation; content-policy rejections are retried with a sanitized description."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI],
        model: str = "dall-e-3",
        size: str = "1024x1024",
        sanitizer: Optional[Sanitizer] = None,
        max_retries: int = 1,
    ) -> None:
        self.client = client
        self.model = model
        self.size = size
        self.sanitizer = sanitizer
        self.max_retries = max_retries

    async def __call__(self, description: str) -> str:
        if not description or not description.strip():
            return json.dumps({"error": "Description cannot be empty."})
        if self.client is None:
            return json.dumps({"error": "Image generation is not configured."})

        attempt = 0
        while True:
            try:
                resp = await self.client.images.generate(
                    model=self.model,
                    prompt=IMAGE_PROMPT.format(description=description),
                    size=self.size,
                    n=1,
                )
                return json.dumps({"imageUrl": resp.data[0].url})
            except openai.BadRequestError as exc:
                if not is_content_policy_error(exc):
                    raise
                if self.sanitizer is None or attempt >= self.max_retries:
                    logger.warning("Image prompt rejected by content policy; asking the agent to rewrite it")
                    return json.dumps({"error": CONTENT_POLICY_GUIDANCE})
                attempt += 1
                sanitized = self.sanitizer(description)
                if sanitized == description:
                    return json.dumps({"error": CONTENT_POLICY_GUIDANCE})
                logger.warning("Image prompt rejected by content policy; retrying sanitized (%d/%d)", attempt, self.max_retries)
                description = sanitized

    def descriptor(self) -> ToolDescriptor:
        return function_tool(
            name="GenerateStarWarsImageTool",
            description=(
                "A tool for generating images based on Star Wars. This tool takes a description "
                "of the required image and returns a URL to the generated image."
            ),
            parameters=object_schema(
                {"description": {"type": "string", "description": "The description of the Star Wars image to generate."}},
                required=["description"],
            ),
        )(self)
