import asyncio
import base64
from enum import Enum
from typing import Any, Self

import httpx

from royal_recipes.config import GeminiConfig
from royal_recipes.errors import RateLimited, UpstreamFailure


def gemini_client_factory(config: GeminiConfig | None = None) -> httpx.AsyncClient:
    config = GeminiConfig() if config is None else config
    return httpx.AsyncClient(
        base_url=config.base_url,
        headers={
            "x-goog-api-key": config.api_key or "",
            "Content-Type": "application/json",
        },
        timeout=config.timeout,
    )


class Modality(Enum):
    text = "TEXT"
    image = "IMAGE"
    audio = "AUDIO"


class InlineData:
    def __init__(self, *, mime_type: str, data: str) -> None:
        self.mime_type = mime_type
        self.data = data

    @property
    def decoded(self) -> bytes:
        return base64.b64decode(self.data)

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class Part:
    def __init__(
        self,
        *,
        text: str | None = None,
        inline_data: InlineData | None = None,
    ) -> None:
        self.text = text
        self.inline_data = inline_data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        inline = data.get("inlineData")
        return cls(
            text=data.get("text"),
            inline_data=(
                None
                if inline is None
                else InlineData(
                    mime_type=inline.get("mimeType", "application/octet-stream"),
                    data=inline.get("data", ""),
                )
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        if self.inline_data is not None:
            return {
                "inlineData": {
                    "mimeType": self.inline_data.mime_type,
                    "data": self.inline_data.data,
                }
            }
        return {"text": self.text or ""}


class GenerateContentResponse:
    """Only the first candidate is ever looked at."""

    def __init__(self, parts: list[Part]) -> None:
        self.parts = parts

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        candidates = data.get("candidates") or []
        if not candidates:
            return cls([])
        content = candidates[0].get("content") or {}
        return cls([Part.from_dict(p) for p in content.get("parts") or []])

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if p.text)

    @property
    def inline_data(self) -> list[InlineData]:
        return [p.inline_data for p in self.parts if p.inline_data is not None]


class GeminiClient:
    def __init__(
        self,
        *,
        config: GeminiConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = GeminiConfig() if config is None else config
        self._client = gemini_client_factory(self.config) if client is None else client

    async def generate_content(
        self,
        *,
        model: str,
        parts: str | list[Part],
        generation_config: dict[str, Any] | None = None,
    ) -> GenerateContentResponse:
        parts = [Part(text=parts)] if isinstance(parts, str) else parts
        data: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [p.to_dict() for p in parts]}],
        }
        if generation_config:
            data["generationConfig"] = generation_config

        try:
            resp = await self._client.post(f"models/{model}:generateContent", json=data)
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Problem reaching {model}. {e!r}") from e

        if resp.status_code == 429:
            raise RateLimited(
                f"Rate limited by {model} (429). {resp.text}", status=resp.status_code
            )
        if resp.is_error:
            raise UpstreamFailure(
                f"Problem generating content with {model}. {resp.text}",
                status=resp.status_code,
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise UpstreamFailure(f"Non-json response from {model}.") from e
        if "error" in body:
            raise UpstreamFailure(f"Problem generating content with {model}. {body}")
        return GenerateContentResponse.from_dict(body)

    async def close(self) -> None:
        await self._client.aclose()


async def main() -> None:
    client = GeminiClient()
    config = client.config
    while True:
        msg = input("Qu: ")
        if msg in ["q", "Q"]:
            break
        resp = await client.generate_content(model=config.text_model, parts=msg)
        print(resp.text)
        print()
    await client.close()


if __name__ == "__main__":
    asyncio.run(main())
