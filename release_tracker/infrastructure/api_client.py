"""HTTP implementation of the ReleaseProvider port."""

import json
import re
from typing import Any, Dict

import httpx
from pydantic import ValidationError

from ..application.domain import Market, ReleaseDataset, ReleaseProvider, WeekRange
from ..application.exceptions import ProviderError, ResponseFormatError
from ..application.week_calendar import format_date, format_range

from .api_models import ChatCompletionResponse
from .base_client import BaseClient

_COMPLETIONS_ENDPOINT = "/chat/completions"

_SYSTEM_MESSAGE = (
    "You are an entertainment data analyst tracking OTT and theatrical "
    "releases. Always respond with valid JSON only, no markdown formatting "
    "or code blocks."
)

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def parse_json_object(content: str) -> ReleaseDataset:
    """
    Extracts the JSON object from a model's answer.

    Tries the whole content first, then a fenced code block, then the widest
    brace-delimited span.

    Raises:
        ResponseFormatError: If no JSON object can be recovered.
    """

    candidates = [content]
    fenced = _FENCED_JSON.search(content)
    if fenced:
        candidates.append(fenced.group(1))
    braces = _JSON_OBJECT.search(content)
    if braces:
        candidates.append(braces.group(0))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise ResponseFormatError("Could not parse API response as a JSON object")


class PerplexityReleaseProvider(BaseClient, ReleaseProvider):
    """A release provider backed by the Perplexity chat completions API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        token: str,
        base_url: str,
        model: str = "sonar",
        timeout: float = 120,
        temperature: float = 0.1,
        max_tokens: int = 8000,
    ):
        """Initializes the provider adapter."""
        super().__init__(client, token, base_url)
        self.endpoint = self._url(_COMPLETIONS_ENDPOINT)
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _build_prompt(self, market: Market, week_range: WeekRange) -> str:
        platforms = ", ".join(market.platforms) or "all major streaming platforms"
        return (
            f"List the verified OTT streaming and theatrical releases in "
            f"{market.name} for {format_range(week_range)} "
            f"({format_date(week_range.start)} to {format_date(week_range.end)}). "
            f"Platforms to cover: {platforms}.\n"
            f'Return a JSON object {{"platforms": [{{"id", "name", "releases": '
            f'[{{"title", "release_date", "type", "genre", "language", '
            f'"description"}}]}}]}}, including every platform even when it '
            f"has no releases."
        )

    def _build_body(self, market: Market, week_range: WeekRange) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": _SYSTEM_MESSAGE},
                {"role": "user", "content": self._build_prompt(market, week_range)},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "web_search_options": {"search_context_size": "high"},
        }

    async def _execute_request(self, body: Dict[str, Any]) -> Any:
        """Executes the raw HTTP POST request."""
        response = await self.client.post(
            self.endpoint,
            json=body,
            headers=self._auth_headers(),
            timeout=self.timeout,
        )
        if response.is_error:
            raise ProviderError(
                f"Provider returned HTTP {response.status_code}: "
                f"{response.text[:200]}",
                status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ResponseFormatError(f"Response body is not JSON: {e}") from e

    def _validate_and_extract(self, json_data: Any) -> ReleaseDataset:
        """Validates the raw response and extracts the release dataset."""
        try:
            validated_response = ChatCompletionResponse.model_validate(json_data)
        except ValidationError as e:
            raise ResponseFormatError(f"Unexpected response shape: {e}") from e

        content = validated_response.content
        if not content:
            raise ResponseFormatError("No content in API response")

        return parse_json_object(content)

    async def fetch_releases(
        self, market: Market, week_range: WeekRange
    ) -> ReleaseDataset:
        """
        Fetches one market's releases for one week.

        This method serves as the public contract fulfillment for the
        ReleaseProvider port. It makes a single attempt; retries belong to
        the retry policy.

        Args:
            market: The market to query.
            week_range: The week to query.

        Returns:
            The parsed release dataset.

        Raises:
            ProviderError: If the API answers with an error status.
            ResponseFormatError: If the answer cannot be parsed.
            httpx.TransportError: On timeouts and network failures.
        """

        self.logger.info(
            f"Fetching releases for {market.name}, {format_range(week_range)}..."
        )
        raw_data = await self._execute_request(self._build_body(market, week_range))
        return self._validate_and_extract(raw_data)
