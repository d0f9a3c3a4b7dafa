"""
LLM Client - Chat-completion access for the decision oracle.

OpenRouterClient talks to OpenRouter's OpenAI-compatible endpoint over
aiohttp. LocalModelClient reuses it for self-hosted servers that speak the
same protocol (ollama, vLLM, llama.cpp); create_llm_client() picks one from
OracleSettings.provider. Retryable failures (rate limits, 5xx, timeouts,
connection errors) are retried with exponential backoff; anything else
raises OracleRequestError immediately.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import aiohttp

from .config import OracleSettings
from .errors import ConfigError, ErrorCode, OracleRequestError, is_retryable, retry_delay

PROVIDER_BASE_URLS = {
	"openrouter": "https://openrouter.ai/api/v1",
	"ollama": "http://localhost:11434/v1",
	"vllm": "http://localhost:8000/v1",
	"llamacpp": "http://localhost:8080/v1",
}

# USD per 1K tokens (prompt, completion)
MODEL_COSTS: dict[str, tuple[float, float]] = {
	"anthropic/claude-opus-4-1": (0.015, 0.075),
	"anthropic/claude-3.5-sonnet": (0.003, 0.015),
	"anthropic/claude-3.5-haiku": (0.00025, 0.00125),
	"openai/gpt-4o": (0.005, 0.015),
	"openai/gpt-4o-mini": (0.00015, 0.0006),
	"deepseek/deepseek-v3": (0.00014, 0.00028),
}


@dataclass
class TokenUsage:
	"""Token accounting for one call or an accumulated run."""
	prompt_tokens: int = 0
	completion_tokens: int = 0
	total_tokens: int = 0
	estimated_cost: float = 0.0

	def __add__(self, other: "TokenUsage") -> "TokenUsage":
		return TokenUsage(
			prompt_tokens=self.prompt_tokens + other.prompt_tokens,
			completion_tokens=self.completion_tokens + other.completion_tokens,
			total_tokens=self.total_tokens + other.total_tokens,
			estimated_cost=self.estimated_cost + other.estimated_cost,
		)


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
	prompt_rate, completion_rate = MODEL_COSTS.get(model, (0.0, 0.0))
	return (prompt_tokens / 1000) * prompt_rate + (completion_tokens / 1000) * completion_rate


@dataclass
class LLMResponse:
	"""A completed chat response."""
	content: str
	model: str
	token_usage: TokenUsage = field(default_factory=TokenUsage)
	finish_reason: Optional[str] = None


class LLMClient(ABC):
	"""Minimal chat interface the decision oracle depends on."""

	@abstractmethod
	async def send_message(self, system_prompt: str, user_message: str) -> LLMResponse:
		"""Send one system+user exchange and return the reply."""

	async def close(self) -> None:
		"""Release network resources."""


class OpenRouterClient(LLMClient):
	"""
	OpenRouter chat-completions client.

	Usage:
		async with OpenRouterClient(config.oracle) as client:
			response = await client.send_message(system, user)
	"""

	name = "OpenRouter"
	requires_api_key = True

	def __init__(
		self,
		settings: OracleSettings,
		logger: Optional[logging.Logger] = None,
		session: Optional[aiohttp.ClientSession] = None,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	):
		"""
		Initialize the client.

		Args:
			settings: Model, endpoint, key and retry settings
			logger: Logger to use (defaults to the module logger)
			session: Existing aiohttp session to reuse (not closed by this client)
			sleep: Backoff sleep, replaceable in tests
		"""
		self.settings = settings
		self.logger = logger or logging.getLogger(__name__)
		self._session = session
		self._owns_session = session is None
		self._sleep = sleep

	@property
	def base_url(self) -> str:
		return self.settings.base_url or PROVIDER_BASE_URLS["openrouter"]

	@property
	def endpoint(self) -> str:
		return self.base_url.rstrip("/") + "/chat/completions"

	def _default_headers(self) -> dict[str, str]:
		return {
			"HTTP-Referer": "https://github.com/mission-orchestrator/mission-orchestrator",
			"X-Title": "Mission Orchestrator",
		}

	async def __aenter__(self) -> "OpenRouterClient":
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.close()

	async def close(self) -> None:
		if self._session is not None and self._owns_session:
			await self._session.close()
			self._session = None

	def _get_session(self) -> aiohttp.ClientSession:
		if self._session is None or self._session.closed:
			self._session = aiohttp.ClientSession(
				headers=self._default_headers(),
				timeout=aiohttp.ClientTimeout(total=self.settings.timeout),
			)
			self._owns_session = True
		return self._session

	async def send_message(self, system_prompt: str, user_message: str) -> LLMResponse:
		"""
		Send a chat request, retrying retryable failures.

		Raises:
			OracleRequestError: On a non-retryable failure or once retries run out
		"""
		if self.requires_api_key and not self.settings.api_key:
			raise OracleRequestError(
				f"{self.name} API key is not configured",
				code=ErrorCode.API_KEY_MISSING,
				suggestion="Set OPENROUTER_API_KEY or oracle.api_key in config.toml.",
			)

		payload = {
			"model": self.settings.model,
			"messages": [
				{"role": "system", "content": system_prompt},
				{"role": "user", "content": user_message},
			],
			"temperature": self.settings.temperature,
			"max_tokens": self.settings.max_tokens,
			"stream": False,
		}

		attempts = self.settings.retry_attempts
		last_error: Optional[OracleRequestError] = None
		for attempt in range(attempts):
			try:
				self.logger.debug(f"{self.name} request (attempt {attempt + 1}/{attempts}, model {self.settings.model})")
				return await self._request(payload)
			except OracleRequestError as e:
				last_error = e
				self.logger.warning(f"{self.name} request failed (attempt {attempt + 1}): {e}")
				if not is_retryable(e):
					raise
				if attempt + 1 < attempts:
					await self._sleep(retry_delay(e, attempt, base_delay=self.settings.retry_delay))

		raise OracleRequestError(
			f"{self.name} request failed after {attempts} attempts: {last_error}",
			code=last_error.code,
			details=last_error.details,
		)

	async def _request(self, payload: dict) -> LLMResponse:
		session = self._get_session()
		headers = {"Authorization": f"Bearer {self.settings.api_key}"} if self.settings.api_key else {}

		try:
			async with session.post(self.endpoint, json=payload, headers=headers) as response:
				if response.status == 429:
					raise OracleRequestError(f"Rate limited by {self.name}", code=ErrorCode.API_RATE_LIMIT)
				if response.status >= 500:
					body = await response.text()
					raise OracleRequestError(
						f"{self.name} server error {response.status}",
						code=ErrorCode.API_SERVER_ERROR,
						details=body[:500],
					)
				if response.status != 200:
					body = await response.text()
					raise OracleRequestError(
						f"{self.name} returned HTTP {response.status}",
						code=ErrorCode.API_REQUEST_FAILED,
						details=body[:500],
					)
				data = await response.json(content_type=None)
		except asyncio.TimeoutError as e:
			raise OracleRequestError(
				f"{self.name} request timed out after {self.settings.timeout}s",
				code=ErrorCode.API_TIMEOUT,
			) from e
		except aiohttp.ClientError as e:
			raise OracleRequestError(
				f"Could not reach {self.name}: {e}",
				code=ErrorCode.API_CONNECTION_FAILED,
			) from e
		except ValueError as e:
			raise OracleRequestError(f"{self.name} returned invalid JSON: {e}") from e

		return self._parse_response(data)

	def _parse_response(self, data: dict) -> LLMResponse:
		try:
			choice = data["choices"][0]
			content = choice["message"]["content"]
		except (KeyError, IndexError, TypeError) as e:
			raise OracleRequestError(f"Malformed response from {self.name}", details=str(data)[:500]) from e

		if not content:
			raise OracleRequestError(f"Empty response from {self.name}")

		usage = data.get("usage") or {}
		prompt_tokens = usage.get("prompt_tokens", 0) or 0
		completion_tokens = usage.get("completion_tokens", 0) or 0
		model = data.get("model") or self.settings.model
		token_usage = TokenUsage(
			prompt_tokens=prompt_tokens,
			completion_tokens=completion_tokens,
			total_tokens=usage.get("total_tokens") or prompt_tokens + completion_tokens,
			estimated_cost=estimate_cost(self.settings.model, prompt_tokens, completion_tokens),
		)

		self.logger.info(f"{self.name} response: {token_usage.total_tokens} tokens from {model}")
		return LLMResponse(
			content=content,
			model=model,
			token_usage=token_usage,
			finish_reason=choice.get("finish_reason"),
		)


class LocalModelClient(OpenRouterClient):
	"""
	Client for a self-hosted OpenAI-compatible server (ollama, vLLM, llama.cpp).

	No API key is required; one is still sent if configured. Local models
	have no entry in MODEL_COSTS, so estimated_cost stays 0.
	"""

	requires_api_key = False

	@property
	def name(self) -> str:
		return self.settings.provider

	@property
	def base_url(self) -> str:
		return self.settings.base_url or PROVIDER_BASE_URLS[self.settings.provider]

	def _default_headers(self) -> dict[str, str]:
		return {}


def create_llm_client(settings: OracleSettings, logger: Optional[logging.Logger] = None) -> LLMClient:
	"""
	Build the oracle backend named by settings.provider.

	Raises:
		ConfigError: If the provider is unknown
	"""
	if settings.provider == "openrouter":
		return OpenRouterClient(settings, logger=logger)
	if settings.provider in PROVIDER_BASE_URLS:
		return LocalModelClient(settings, logger=logger)
	raise ConfigError(f"Unknown oracle provider: {settings.provider}")
