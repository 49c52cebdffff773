"""AWS Bedrock LLM client implementation."""

import asyncio
import json
import time
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from inkstream.core.aws import create_boto_client, error_code, is_throttling
from inkstream.core.config import Settings, get_settings
from inkstream.core.exceptions import LLMError
from inkstream.core.logging import get_logger
from inkstream.llm.client import BaseLLMClient, LLMMessage, LLMResponse, MessageRole

logger = get_logger(__name__)

_RETRYABLE_CODES = frozenset({"ModelTimeoutException", "ModelNotReadyException"})


class BedrockClient(BaseLLMClient):
    """AWS Bedrock LLM client with async wrapper."""

    def __init__(
        self,
        settings: Settings | None = None,
        model_id: str | None = None,
        client: Any | None = None,
    ) -> None:
        """Initialize Bedrock client.

        Args:
            settings: Application settings
            model_id: Override model ID
            client: Preconfigured ``bedrock-runtime`` client
        """
        self._settings = settings or get_settings()
        self._model_id = model_id or self._settings.bedrock_model_id
        self._client = client or create_boto_client("bedrock-runtime", self._settings)

        logger.info(
            "Initialized Bedrock client",
            model_id=self._model_id,
            region=self._settings.aws_region,
        )

    @property
    def model_id(self) -> str:
        """Get the model identifier."""
        return self._model_id

    def _build_messages(
        self,
        messages: list[LLMMessage],
    ) -> list[dict[str, Any]]:
        """Build messages for Bedrock API."""
        result = []
        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                # System messages are handled separately
                continue
            result.append({
                "role": msg.role.value,
                "content": [{"type": "text", "text": msg.content}],
            })
        return result

    def _extract_system_prompt(
        self,
        messages: list[LLMMessage],
        system: str | None,
    ) -> str | None:
        """Extract system prompt from messages or parameter."""
        if system:
            return system
        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                return msg.content
        return None

    async def generate(
        self,
        messages: list[LLMMessage],
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
        system: str | None = None,
        stop_sequences: list[str] | None = None,
    ) -> LLMResponse:
        """Generate a response using Bedrock."""
        max_tokens = max_tokens or self._settings.bedrock_max_tokens
        temperature = temperature if temperature is not None else self._settings.bedrock_temperature

        system_prompt = self._extract_system_prompt(messages, system)
        api_messages = self._build_messages(messages)

        request_body: dict[str, Any] = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": max_tokens,
            "messages": api_messages,
            "temperature": temperature,
        }
        if system_prompt:
            request_body["system"] = system_prompt
        if stop_sequences:
            request_body["stop_sequences"] = stop_sequences

        logger.debug(
            "Calling Bedrock",
            model_id=self._model_id,
            message_count=len(api_messages),
            max_tokens=max_tokens,
        )

        start_time = time.perf_counter()

        try:
            response = await asyncio.to_thread(
                self._client.invoke_model,
                modelId=self._model_id,
                body=json.dumps(request_body),
                contentType="application/json",
                accept="application/json",
            )
            response_body = json.loads(response["body"].read())
        except ClientError as e:
            code = error_code(e)
            raise LLMError(
                f"Bedrock API error: {code}",
                details={"error": str(e), "code": code},
                retryable=is_throttling(e) or code in _RETRYABLE_CODES,
            ) from e
        except (BotoCoreError, ValueError) as e:
            raise LLMError(
                f"Bedrock API error: {e}",
                details={"error": str(e)},
                retryable=False,
            ) from e

        latency_ms = (time.perf_counter() - start_time) * 1000

        content = "".join(
            block.get("text", "")
            for block in response_body.get("content") or []
            if block.get("type") == "text"
        )
        usage = response_body.get("usage", {})

        logger.debug(
            "Bedrock response received",
            latency_ms=latency_ms,
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
        )

        return LLMResponse(
            content=content,
            model=self._model_id,
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            latency_ms=latency_ms,
            stop_reason=response_body.get("stop_reason"),
            raw_response=response_body,
        )
