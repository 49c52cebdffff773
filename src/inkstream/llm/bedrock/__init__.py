"""AWS Bedrock LLM client."""

from inkstream.llm.bedrock.client import BedrockClient

__all__ = ["BedrockClient"]
