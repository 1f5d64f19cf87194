"""
Amazon Bedrock service module.
Handles the model calls made by the build pipeline: classification (single
response) and code generation (streamed text).
"""

import boto3
import json
import logging
from typing import Generator, List, Dict, Optional, Any
from botocore.exceptions import ClientError, NoCredentialsError
from dataclasses import dataclass
from config import (
    aws_config,
    model_config,
    get_model_config,
    get_max_output_tokens,
    requires_inference_profile,
    supports_thinking,
)


logger = logging.getLogger(__name__)


class BedrockError(Exception):
    """Custom exception for Bedrock service errors"""
    pass


@dataclass
class GenerationConfig:
    """Configuration for a single generation request"""
    max_tokens: int = 16000
    temperature: Optional[float] = None
    stop_sequences: Optional[List[str]] = None

    # Throughput settings
    throughput_mode: str = "cross-region"

    # Extended thinking settings
    enable_thinking: bool = False
    thinking_budget: int = 10000


@dataclass
class GenerationResult:
    """Result from a generation request"""
    content: str = ""
    stop_reason: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0


class BedrockService:
    """
    Service class for Amazon Bedrock interactions.
    The model id is chosen per call by the router; the constructor default is
    the standard tier.
    """

    def __init__(
        self,
        model_id: Optional[str] = None,
        region: Optional[str] = None
    ):
        self.model_id = model_id or model_config.standard_model
        self.region = region or aws_config.region

        self.client = self._create_client()
        logger.info(f"BedrockService initialized with model: {self.model_id}")

    def _create_client(self) -> Any:
        """Create and configure the Bedrock runtime client"""
        try:
            session_kwargs = {"region_name": self.region}

            if aws_config.has_profile():
                session_kwargs["profile_name"] = aws_config.profile_name
            elif aws_config.has_explicit_credentials():
                session_kwargs["aws_access_key_id"] = aws_config.access_key_id
                session_kwargs["aws_secret_access_key"] = aws_config.secret_access_key
                if aws_config.has_session_token():
                    session_kwargs["aws_session_token"] = aws_config.session_token

            session = boto3.Session(**session_kwargs)
            return session.client("bedrock-runtime")

        except NoCredentialsError:
            raise BedrockError("AWS credentials not configured.")
        except Exception as e:
            raise BedrockError(f"Failed to initialize Bedrock client: {e}")

    def _get_model_identifier(self, model_id: str, config: GenerationConfig) -> str:
        """Get the appropriate model identifier based on throughput mode"""
        if config.throughput_mode == "cross-region":
            if model_id.startswith(("us.", "eu.", "ap.")):
                return model_id
            elif requires_inference_profile(model_id):
                region_prefix = "eu" if self.region.startswith("eu-") else "us"
                return f"{region_prefix}.{model_id}"
        return get_model_config(model_id).get("id", model_id)

    def _format_request_body(
        self,
        messages: List[Dict],
        system_prompt: Optional[str],
        model_id: str,
        config: GenerationConfig,
    ) -> Dict[str, Any]:
        """Format the Anthropic messages request body"""
        formatted_messages = []
        for msg in messages:
            if msg["role"] == "system":
                continue
            content = msg.get("content")
            if isinstance(content, str) and not content.strip():
                content = "(no content)"
            formatted_messages.append({"role": msg["role"], "content": content})

        effective_max_tokens = min(config.max_tokens, get_max_output_tokens(model_id))
        body = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": effective_max_tokens,
            "messages": formatted_messages,
        }

        if config.enable_thinking and supports_thinking(model_id):
            # thinking budget must leave room for the answer itself
            budget = min(config.thinking_budget, max(effective_max_tokens - 4000, 1024))
            body["thinking"] = {"type": "enabled", "budget_tokens": budget}
            logger.info(f"Extended thinking enabled with budget: {budget} tokens")
        else:
            body["temperature"] = config.temperature if config.temperature is not None else 1.0

        if config.stop_sequences:
            body["stop_sequences"] = config.stop_sequences
        if system_prompt:
            body["system"] = system_prompt
        return body

    def _parse_response(self, response_body: Dict) -> GenerationResult:
        """Collect text blocks and usage from a response body"""
        result = GenerationResult()
        try:
            for block in response_body.get("content", []):
                if block.get("type") == "text":
                    result.content += block.get("text", "")
            usage = response_body.get("usage", {})
            result.input_tokens = usage.get("input_tokens", 0)
            result.output_tokens = usage.get("output_tokens", 0)
            result.stop_reason = response_body.get("stop_reason")
        except (KeyError, IndexError, AttributeError) as e:
            logger.error(f"Error parsing response: {e}")
            raise BedrockError(f"Failed to parse model response: {e}")
        return result

    @staticmethod
    def _client_error(e: ClientError, prefix: str) -> BedrockError:
        error_code = e.response.get('Error', {}).get('Code', 'Unknown')
        error_message = e.response.get('Error', {}).get('Message', str(e))
        logger.error(f"{prefix}: {error_code} - {error_message}")
        if error_code in ['ExpiredTokenException', 'InvalidSignatureException']:
            return BedrockError("AWS credentials expired. Please refresh.")
        if error_code == 'ThrottlingException':
            return BedrockError(f"Bedrock throttled the request: {error_message}")
        return BedrockError(f"{prefix}: {error_message}")

    def generate_response(
        self,
        messages: List[Dict],
        system_prompt: Optional[str] = None,
        model_id: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResult:
        """Generate a complete (non-streamed) response."""
        current_model = model_id or self.model_id
        gen_config = config or GenerationConfig()

        try:
            model_identifier = self._get_model_identifier(current_model, gen_config)
            request_body = self._format_request_body(messages, system_prompt, current_model, gen_config)

            logger.info(f"Invoking model: {model_identifier}")
            response = self.client.invoke_model(
                modelId=model_identifier,
                body=json.dumps(request_body),
                contentType="application/json",
                accept="application/json"
            )
            response_body = json.loads(response["body"].read())
            return self._parse_response(response_body)

        except ClientError as e:
            raise self._client_error(e, "Bedrock API error")

    def generate_response_stream(
        self,
        messages: List[Dict],
        system_prompt: Optional[str] = None,
        model_id: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
    ) -> Generator[Dict[str, Any], None, None]:
        """
        Generate a streaming response using Amazon Bedrock.
        Yields dictionaries with 'type' and 'content'.
        Types: text, thinking, message_end (carries usage and stop_reason)
        """
        current_model = model_id or self.model_id
        gen_config = config or GenerationConfig()

        try:
            model_identifier = self._get_model_identifier(current_model, gen_config)
            request_body = self._format_request_body(messages, system_prompt, current_model, gen_config)

            logger.info(f"Streaming from model: {model_identifier}")
            response = self.client.invoke_model_with_response_stream(
                modelId=model_identifier,
                body=json.dumps(request_body),
                contentType="application/json",
                accept="application/json"
            )

            input_tokens = 0
            for event in response["body"]:
                chunk = json.loads(event["chunk"]["bytes"])
                event_type = chunk.get("type", "")

                if event_type == "content_block_delta":
                    delta = chunk.get("delta", {})
                    delta_type = delta.get("type", "")
                    if delta_type == "text_delta":
                        text = delta.get("text", "")
                        if text:
                            yield {"type": "text", "content": text}
                    elif delta_type == "thinking_delta":
                        thinking_text = delta.get("thinking", "")
                        if thinking_text:
                            yield {"type": "thinking", "content": thinking_text}

                elif event_type == "message_start":
                    msg_usage = chunk.get("message", {}).get("usage", {})
                    input_tokens = msg_usage.get("input_tokens", 0)

                elif event_type == "message_delta":
                    usage = dict(chunk.get("usage", {}))
                    usage.setdefault("input_tokens", input_tokens)
                    yield {
                        "type": "message_end",
                        "content": "",
                        "usage": usage,
                        "stop_reason": chunk.get("delta", {}).get("stop_reason")
                    }

        except ClientError as e:
            raise self._client_error(e, "Streaming error")

    def test_connection(self) -> tuple:
        """Test the Bedrock connection"""
        try:
            test_config = GenerationConfig(max_tokens=10, temperature=1.0)
            self.generate_response(
                [{"role": "user", "content": "Hi"}],
                model_id=model_config.lite_model,
                config=test_config
            )
            return True, "Connection successful"
        except Exception as e:
            return False, str(e)
