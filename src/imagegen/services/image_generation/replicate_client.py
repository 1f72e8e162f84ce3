"""Replicate API client for image generation with error classification."""

import asyncio
from typing import Any, Optional

import replicate
from replicate.exceptions import ReplicateError as ReplicateAPIError

from imagegen.models.async_task import AsyncTaskErrorType

DEFAULT_MODEL = "black-forest-labs/flux-schnell"

# Request param name -> Replicate input name
_PARAM_ALIASES = {
    "steps": "num_inference_steps",
    "cfg": "guidance",
}
# Params that never reach the provider as-is
_SKIPPED_PARAMS = {"imageUrls", "seed"}


class ReplicateError(Exception):
    """Base class for categorized Replicate API errors."""

    retryable: bool = False
    error_type: AsyncTaskErrorType = AsyncTaskErrorType.PROVIDER_ERROR


class TransientError(ReplicateError):
    """Transient errors (network, rate limits, service unavailability)."""

    retryable = True


class ProviderTimeoutError(TransientError):
    """The provider did not answer in time."""

    error_type = AsyncTaskErrorType.TIMEOUT


class ContentPolicyError(ReplicateError):
    """Content policy violation."""

    error_type = AsyncTaskErrorType.CONTENT_POLICY_VIOLATION


class AuthenticationError(ReplicateError):
    """Invalid or missing provider API token."""

    error_type = AsyncTaskErrorType.INVALID_PROVIDER_API_KEY


class PermanentError(ReplicateError):
    """Permanent errors that should not be retried (validation, bad output)."""

    retryable = False


# Checked in order; the first rule whose marker appears in the message wins
_CLASSIFICATION_RULES: list[tuple[tuple[str, ...], type[ReplicateError], str]] = [
    (("timeout", "timed out"), ProviderTimeoutError, "Provider timeout"),
    (("429", "rate limit"), TransientError, "Rate limited"),
    (("503", "service unavailable"), TransientError, "Provider unavailable"),
    (
        ("401", "403", "unauthorized", "forbidden", "authentication", "invalid api token"),
        AuthenticationError,
        "Provider rejected API token",
    ),
    (
        ("content policy", "nsfw", "safety", "inappropriate"),
        ContentPolicyError,
        "Content policy violation",
    ),
]


def classify_error(exception: Exception) -> ReplicateError:
    """Map an SDK or network exception onto a task error kind.

    Timeouts map to ProviderTimeoutError, rate limits and 503s to TransientError,
    401/403 to AuthenticationError, safety filter hits to ContentPolicyError and
    connection failures to TransientError. Anything else is a PermanentError.
    """
    message = str(exception)
    if isinstance(exception, TimeoutError):
        return ProviderTimeoutError(f"Provider timeout: {message}")

    lowered = message.lower()
    for markers, error_class, label in _CLASSIFICATION_RULES:
        if any(marker in lowered for marker in markers):
            return error_class(f"{label}: {message}")

    if isinstance(exception, (ConnectionError, OSError)):
        return TransientError(f"Provider unreachable: {message}")
    return PermanentError(f"Provider error: {message}")


def build_model_input(params: dict, seed: Optional[int] = None) -> dict[str, Any]:
    """Translate create-image params into Replicate model input.

    Args:
        params: Original request params (prompt, width, height, steps, cfg, passthrough keys)
        seed: Seed assigned to the generation, if any

    Returns:
        Input dict for ``replicate.run``
    """
    model_input: dict[str, Any] = {}
    for key, value in params.items():
        if key in _SKIPPED_PARAMS or value is None:
            continue
        model_input[_PARAM_ALIASES.get(key, key)] = value

    image_urls = params.get("imageUrls") or []
    if image_urls:
        model_input["input_image"] = image_urls[0]
    if seed is not None:
        model_input["seed"] = seed
    return model_input


async def generate_image(
    model_input: dict[str, Any], api_token: str, model: Optional[str] = None
) -> str:
    """Generate image using Replicate API.

    Args:
        model_input: Model input, see ``build_model_input``
        api_token: Replicate API authentication token
        model: Model identifier (default: "black-forest-labs/flux-schnell")

    Returns:
        Image URL from Replicate CDN

    Raises:
        ReplicateError: Base class for all errors
        TransientError: Temporary failure
        ContentPolicyError: Content policy violation
        AuthenticationError: Missing or rejected API token
        PermanentError: Permanent failure
    """
    if not api_token:
        raise AuthenticationError("REPLICATE_API_TOKEN not configured")

    model_ref = model or DEFAULT_MODEL

    try:
        client = replicate.Client(api_token=api_token)
        # SDK is synchronous, run it in the thread pool
        output = await asyncio.to_thread(client.run, model_ref, input=model_input)

        # Output format varies by model
        if isinstance(output, list) and len(output) > 0:
            image_url = str(output[0])
        elif isinstance(output, str):
            image_url = output
        elif output is not None and hasattr(output, "url"):
            image_url = str(output.url)
        else:
            raise PermanentError(f"Unexpected output format from Replicate: {type(output)}")

        return image_url

    except ReplicateError:
        raise

    except ReplicateAPIError as e:
        raise classify_error(e) from e

    except (ConnectionError, OSError, TimeoutError) as e:
        raise classify_error(e) from e

    except Exception as e:
        # Unexpected errors are treated as permanent
        raise PermanentError(f"Unexpected error: {e}") from e
