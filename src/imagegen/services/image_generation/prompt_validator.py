"""Input validation for create-image requests.

Runs before any database write.
"""

from imagegen.services.exceptions import ImageNumValidationError, PromptValidationError


def validate_prompt(prompt: object, max_length: int = 4000) -> str:
    """Validate prompt text for image generation.

    Args:
        prompt: Text prompt from the request params
        max_length: Maximum prompt length in characters

    Returns:
        Validated prompt (unchanged if valid)

    Raises:
        PromptValidationError: If prompt is missing, empty, not a string, or too long
    """
    if prompt is None or prompt == "":
        raise PromptValidationError("Prompt cannot be empty or None")

    if not isinstance(prompt, str):
        raise PromptValidationError(f"Prompt must be a string, got {type(prompt).__name__}")

    if not prompt.strip():
        raise PromptValidationError("Prompt cannot be blank")

    if len(prompt) > max_length:
        raise PromptValidationError(
            f"Prompt exceeds maximum length of {max_length} characters (got {len(prompt)})"
        )

    return prompt


def validate_image_num(image_num: int, max_image_num: int) -> int:
    """Validate the number of images requested for one batch.

    Raises:
        ImageNumValidationError: If image_num is not within 1..max_image_num
    """
    if isinstance(image_num, bool) or not isinstance(image_num, int):
        raise ImageNumValidationError(f"imageNum must be an integer, got {image_num!r}")
    if image_num < 1 or image_num > max_image_num:
        raise ImageNumValidationError(
            f"imageNum must be between 1 and {max_image_num} (got {image_num})"
        )
    return image_num
