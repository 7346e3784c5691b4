# catalog/utils.py
import re
import unicodedata
from bson import ObjectId
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)


def to_object_id(value):
    """
    Convert a path/query identifier into an ObjectId.

    Args:
        value (str | ObjectId): 24-character hex string or an ObjectId

    Returns:
        ObjectId: The parsed identifier

    Raises:
        bson.errors.InvalidId: If the value is not a valid ObjectId
    """
    if isinstance(value, ObjectId):
        return value
    return ObjectId(value)


def coerce_id(value):
    """Return an ObjectId when the value looks like one, else the value unchanged."""
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def slugify(text):
    """
    Build a URL slug from a book name.

    Accents are folded to ASCII (Vietnamese "đ" is mapped explicitly since it
    has no decomposition), everything outside [a-z0-9] collapses to a single
    hyphen, and leading/trailing hyphens are stripped.

    Example:
        >>> slugify("Đắc Nhân Tâm")
        'dac-nhan-tam'
    """
    text = (text or "").replace("đ", "d").replace("Đ", "D")
    text = unicodedata.normalize("NFKD", text)
    text = text.encode("ascii", "ignore").decode("ascii").lower()
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-")


def network_retry(**tenacity_kwargs):
    """
    Create a tenacity retry decorator for handling network failures.

    Args:
        **tenacity_kwargs: Optional keyword arguments
            - attempts (int): Maximum number of attempts. Defaults to 3.
            - max_wait (float): Upper bound of the backoff in seconds. Defaults to 10.

    Returns:
        Configured retry decorator. The last exception is re-raised once
        attempts are exhausted.

    Example:
        @network_retry(attempts=5)
        async def destroy(public_id):
            return await media.destroy(public_id)
    """
    return retry(
        stop=stop_after_attempt(tenacity_kwargs.get("attempts", 3)),
        wait=wait_exponential(multiplier=1, min=0, max=tenacity_kwargs.get("max_wait", 10)),
        retry=retry_if_exception_type(Exception),
        reraise=True,
    )
