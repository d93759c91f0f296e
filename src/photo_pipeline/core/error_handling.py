# src/photo_pipeline/core/error_handling.py

import asyncio
import functools
import logging

from botocore.exceptions import ClientError as BotocoreClientError
from PIL import UnidentifiedImageError as PILUnidentifiedImageError

from .exceptions import ImageProcessingError, PhotoPipelineError, StorageError

MISSING_KEY_ERROR_CODES = ("NoSuchKey", "NotFound", "404")


def _translate(func_name, e):
    if isinstance(e, BotocoreClientError):
        error_code = e.response.get("Error", {}).get("Code")
        if error_code in MISSING_KEY_ERROR_CODES:
            return StorageError(f"File not found in {func_name}: {e}")
        return StorageError(f"Storage operation failed in {func_name}: {e}")
    if isinstance(e, PILUnidentifiedImageError):
        return ImageProcessingError(f"Failed to identify image in {func_name}: {e}")
    if isinstance(e, FileNotFoundError):
        return StorageError(f"File not found in {func_name}: {e}")
    return None


def with_error_handling(func):
    """
    Map library errors raised by ``func`` onto the pipeline hierarchy.

    botocore ClientError becomes StorageError, Pillow's
    UnidentifiedImageError becomes ImageProcessingError and a missing local
    file becomes StorageError. Pipeline errors and anything else propagate
    untouched. Works for plain and coroutine functions.
    """
    logger = logging.getLogger(func.__module__ + "." + func.__name__)

    if asyncio.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except PhotoPipelineError:
                raise
            except Exception as e:
                translated = _translate(func.__name__, e)
                if translated is None:
                    raise
                logger.error(f"Error in '{func.__name__}': {e}")
                raise translated from e

        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PhotoPipelineError:
            raise
        except Exception as e:
            translated = _translate(func.__name__, e)
            if translated is None:
                raise
            logger.error(f"Error in '{func.__name__}': {e}")
            raise translated from e

    return wrapper


def retry_async(max_attempts=3, initial_delay=1, backoff_factor=2):
    """
    Decorator to retry a coroutine with exponential backoff.

    Only used for bookkeeping writes such as marking a photo as failed;
    image jobs themselves are retried by the queue, never here.
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            logger = logging.getLogger(func.__module__ + "." + func.__name__)
            delay = initial_delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if attempt >= max_attempts:
                        logger.error(
                            f"Operation '{func.__name__}' failed after {max_attempts} attempts. Error: {e}"
                        )
                        raise
                    logger.warning(
                        f"Operation '{func.__name__}' failed. Attempt {attempt}/{max_attempts}. "
                        f"Retrying in {delay:.2f}s. Error: {e}"
                    )
                    await asyncio.sleep(delay)
                    delay *= backoff_factor
        return wrapper
    return decorator


class BatchOperationContextManager:
    """
    Context manager for batch operations to collect and summarize errors.
    """
    def __init__(self, operation_name="Batch Operation"):
        self.operation_name = operation_name
        self.errors = []
        self.logger = logging.getLogger(self.__class__.__module__ + "." + self.__class__.__name__)

    def __enter__(self):
        self.logger.info(f"Starting {self.operation_name}.")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.errors:
            self.logger.warning(
                f"{self.operation_name} completed with {len(self.errors)} error(s)."
            )
            for i, error_detail in enumerate(self.errors):
                self.logger.error(
                    f"  Error {i+1}/{len(self.errors)} for item '{error_detail['item']}': {error_detail['error']}"
                )
        elif exc_type:
            self.logger.error(
                f"{self.operation_name} failed due to an unhandled exception: {exc_val}",
                exc_info=(exc_type, exc_val, exc_tb)
            )
        else:
            self.logger.info(f"{self.operation_name} completed successfully.")
        return False

    @property
    def failed_items(self):
        return [error_detail["item"] for error_detail in self.errors]

    def add_error(self, error_message, item_identifier="Unknown item"):
        """
        Report an error for a specific item within the 'with' block.

        Args:
            error_message: The error message or exception.
            item_identifier: A string identifying the item that failed (message id, photo id).
        """
        self.errors.append({"item": item_identifier, "error": str(error_message)})
        self.logger.debug(f"Error added for item '{item_identifier}' in {self.operation_name}: {error_message}")
