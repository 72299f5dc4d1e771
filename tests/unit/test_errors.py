"""
Unit tests for the error taxonomy.
"""

import pytest

from spire_sync.utils.errors import (
    ErrorCategory,
    QueueFlushRejected,
    SpireSyncError,
    StaleRevision,
    StorageUnavailable,
    StorageWriteFailure,
    error_context,
    handle_errors,
)


class TestErrors:
    def test_retryability(self):
        assert StorageWriteFailure().is_retryable
        assert StorageUnavailable().is_retryable
        assert not StaleRevision("r-0", "r-1").is_retryable

    def test_conflict_category(self):
        error = QueueFlushRejected("r-0", "r-1")

        payload = error.to_dict()["error"]

        assert payload["code"] == "QUEUE_FLUSH_REJECTED"
        assert payload["category"] == ErrorCategory.CONFLICT.value
        assert payload["suggestions"]
        assert "r-0" in payload["message"]

    def test_error_context_wraps_foreign_errors(self):
        with pytest.raises(SpireSyncError) as exc_info:
            with error_context("store", "put", user_id="user-1"):
                raise KeyError("campaigns")

        assert exc_info.value.context.component == "store"
        assert exc_info.value.context.metadata == {"user_id": "user-1"}
        assert isinstance(exc_info.value.cause, KeyError)

    def test_error_context_fills_library_errors(self):
        with pytest.raises(StorageUnavailable) as exc_info:
            with error_context("queue", "flush"):
                raise StorageUnavailable()

        assert exc_info.value.context.operation == "flush"

    @pytest.mark.asyncio
    async def test_handle_errors_fallback(self):
        @handle_errors(StorageUnavailable, fallback=lambda: "cached")
        async def read():
            raise StorageUnavailable()

        assert await read() == "cached"

    def test_handle_errors_reraises(self):
        @handle_errors(ValueError)
        def parse():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            parse()
