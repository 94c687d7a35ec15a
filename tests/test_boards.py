"""
Tests for board/list access validation.
"""

from unittest.mock import AsyncMock

import pytest

from boardrelay.boards import BoardAccessValidator
from boardrelay.cache import MISS, board_key, list_key
from boardrelay.errors import AuthenticationError, ExternalApiError, ValidationError

from fakes import BOARD, BOARD_B, LIST


@pytest.fixture
def validator(trello, cache):
    return BoardAccessValidator(trello, cache)


class TestBoardAccessValidator:
    @pytest.mark.asyncio
    async def test_accessible_board(self, validator, trello, cache):
        trello.boards[BOARD] = "Roadmap"

        check = await validator.validate_board(BOARD)

        assert check.valid is True
        assert check.name == "Roadmap"
        assert cache.get(board_key(BOARD)) == check

    @pytest.mark.asyncio
    async def test_result_is_cached(self, cache):
        lookup = AsyncMock()
        lookup.get_list.return_value.name = "Backlog"
        validator = BoardAccessValidator(lookup, cache)

        await validator.validate_list(LIST)
        check = await validator.validate_list(LIST)

        assert check.name == "Backlog"
        lookup.get_list.assert_awaited_once_with(LIST)

    @pytest.mark.asyncio
    async def test_cache_uses_validation_ttl(self, validator, trello, cache, clock):
        trello.boards[BOARD] = "Roadmap"
        await validator.validate_board(BOARD)

        clock.advance(301)
        assert cache.get(board_key(BOARD)) is not MISS
        clock.advance(3300)
        assert cache.get(board_key(BOARD)) is MISS

    @pytest.mark.asyncio
    async def test_missing_board_is_cached_as_invalid(self, validator, cache):
        check = await validator.validate_board(BOARD_B)

        assert check.valid is False
        assert "not found" in check.error
        assert cache.get(board_key(BOARD_B)).valid is False

    @pytest.mark.asyncio
    async def test_forbidden_list_is_invalid(self, cache):
        lookup = AsyncMock()
        lookup.get_list.side_effect = AuthenticationError("unauthorized permission requested", "trello")

        check = await BoardAccessValidator(lookup, cache).validate_list(LIST)

        assert check.valid is False
        assert cache.get(list_key(LIST)) is not MISS

    @pytest.mark.asyncio
    async def test_transient_errors_propagate_uncached(self, cache):
        lookup = AsyncMock()
        lookup.get_board.side_effect = ExternalApiError("Server error", "trello", status_code=503)

        with pytest.raises(ExternalApiError):
            await BoardAccessValidator(lookup, cache).validate_board(BOARD)

        assert cache.get(board_key(BOARD)) is MISS

    @pytest.mark.asyncio
    async def test_malformed_id_rejected_before_lookup(self, cache):
        lookup = AsyncMock()

        with pytest.raises(ValidationError):
            await BoardAccessValidator(lookup, cache).validate_board("nope")

        lookup.get_board.assert_not_awaited()
