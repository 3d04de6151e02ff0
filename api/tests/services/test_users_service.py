"""Tests for users_service.is_admin delegating to the repository."""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from repositories.protocols import StoreUnavailableError
from services.users_service import is_admin


@pytest.mark.unit
class TestIsAdmin:
    """Tests for is_admin service function."""

    @pytest.mark.parametrize("flag", [True, False], ids=["admin", "member"])
    async def test_returns_repository_flag(self, flag):
        mock_db = AsyncMock()

        with patch(
            "services.users_service.UserRepository", autospec=True
        ) as mock_repo_class:
            mock_repo = mock_repo_class.return_value
            mock_repo.is_admin = AsyncMock(return_value=flag)

            assert await is_admin(mock_db, "user_abc") is flag

        mock_repo_class.assert_called_once_with(mock_db)
        mock_repo.is_admin.assert_awaited_once_with("user_abc")
        # Read only; the request session owns the transaction
        mock_db.commit.assert_not_awaited()

    async def test_database_outage_is_store_unavailable(self):
        mock_db = AsyncMock()
        mock_db.execute.side_effect = OperationalError(
            "SELECT users.is_admin", {}, ConnectionRefusedError()
        )

        with pytest.raises(StoreUnavailableError, match="is_admin failed"):
            await is_admin(mock_db, "user_abc")
