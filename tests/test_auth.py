"""Unit tests for the operator key check."""

from unittest.mock import patch

import pytest
from fastapi import HTTPException

from app.core.auth import parse_api_keys, validate_admin_key, verify_admin_key
from app.core.errors import AuthenticationAppError


class TestParseAPIKeys:
    """Test key parsing utility function."""

    def test_parse_single_key(self) -> None:
        assert parse_api_keys("my-secret-key") == {"my-secret-key"}

    def test_parse_keys_with_whitespace(self) -> None:
        """Test that whitespace is trimmed from keys."""
        assert parse_api_keys("key1 , key2  ,  key3") == {"key1", "key2", "key3"}

    @pytest.mark.parametrize("raw", [None, "", "   ,  ,  "])
    def test_parse_empty_inputs(self, raw) -> None:
        assert parse_api_keys(raw) == set()

    def test_parse_removes_duplicate_keys(self) -> None:
        assert parse_api_keys("key1,key2,key1,key3,key2") == {"key1", "key2", "key3"}


class TestValidateAdminKey:
    """Test core admin key validation logic."""

    @patch("app.core.auth.settings")
    def test_validate_bypassed_when_auth_disabled(self, mock_settings) -> None:
        """Test that validation is skipped when APP_ADMIN_API_KEY_REQUIRED=false."""
        mock_settings.app.admin_api_key_required = False

        validate_admin_key("any-random-key")
        validate_admin_key("")

    @pytest.mark.parametrize("configured", [None, ""])
    @patch("app.core.auth.settings")
    def test_validate_raises_when_no_keys_configured(self, mock_settings, configured) -> None:
        mock_settings.app.admin_api_key_required = True
        mock_settings.app.admin_api_keys = configured

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_admin_key("some-key")

        assert exc_info.value.code == "admin_keys_not_configured"
        assert "no admin keys are configured" in exc_info.value.message

    @patch("app.core.auth.settings")
    def test_validate_accepts_valid_key(self, mock_settings) -> None:
        mock_settings.app.admin_api_key_required = True
        mock_settings.app.admin_api_keys = "valid-key-1,valid-key-2"

        validate_admin_key("valid-key-1")
        validate_admin_key("valid-key-2")

    @pytest.mark.parametrize("provided", ["invalid-key", "", " valid-key-1 ", "clé-invalide"])
    @patch("app.core.auth.settings")
    def test_validate_rejects_invalid_key(self, mock_settings, provided) -> None:
        mock_settings.app.admin_api_key_required = True
        mock_settings.app.admin_api_keys = "valid-key-1,valid-key-2"

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_admin_key(provided)

        assert exc_info.value.code == "invalid_admin_key"
        assert exc_info.value.message == "Invalid or missing admin key"


class TestVerifyAdminKeyDependency:
    """Test FastAPI dependency for admin key verification."""

    @pytest.mark.asyncio
    @patch("app.core.auth.settings")
    async def test_verify_bypassed_when_auth_disabled(self, mock_settings) -> None:
        mock_settings.app.admin_api_key_required = False

        await verify_admin_key(x_admin_key=None)

    @pytest.mark.asyncio
    @patch("app.core.auth.settings")
    async def test_verify_raises_403_when_header_missing(self, mock_settings) -> None:
        mock_settings.app.admin_api_key_required = True
        mock_settings.app.admin_api_keys = "valid-key"

        with pytest.raises(HTTPException) as exc_info:
            await verify_admin_key(x_admin_key=None)

        assert exc_info.value.status_code == 403
        assert "Missing admin key" in exc_info.value.detail

    @pytest.mark.asyncio
    @patch("app.core.auth.settings")
    async def test_verify_raises_403_when_key_invalid(self, mock_settings) -> None:
        mock_settings.app.admin_api_key_required = True
        mock_settings.app.admin_api_keys = "valid-key"

        with pytest.raises(HTTPException) as exc_info:
            await verify_admin_key(x_admin_key="wrong-key")

        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == "Invalid or missing admin key"

    @pytest.mark.asyncio
    @patch("app.core.auth.settings")
    async def test_verify_accepts_valid_key(self, mock_settings) -> None:
        mock_settings.app.admin_api_key_required = True
        mock_settings.app.admin_api_keys = "my-valid-key,another-key"

        await verify_admin_key(x_admin_key="my-valid-key")
        await verify_admin_key(x_admin_key="another-key")
