#!/usr/bin/env python3
"""Tests for the service entry point."""

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import main


ENV = {
    "RPC_URL": "https://rpc.test",
    "REGISTRY_RPC_URL": "https://registry.test",
}


class TestMain:
    """Tests for main()."""

    @pytest.mark.asyncio
    @patch('main.load_dotenv')
    @patch.dict(os.environ, {}, clear=True)
    @patch('sys.argv', ['main.py'])
    async def test_configuration_error_exits_1(self, mock_load_dotenv):
        """Test that missing configuration ends the process with status 1."""
        with pytest.raises(SystemExit) as exc_info:
            await main.main()

        assert exc_info.value.code == 1

    @pytest.mark.asyncio
    @patch('main.load_dotenv')
    @patch('main.create_app')
    @patch('main.uvicorn.Server')
    @patch.dict(os.environ, ENV, clear=True)
    @patch('sys.argv', ['main.py', '--port', '9100'])
    async def test_serves_configured_app(self, mock_server_class, mock_create_app, mock_load_dotenv):
        """Test that the app is served on the configured address."""
        mock_server = MagicMock()
        mock_server.serve = AsyncMock()
        mock_server_class.return_value = mock_server

        await main.main()

        config = mock_create_app.call_args[0][0]
        assert config.server.port == 9100
        assert config.funding.funding_url == "http://127.0.0.1:9100/api/airdrop"
        mock_server.serve.assert_awaited_once()

    @pytest.mark.asyncio
    @patch('main.load_dotenv')
    @patch('main.create_app')
    @patch('main.uvicorn.Server')
    @patch.dict(os.environ, ENV, clear=True)
    @patch('sys.argv', ['main.py'])
    async def test_server_failure_exits_1(self, mock_server_class, mock_create_app, mock_load_dotenv):
        """Test that a crash while serving ends the process with status 1."""
        mock_server = MagicMock()
        mock_server.serve = AsyncMock(side_effect=OSError("address already in use"))
        mock_server_class.return_value = mock_server

        with pytest.raises(SystemExit) as exc_info:
            await main.main()

        assert exc_info.value.code == 1
