"""MCP tool tests. The tools are called directly against a test session."""

import json

import pytest

from runpad import mcp_server

pytestmark = pytest.mark.asyncio


@pytest.fixture(autouse=True)
def use_test_session(session, monkeypatch):
    monkeypatch.setattr(mcp_server, "get_session", lambda: session)


async def test_run_code_reports_output_and_result():
    blocks = await mcp_server.run_code('console.log("hi")\nconsole.error("bad", 2)\n1 + 1')

    assert blocks == [
        {"type": "text", "text": "[line 1] hi\n[line 2] ERROR: bad 2"},
        {"type": "text", "text": "Result (line 3): 2"},
    ]


async def test_run_code_reports_errors_with_line():
    blocks = await mcp_server.run_code("x = 1\nraise KeyError('missing')")

    assert blocks == [{"type": "text", "text": "Execution Error (line 2): 'missing'"}]


async def test_run_code_without_output():
    blocks = await mcp_server.run_code("x = 1")
    assert blocks == [{"type": "text", "text": "Code executed successfully (no output)."}]


async def test_package_tools(installer):
    assert json.loads(await mcp_server.install_package("six")) == {"success": True}
    assert json.loads(await mcp_server.list_packages()) == {"success": True, "packages": {"six": "==1.0.0"}}
    assert json.loads(await mcp_server.uninstall_package("six")) == {"success": True}
    assert installer.packages == {}
