"""Runpad - MCP Server Definition

Exposes the session operations as MCP tools, mounted at /mcp by main.py.

MCP Tools (4):
- run_code: Run a script and return its console output plus result
- install_package: Install a distribution into the dependency store
- uninstall_package: Remove it again
- list_packages: Show the dependency manifest

The tools call the in-process session directly; they share its output
channel, run supersession and dependency store with the HTTP API.
"""

import json
import logging
from typing import Any, Dict, List

from mcp.server.fastmcp import FastMCP

from runpad.session import get_session

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "Runpad",
    instructions=(
        "Live Python scratchpad. Scripts run in a sandbox; console.log/print "
        "output is reported with the script line that produced it."
    ),
)


def _format_output_line(payload: Dict[str, Any]) -> str:
    line = payload.get('line')
    prefix = f"[line {line}] " if line is not None else ""
    method = payload.get('method', 'log')
    level = "" if method == 'log' else f"{method.upper()}: "
    data = ' '.join(
        arg if isinstance(arg, str) else json.dumps(arg) for arg in payload.get('data', [])
    )
    return f"{prefix}{level}{data}"


def _build_content_blocks(outputs: List[Dict[str, Any]], response: Dict[str, Any]) -> list:
    """Build MCP content blocks from captured output and the run response.

    Content blocks:
    1. Console output, one line per event (if any)
    2. Result value or error, with its line
    """
    blocks = []

    if outputs:
        blocks.append({
            "type": "text",
            "text": '\n'.join(_format_output_line(p) for p in outputs),
        })

    line = response.get('line')
    where = f" (line {line})" if line is not None else ""
    if response.get('success'):
        if 'result' in response:
            blocks.append({
                "type": "text",
                "text": f"Result{where}: {json.dumps(response['result'])}",
            })
    else:
        blocks.append({
            "type": "text",
            "text": f"Execution Error{where}: {response.get('error', 'Unknown error')}",
        })

    if not blocks:
        blocks.append({"type": "text", "text": "Code executed successfully (no output)."})

    logger.info(f"Built {len(blocks)} content blocks for MCP response")
    return blocks


# ============================================================
# CODE EXECUTION TOOLS
# ============================================================

@mcp.tool()
async def run_code(source: str) -> list:
    """Run a Python script in the sandbox.

    The script gets a fresh context on every call. Use console.log / print
    for output; the value of a final expression is returned as the result.
    Third-party imports must be installed first with install_package.

    Args:
        source: Python source to execute

    Returns:
        Content blocks: console output lines, then the result or error.
    """
    session = get_session()
    outputs: List[Dict[str, Any]] = []
    unsubscribe = session.channel.subscribe(outputs.append)
    try:
        response = await session.run(source)
    finally:
        unsubscribe()

    run_id = response.get('run_id')
    own_outputs = [p for p in outputs if p.get('run_id') == run_id]
    return _build_content_blocks(own_outputs, response)


# ============================================================
# PACKAGE TOOLS
# ============================================================

@mcp.tool()
async def install_package(name: str) -> str:
    """Install a package from the package index into the dependency store.

    Args:
        name: Project name, optionally with a version clause (e.g. 'attrs>=23')

    Returns:
        JSON {success, error?}
    """
    return json.dumps(await get_session().install_package(name))


@mcp.tool()
async def uninstall_package(name: str) -> str:
    """Remove a package from the dependency store.

    Args:
        name: Project name as installed

    Returns:
        JSON {success, error?}
    """
    return json.dumps(await get_session().uninstall_package(name))


@mcp.tool()
async def list_packages() -> str:
    """List installed packages and their pinned versions.

    Returns:
        JSON {success, packages?, error?}
    """
    return json.dumps(await get_session().get_packages())
