"""MCP Server entry point for the web chat driver.

Exposes tools via the Model Context Protocol:
- Connection: connect_browser, session_status, diagnose_page, recover_page,
  recent_logs, disconnect_browser
- Generation: generate, run_workflow, upload_file, stop_generation

The Session Manager HTTP service (aiohttp on localhost:8025) is auto-started
as part of the MCP server lifecycle, so no separate process is needed.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from aiohttp.web import AppRunner, TCPSite
from mcp.server.fastmcp import FastMCP

from .config import LOG_LEVEL, SESSION_MANAGER_HOST, SESSION_MANAGER_PORT
from .tools.generation_tools import generate, run_workflow, stop_generation, upload_file
from .tools.session_tools import (
    connect_browser,
    diagnose_page,
    disconnect_browser,
    recent_logs,
    recover_page,
    session_status,
)

# Configure logging to stderr (stdout is reserved for MCP JSON-RPC)
logging.basicConfig(
    stream=sys.stderr,
    level=LOG_LEVEL,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("webchat-driver")


# ── Lifespan: auto-start Session Manager ─────────────────────────────────────


@asynccontextmanager
async def lifespan(server: FastMCP):
    """Start the Session Manager HTTP service alongside the MCP server."""
    from .automation.manager import create_app

    app = create_app()
    runner = AppRunner(app)
    await runner.setup()
    site = TCPSite(runner, SESSION_MANAGER_HOST, SESSION_MANAGER_PORT)
    managed = False
    try:
        await site.start()
        logger.info(
            "Session Manager auto-started on %s:%s", SESSION_MANAGER_HOST, SESSION_MANAGER_PORT
        )
        managed = True
    except OSError:
        # Port already in use: assume the Session Manager was started manually
        logger.info(
            "Session Manager already running on %s:%s", SESSION_MANAGER_HOST, SESSION_MANAGER_PORT
        )
        await runner.cleanup()

    try:
        yield {}
    finally:
        if managed:
            await runner.cleanup()
            logger.info("Session Manager stopped.")


# ── MCP Server ───────────────────────────────────────────────────────────────

mcp = FastMCP(
    "webchat-driver",
    lifespan=lifespan,
    instructions=(
        "Web Chat Driver - Tools to generate text and images through a chat web UI "
        "running in a real browser. The Session Manager starts automatically with this server. "
        "Call connect_browser first (the browser must run with remote debugging enabled, "
        "or pass launch=True). Use diagnose_page if something looks wrong and recover_page "
        "to dismiss errors. Use generate for a quick prompt on the current chat, or "
        "run_workflow for a fresh chat with optional file upload, retries and cleanup."
    ),
)


# ── Connection Tools ─────────────────────────────────────────────────────────


@mcp.tool()
async def tool_connect_browser(endpoint: str = "", launch: bool = False, headless: bool = False) -> str:
    """Connect to the chat page.

    Attaches to a browser started with --remote-debugging-port, or launches
    a managed Camoufox browser when launch=True.

    Args:
        endpoint: Remote-debugging URL (empty = configured default).
        launch: Launch a managed browser instead of attaching.
        headless: Hide the launched browser window.
    """
    return await connect_browser(endpoint, launch, headless)


@mcp.tool()
async def tool_session_status(check: bool = False) -> str:
    """Check whether the browser is connected and whether a generation is running.

    Args:
        check: Actively probe the browser connection.
    """
    return await session_status(check)


@mcp.tool()
async def tool_diagnose_page() -> str:
    """Diagnose the chat page (ready, generating, login needed, error...)."""
    return await diagnose_page()


@mcp.tool()
async def tool_recover_page() -> str:
    """Dismiss error dialogs, click retry, or reload a broken page."""
    return await recover_page()


@mcp.tool()
async def tool_recent_logs(limit: int = 50) -> str:
    """Show the latest automation log lines.

    Args:
        limit: Number of lines (default 50).
    """
    return await recent_logs(limit)


@mcp.tool()
async def tool_disconnect_browser() -> str:
    """Drop the browser connection. An attached browser keeps running."""
    return await disconnect_browser()


# ── Generation Tools ─────────────────────────────────────────────────────────


@mcp.tool()
async def tool_generate(prompt: str, timeout: float = 0) -> str:
    """Send a prompt on the current chat and return the answer.

    Args:
        prompt: Text to send.
        timeout: Seconds to wait for the answer (0 = default).
    """
    return await generate(prompt, timeout)


@mcp.tool()
async def tool_run_workflow(
    prompt: str,
    fallback_prompt: str = "",
    file_path: str = "",
    model: str = "",
    image_generation: bool = False,
    expect_image: bool = False,
    cleanup: bool = False,
    accept_partial: bool = False,
) -> str:
    """Run a full generation in a fresh chat, with retries.

    Args:
        prompt: Main prompt.
        fallback_prompt: Simpler prompt used on the last attempt.
        file_path: Local file to attach (optional).
        model: "pro" or "flash" (empty = leave as is).
        image_generation: Switch on the image generation tool first.
        expect_image: Extract the generated image instead of text.
        cleanup: Delete the chat afterwards.
        accept_partial: Accept a partial answer if the wait times out.
    """
    return await run_workflow(
        prompt, fallback_prompt, file_path, model,
        image_generation, expect_image, cleanup, accept_partial,
    )


@mcp.tool()
async def tool_upload_file(file_path: str) -> str:
    """Attach a local file to the chat input.

    Args:
        file_path: Absolute path of the file.
    """
    return await upload_file(file_path)


@mcp.tool()
async def tool_stop_generation() -> str:
    """Stop the answer that is currently being generated."""
    return await stop_generation()


# ── Entry Point ──────────────────────────────────────────────────────────────


def main():
    """Run the MCP server on STDIO transport."""
    logger.info("Starting Web Chat Driver MCP server...")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
