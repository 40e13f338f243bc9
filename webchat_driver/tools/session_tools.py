"""MCP tools for managing the browser connection."""

from __future__ import annotations

import json

import httpx

from ..config import SESSION_MANAGER_URL


async def _call_session_manager(
    method: str, path: str, json_body: dict | None = None, timeout: float = 300.0
) -> dict:
    """Make a request to the session manager HTTP service."""
    url = f"{SESSION_MANAGER_URL}{path}"
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            if method == "GET":
                resp = await client.get(url, params=json_body)
            else:
                resp = await client.post(url, json=json_body or {})

            if resp.status_code >= 400:
                data = resp.json()
                return {"error": data.get("error", f"HTTP {resp.status_code}"), "status": resp.status_code}
            return resp.json()

    except httpx.ConnectError:
        return {
            "error": "Session Manager is not reachable at "
            f"{SESSION_MANAGER_URL}. It should auto-start with the MCP server. "
            "If running standalone: python -m webchat_driver.automation.manager"
        }
    except httpx.TimeoutException:
        return {"error": "Session Manager timed out. The answer may still be generating."}
    except Exception as e:
        return {"error": f"Failed to connect to Session Manager: {e}"}


async def connect_browser(endpoint: str = "", launch: bool = False, headless: bool = False) -> str:
    """Connect to the chat page in a browser.

    By default attaches to a browser already running with remote debugging
    enabled (e.g. started with --remote-debugging-port=9222). With
    ``launch=True`` a managed Camoufox browser is started instead.

    Args:
        endpoint: Remote-debugging URL, e.g. "http://localhost:9222". Empty uses the configured one.
        launch: Launch a managed browser instead of attaching.
        headless: Only for launch; hide the browser window.

    Returns:
        Connection status message.
    """
    body: dict = {"launch": launch, "headless": headless}
    if endpoint:
        body["endpoint"] = endpoint
    result = await _call_session_manager("POST", "/connect", body)

    if "error" in result:
        return f"Error: {result['error']}"
    return f"Connected. Page: {result.get('current_url', '')}"


async def session_status(check: bool = False) -> str:
    """Report whether the browser is connected and whether a generation is running.

    Args:
        check: Actively probe the browser instead of reporting the last known state.

    Returns:
        JSON-formatted session status.
    """
    result = await _call_session_manager("GET", "/status", {"check": "true"} if check else None)

    if "error" in result:
        return f"Error: {result['error']}"
    return json.dumps(result, indent=2)


async def diagnose_page() -> str:
    """Diagnose the chat page: ready, generating, login needed, error, ..."""
    result = await _call_session_manager("GET", "/diagnose")

    if "error" in result:
        return f"Error: {result['error']}"

    status = result.get("status", "unknown")
    lines = [f"Page status: {status}", f"URL: {result.get('current_url', '')}"]
    if result.get("error_message"):
        lines.append(f"Error on page: {result['error_message']}")
    if status == "login_needed":
        lines.append("Please log in in the browser window, then diagnose again.")
    return "\n".join(lines)


async def recover_page() -> str:
    """Try to bring the page back: dismiss dialogs, click retry, or reload."""
    result = await _call_session_manager("POST", "/recover")

    if "error" in result:
        return f"Error: {result['error']}"

    kind = result.get("kind", "none")
    if kind == "rate_limited":
        return "The site is rate limiting requests. Wait a while before trying again."
    if kind == "session_expired":
        return "The login session expired. Please log in again in the browser window."
    if result.get("recovered"):
        return f"Recovered ({kind})."
    return f"Nothing to recover ({result.get('detail', '')})."


async def recent_logs(limit: int = 50) -> str:
    """Show the latest automation log lines."""
    result = await _call_session_manager("GET", "/logs", {"limit": str(limit)})

    if "error" in result:
        return f"Error: {result['error']}"

    events = result.get("events", [])
    if not events:
        return "No log events yet."
    return "\n".join(f"{e['timestamp']} {e['level']}: {e['message']}" for e in events)


async def disconnect_browser() -> str:
    """Drop the browser connection. An attached browser keeps running."""
    result = await _call_session_manager("POST", "/disconnect")

    if "error" in result:
        return f"Error: {result['error']}"
    return result.get("message", "Disconnected.")
