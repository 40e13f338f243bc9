"""MCP tools for generating content through the chat page."""

from __future__ import annotations

from .session_tools import _call_session_manager


def _format_wait(result: dict) -> str:
    outcome = result.get("outcome", "unknown")
    text = result.get("text", "")
    if outcome == "completed":
        return text
    if outcome == "image":
        return "An image was generated. Use run_workflow with expect_image=True to extract it."
    if outcome == "timeout":
        partial = f"\n\nPartial answer:\n{text}" if text else ""
        return f"Timed out after {result.get('elapsed', 0):.0f}s.{partial}"
    return f"Generation failed: {result.get('detail', '')}"


async def generate(prompt: str, timeout: float = 0) -> str:
    """Send a prompt on the current chat page and return the answer.

    Args:
        prompt: Text to send.
        timeout: Seconds to wait for the answer (0 uses the configured default).

    Returns:
        The answer text, or a status message.
    """
    body: dict = {"prompt": prompt}
    if timeout:
        body["timeout"] = timeout
    result = await _call_session_manager("POST", "/generate", body)

    if "error" in result:
        return f"Error: {result['error']}"
    return _format_wait(result)


async def run_workflow(
    prompt: str,
    fallback_prompt: str = "",
    file_path: str = "",
    model: str = "",
    image_generation: bool = False,
    expect_image: bool = False,
    cleanup: bool = False,
    accept_partial: bool = False,
) -> str:
    """Run the full workflow: new chat, mode, upload, send, wait, extract, cleanup.

    Retries the whole sequence on failure, switching to the fallback prompt
    on the last attempt.

    Returns:
        The answer text (or a note about the extracted image), or a failure summary.
    """
    body = {
        "prompt": prompt,
        "fallback_prompt": fallback_prompt,
        "file_path": file_path or None,
        "model": model or None,
        "image_generation": image_generation,
        "expect_image": expect_image,
        "cleanup": cleanup,
        "accept_partial": accept_partial,
    }
    result = await _call_session_manager("POST", "/workflow", body, timeout=1800.0)

    if "error" in result:
        return f"Error: {result['error']}"

    attempts = result.get("attempts", 0)
    if not result.get("success"):
        lines = [f"Workflow failed after {attempts} attempts ({result.get('failure', 'unknown')})."]
        for record in result.get("history", []):
            lines.append(
                f"  attempt {record['attempt']} ({record['prompt_kind']}): "
                f"{record.get('failed_stage')} - {record.get('detail', '')}"
            )
        return "\n".join(lines)

    if result.get("image_base64"):
        size = len(result["image_base64"]) * 3 // 4
        note = f"Generated image extracted (~{size:,} bytes, base64)."
        return f"{note}\n\n{result.get('text', '')}".strip()
    return result.get("text", "")


async def upload_file(file_path: str) -> str:
    """Attach a local file to the chat input."""
    result = await _call_session_manager("POST", "/upload", {"file_path": file_path})

    if "error" in result:
        return f"Error: {result['error']}"
    if not result.get("ok"):
        return f"Upload failed: {result.get('status', '')}"
    return f"Attached via {result.get('strategy')}."


async def stop_generation() -> str:
    """Stop the answer that is currently being generated."""
    result = await _call_session_manager("POST", "/stop")

    if "error" in result:
        return f"Error: {result['error']}"
    if not result.get("ok"):
        return "Nothing is being generated."
    return "Generation stopped."
