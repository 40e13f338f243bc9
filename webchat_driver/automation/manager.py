"""Session Manager HTTP service.

Runs as a lightweight local web server that bridges the MCP server
to the automated chat page. Owns the single WebChatAutomation instance.

Endpoints:
    POST /connect     - Attach to the browser (or launch one with {"launch": true})
    GET  /status      - Return session state
    GET  /diagnose    - Fresh page diagnosis
    POST /recover     - Try to bring the page back to a usable state
    POST /stop        - Stop the answer currently being generated
    POST /generate    - Send a prompt and wait for the answer
    POST /send        - Send a message without waiting
    POST /wait        - Wait for the current answer to finish
    POST /upload      - Attach a local file
    POST /workflow    - Run the full generation workflow
    GET  /logs        - Recent log events
    POST /disconnect  - Drop the browser connection
"""

from __future__ import annotations

import logging
import sys
from typing import Awaitable, Callable

from aiohttp import web
from pydantic import ValidationError

from ..config import SESSION_MANAGER_HOST, SESSION_MANAGER_PORT
from ..models.workflow import WorkflowRequest
from .automation import WebChatAutomation
from .errors import AutomationBusyError, AutomationError, TransportError

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

Handler = Callable[[web.Request], Awaitable[web.Response]]


async def _read_body(request: web.Request) -> dict:
    body = await request.json() if request.content_length else {}
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object.")
    return body


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.Response:
    """Map engine exceptions onto HTTP status codes with a JSON error body."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except AutomationBusyError as e:
        return web.json_response({"error": str(e)}, status=409)
    except TransportError as e:
        return web.json_response({"error": str(e)}, status=503)
    except (ValidationError, ValueError) as e:
        return web.json_response({"error": f"Invalid params: {e}"}, status=400)
    except AutomationError as e:
        logger.error(f"{request.path} failed: {e}")
        return web.json_response({"error": str(e)}, status=500)
    except Exception as e:
        logger.error(f"{request.path} failed: {e}", exc_info=True)
        return web.json_response({"error": str(e)}, status=500)


# ── HTTP Handlers ────────────────────────────────────────────────────────────


async def handle_connect(request: web.Request) -> web.Response:
    auto: WebChatAutomation = request.app["automation"]
    body = await _read_body(request)

    if body.get("launch"):
        ok = await auto.launch(headless=body.get("headless"))
    else:
        ok = await auto.connect(body.get("endpoint"))

    if not ok:
        return web.json_response({"error": "Could not connect to the browser."}, status=503)
    return web.json_response(auto.status().model_dump(mode="json"))


async def handle_status(request: web.Request) -> web.Response:
    auto: WebChatAutomation = request.app["automation"]
    if request.query.get("check") == "true":
        await auto.ensure_connection()
    return web.json_response(auto.status().model_dump(mode="json"))


async def handle_diagnose(request: web.Request) -> web.Response:
    auto: WebChatAutomation = request.app["automation"]
    diagnosis = await auto.diagnose()
    return web.json_response(diagnosis.model_dump(mode="json"))


async def handle_recover(request: web.Request) -> web.Response:
    auto: WebChatAutomation = request.app["automation"]
    outcome = await auto.recover()
    return web.json_response({**outcome.model_dump(mode="json"), "recovered": outcome.recovered})


async def handle_stop(request: web.Request) -> web.Response:
    auto: WebChatAutomation = request.app["automation"]
    result = await auto.stop_generation()
    return web.json_response(result.model_dump(mode="json"))


async def handle_generate(request: web.Request) -> web.Response:
    auto: WebChatAutomation = request.app["automation"]
    body = await _read_body(request)
    prompt = body.get("prompt", "")
    if not prompt:
        return web.json_response({"error": "prompt is required."}, status=400)

    logger.info(f"[GENERATE] prompt={len(prompt)} chars")
    result = await auto.generate_content(prompt, timeout=body.get("timeout"))
    return web.json_response(result.model_dump(mode="json"))


async def handle_send(request: web.Request) -> web.Response:
    auto: WebChatAutomation = request.app["automation"]
    body = await _read_body(request)
    text = body.get("text", "")
    if not text:
        return web.json_response({"error": "text is required."}, status=400)

    result = await auto.send_message(text)
    return web.json_response(result.model_dump(mode="json"))


async def handle_wait(request: web.Request) -> web.Response:
    auto: WebChatAutomation = request.app["automation"]
    body = await _read_body(request)
    result = await auto.wait_for_response(
        timeout=body.get("timeout"), baseline_count=body.get("baseline_count")
    )
    return web.json_response(result.model_dump(mode="json"))


async def handle_upload(request: web.Request) -> web.Response:
    auto: WebChatAutomation = request.app["automation"]
    body = await _read_body(request)
    file_path = body.get("file_path", "")
    if not file_path:
        return web.json_response({"error": "file_path is required."}, status=400)

    result = await auto.upload_file(file_path)
    return web.json_response(result.model_dump(mode="json"))


async def handle_workflow(request: web.Request) -> web.Response:
    auto: WebChatAutomation = request.app["automation"]
    body = await _read_body(request)
    workflow_request = WorkflowRequest(**body)

    logger.info(
        f"[WORKFLOW] prompt={len(workflow_request.prompt)} chars, "
        f"file={workflow_request.file_path}, model={workflow_request.model}"
    )
    result = await auto.run_workflow(workflow_request)
    return web.json_response(result.model_dump(mode="json"))


async def handle_logs(request: web.Request) -> web.Response:
    auto: WebChatAutomation = request.app["automation"]
    limit = int(request.query.get("limit", "100"))
    events = [event.model_dump() for event in auto.events.recent(limit)]
    return web.json_response({"events": events, "count": len(events)})


async def handle_disconnect(request: web.Request) -> web.Response:
    auto: WebChatAutomation = request.app["automation"]
    await auto.disconnect()
    return web.json_response({"message": "Disconnected. The browser keeps running."})


# ── App Factory ──────────────────────────────────────────────────────────────


async def on_startup(app: web.Application):
    if "automation" not in app:
        app["automation"] = WebChatAutomation()
    logger.info(f"Session Manager started on {SESSION_MANAGER_HOST}:{SESSION_MANAGER_PORT}")


async def on_cleanup(app: web.Application):
    auto: WebChatAutomation = app["automation"]
    await auto.close()
    logger.info("Session Manager stopped.")


def create_app(automation: WebChatAutomation | None = None) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    if automation is not None:
        app["automation"] = automation
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    app.router.add_post("/connect", handle_connect)
    app.router.add_get("/status", handle_status)
    app.router.add_get("/diagnose", handle_diagnose)
    app.router.add_post("/recover", handle_recover)
    app.router.add_post("/stop", handle_stop)
    app.router.add_post("/generate", handle_generate)
    app.router.add_post("/send", handle_send)
    app.router.add_post("/wait", handle_wait)
    app.router.add_post("/upload", handle_upload)
    app.router.add_post("/workflow", handle_workflow)
    app.router.add_get("/logs", handle_logs)
    app.router.add_post("/disconnect", handle_disconnect)

    return app


def main():
    """Run the session manager as a standalone HTTP service."""
    app = create_app()
    web.run_app(app, host=SESSION_MANAGER_HOST, port=SESSION_MANAGER_PORT)


if __name__ == "__main__":
    main()
