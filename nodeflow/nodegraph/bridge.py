"""Script runner bridge - sends scripts to a local execution host over HTTP.

Request:  POST {server}/runScript  {"script": "..."}
Response: {"ok": bool, "output": str, "errors": [str]}
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, List, Optional

import requests

from nodeflow import log
from nodeflow.nodegraph.config import DEFAULT_SERVER_URL

if TYPE_CHECKING:
    from nodeflow.nodegraph.auto_exec import HookContext

RUN_SCRIPT_PATH = "/runScript"


class ScriptRunnerError(RuntimeError):
    """Execution host unreachable or answered with an error status."""
    pass


def normalize_server_url(value: Optional[str]) -> str:
    """Add a scheme when missing and strip trailing slashes."""
    text = (value or "").strip()
    if not text:
        return DEFAULT_SERVER_URL
    if "://" not in text:
        text = "http://" + text
    return text.rstrip("/")


@dataclass
class RunResult:
    ok: bool = True
    output: str = ""
    errors: List[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return not self.ok or bool(self.errors)

    @classmethod
    def from_json(cls, data: Any) -> "RunResult":
        if not isinstance(data, dict):
            return cls(ok=False, errors=["Malformed response from execution host"])
        errors = data.get("errors") or []
        if isinstance(errors, str):
            errors = [errors]
        output = data.get("output")
        return cls(
            ok=data.get("ok", True) is not False,
            output="" if output is None else str(output),
            errors=[str(e) for e in errors],
        )


class ScriptRunner:
    """Blocking HTTP client; run_async() moves the request to a worker thread."""

    def __init__(
        self,
        server_url: Optional[str] = None,
        timeout: Optional[float] = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.server_url = normalize_server_url(server_url)
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return self.server_url + RUN_SCRIPT_PATH

    def run(self, script: str) -> RunResult:
        """
        Execute a script on the host.

        Raises:
            ScriptRunnerError: transport failure or non-2xx status.
        """
        try:
            response = self.session.post(self.endpoint, json={"script": script}, timeout=self.timeout)
        except requests.RequestException as e:
            raise ScriptRunnerError(f"Cannot reach execution host at {self.server_url}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.ok:
            message = data.get("error") if isinstance(data, dict) else None
            raise ScriptRunnerError(message or f"HTTP {response.status_code}")

        result = RunResult.from_json(data)
        if result.has_errors:
            log.warn(f"Execution host reported errors: {'; '.join(result.errors) or 'ok=false'}")
        return result

    async def run_async(self, script: str) -> RunResult:
        return await asyncio.to_thread(self.run, script)


def remote_auto_execute(
    runner: ScriptRunner,
    build_script: Callable[["HookContext"], Optional[str]],
    apply_result: Callable[["HookContext", RunResult], None],
):
    """
    Build an auto-execute hook that runs a script on the execution host.

    Args:
        runner: Transport to use.
        build_script: Produces the script from the node context; empty skips the run.
        apply_result: Writes the host output back, usually via context.update_config.
    """

    async def hook(context: "HookContext") -> Optional[RunResult]:
        script = build_script(context)
        if not script:
            return None
        result = await runner.run_async(script)
        if result.has_errors:
            raise ScriptRunnerError("; ".join(result.errors) or "Script execution failed")
        apply_result(context, result)
        return result

    return hook
