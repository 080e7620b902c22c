"""Questions about the loaded telemetry, answered via claude -p."""

import asyncio
import json
import logging
import subprocess
from dataclasses import dataclass

logger = logging.getLogger(__name__)

HISTORY_TURNS = 6
# The subprocess must die before the dispatcher gives up on the task.
PROCESS_TIMEOUT_SHARE = 0.9


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str
    error: bool = False


class ChatError(Exception):
    pass


def compose_prompt(context: list[str], history: list[ChatMessage], message: str) -> str:
    """Build a single prompt from the browser context, recent turns and the question."""
    turns = [m for m in history if not m.error][-HISTORY_TURNS:]
    convo = "\n".join(f"{m.role.upper()}: {m.content}" for m in turns)
    return f"""You are helping a developer read OpenTelemetry data in a terminal browser.
Answer briefly and concretely. Refer to field names and values you can see.

CURRENT VIEW:
{chr(10).join(context)}

CONVERSATION SO FAR:
{convo or "(none)"}

QUESTION:
{message}"""


def _parse_output(output: str) -> str:
    parsed = json.loads(output)
    if isinstance(parsed, dict):
        if parsed.get("is_error"):
            raise ChatError(str(parsed.get("result") or "claude reported an error"))
        result = parsed.get("result")
        if isinstance(result, str):
            return result.strip()
    return str(parsed)


class ChatClient:
    """Thin wrapper over the claude CLI. One subprocess per question."""

    def __init__(self, command: str = "claude", model: str | None = None, timeout: float = 60):
        self.command = command
        self.model = model
        self.timeout = timeout
        self.process_timeout = timeout * PROCESS_TIMEOUT_SHARE

    def _cmd(self, prompt: str) -> list[str]:
        cmd = [self.command, "-p", prompt, "--no-session-persistence", "--output-format", "json"]
        if self.model:
            cmd.extend(["--model", self.model])
        return cmd

    def ask_sync(self, prompt: str) -> str:
        try:
            result = subprocess.run(self._cmd(prompt), capture_output=True, text=True,
                                    timeout=self.process_timeout, stdin=subprocess.DEVNULL)
        except FileNotFoundError as e:
            raise ChatError(f"{self.command} not found on PATH") from e
        except subprocess.TimeoutExpired as e:
            raise ChatError(f"no answer within {self.process_timeout:.0f}s") from e

        if result.returncode != 0 and not result.stdout.strip():
            raise ChatError(result.stderr.strip() or f"{self.command} exited with {result.returncode}")
        try:
            return _parse_output(result.stdout.strip())
        except json.JSONDecodeError:
            logger.debug("chat output was not JSON, using raw text")
            return result.stdout.strip()

    async def ask(self, prompt: str) -> str:
        return await asyncio.to_thread(self.ask_sync, prompt)
