"""
Sandboxed JavaScript execution.

``ExecutionBridge`` pairs each request with its single reply through a
correlation token. The isolation boundary itself is a channel; the default
``NodeSandboxChannel`` runs code inside a separate ``node`` process using a
fresh ``vm`` context, so executed code never sees this process.
"""

import asyncio
import json
import logging
import os
import shutil
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import ExecutionTimeoutError

logger = logging.getLogger(__name__)

EXECUTE = "execute"
EXECUTE_RESULT = "execute-result"

# The runner gets no host secrets; string code generation is off so sandboxed
# code cannot build a Function in the host realm to reach `process`.
NODE_FLAGS = ("--disallow-code-generation-from-strings",)
RUNNER_ENV_KEYS = ("PATH", "SYSTEMROOT")

NODE_RUNNER = r"""
const vm = require('vm');
const readline = require('readline');
const rl = readline.createInterface({ input: process.stdin });
const fmt = (v) => (typeof v === 'string' ? v : JSON.stringify(v));
rl.on('line', async (line) => {
  let msg;
  try { msg = JSON.parse(line); } catch (e) { return; }
  if (!msg || msg.type !== 'execute') return;
  const out = [];
  const log = (...args) => out.push(args.map(fmt).join(' '));
  const sandbox = { console: { log, info: log, warn: log, error: log } };
  let reply;
  try {
    let value = vm.runInNewContext(String(msg.code || ''), sandbox, { timeout: %(cpu_ms)d });
    if (value && typeof value.then === 'function') value = await value;
    if (value !== undefined) out.push(fmt(value));
    reply = { ok: true, stdout: out.join('\n'), error: null };
  } catch (e) {
    reply = { ok: false, stdout: out.join('\n'), error: String((e && e.message) || e) };
  }
  process.stdout.write(JSON.stringify({ type: 'execute-result', token: msg.token, ...reply }) + '\n');
});
"""


class ExecutionBridge:
    """Request/response correlation across the sandbox boundary.

    Every request registers a one-shot future under its token and removes it
    when it resolves, times out or is cancelled.
    """

    def __init__(self, send: Callable[[Dict[str, Any]], Awaitable[None]]):
        self._send = send
        self._pending: Dict[str, asyncio.Future] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def execute(self, code: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Run ``code`` and return ``{"ok", "stdout", "error"}``.

        Raises:
            ExecutionTimeoutError: if no reply arrives within ``timeout`` seconds.
        """
        token = f"exec-{uuid.uuid4().hex}"
        future = asyncio.get_running_loop().create_future()
        self._pending[token] = future
        try:
            await self._send({"type": EXECUTE, "token": token, "code": code})
            reply = await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise ExecutionTimeoutError(f"Execution timed out after {timeout}s") from None
        finally:
            self._pending.pop(token, None)

        return {
            "ok": bool(reply.get("ok")),
            "stdout": reply.get("stdout") or "",
            "error": reply.get("error"),
        }

    def handle_message(self, message: Dict[str, Any]) -> bool:
        """Route a reply from the sandbox; returns True if it matched a request."""
        if not isinstance(message, dict) or message.get("type") != EXECUTE_RESULT:
            return False
        future = self._pending.get(message.get("token"))
        if future is None or future.done():
            logger.debug(f"SANDBOX: dropping reply for unknown token {message.get('token')}")
            return False
        future.set_result(message)
        return True

    def fail_all(self, error: BaseException) -> None:
        """Fail every outstanding request, e.g. when the channel dies."""
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)


def runner_env() -> Dict[str, str]:
    """Minimal environment for the runner process."""
    return {key: os.environ[key] for key in RUNNER_ENV_KEYS if key in os.environ}


class NodeSandboxChannel:
    """Runs the bridge over newline-delimited JSON to a ``node`` subprocess.

    A runner that misses a deadline is killed, and the next request starts a
    fresh one. The ``vm`` timeout only bounds synchronous code, so a runner
    stuck in a microtask loop would otherwise hang every later request.
    """

    def __init__(self, node_path: Optional[str] = None, cpu_timeout_ms: int = 5000):
        self.node_path = node_path or shutil.which("node") or "node"
        self.cpu_timeout_ms = cpu_timeout_ms
        self.bridge = ExecutionBridge(self._send)
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._start_lock = asyncio.Lock()

    async def execute(self, code: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        try:
            return await self.bridge.execute(code, timeout)
        except ExecutionTimeoutError:
            logger.warning("SANDBOX: runner missed its deadline, restarting")
            await self.close()
            raise

    async def _ensure_started(self) -> asyncio.subprocess.Process:
        async with self._start_lock:
            if self._process is None or self._process.returncode is not None:
                runner = NODE_RUNNER % {"cpu_ms": self.cpu_timeout_ms}
                self._process = await asyncio.create_subprocess_exec(
                    self.node_path,
                    *NODE_FLAGS,
                    "-e",
                    runner,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.DEVNULL,
                    env=runner_env(),
                )
                self._reader_task = asyncio.create_task(self._read_replies(self._process))
                logger.info(f"SANDBOX: started node runner (pid {self._process.pid})")
            return self._process

    async def _send(self, message: Dict[str, Any]) -> None:
        process = await self._ensure_started()
        process.stdin.write((json.dumps(message) + "\n").encode("utf-8"))
        await process.stdin.drain()

    async def _read_replies(self, process: asyncio.subprocess.Process) -> None:
        while True:
            line = await process.stdout.readline()
            if not line:
                break
            try:
                message = json.loads(line)
            except json.JSONDecodeError:
                logger.debug(f"SANDBOX: ignoring non-JSON output {line[:80]!r}")
                continue
            self.bridge.handle_message(message)
        logger.warning("SANDBOX: node runner exited")
        self.bridge.fail_all(RuntimeError("Sandbox process exited"))

    async def close(self) -> None:
        if self._reader_task:
            self._reader_task.cancel()
        if self._process and self._process.returncode is None:
            self._process.kill()
            await self._process.wait()
        self.bridge.fail_all(RuntimeError("Sandbox closed"))
        self._process = None
        self._reader_task = None
