from __future__ import annotations

import asyncio
import logging
import subprocess
import threading
from typing import Any, Callable, Dict, List, Optional
from xml.etree import ElementTree

from svn_review.errors import SvnTimeoutError, classify_svn_error

logger = logging.getLogger(__name__)

CommandCallback = Callable[[Optional[BaseException], Any], None]
# executor(command, target, options, callback); the callback may fire from any thread.
CommandExecutor = Callable[[str, str, Dict[str, Any], CommandCallback], None]


async def run_command(
    executor: CommandExecutor,
    command: str,
    target: str,
    options: Dict[str, Any],
    *,
    timeout: float,
) -> Any:
    """Run one executor command and await its callback, bounded by ``timeout`` seconds.

    Whichever of the timer and the callback fires first decides the outcome.
    A callback arriving after the timeout is dropped.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[Any] = loop.create_future()

    def _settle(error: Optional[BaseException], data: Any) -> None:
        if future.done():
            logger.debug("Discarding late result for svn %s", command)
            return
        if error is not None:
            logger.error("SVN command failed: %s", error)
            future.set_exception(classify_svn_error(error))
        else:
            future.set_result(data)

    def _callback(error: Optional[BaseException], data: Any = None) -> None:
        try:
            loop.call_soon_threadsafe(_settle, error, data)
        except RuntimeError:
            logger.debug("Event loop closed before svn %s completed; result dropped", command)

    try:
        executor(command, target, options, _callback)
    except Exception as exc:
        logger.error("SVN command failed to start: %s", exc)
        raise classify_svn_error(exc) from exc

    try:
        return await asyncio.wait_for(future, timeout)
    except asyncio.TimeoutError:
        raise SvnTimeoutError(f"SVN operation timed out after {int(timeout * 1000)}ms") from None


def _element_to_node(element: ElementTree.Element) -> Any:
    children = list(element)
    text = (element.text or "").strip()
    if not children and not element.attrib:
        return text

    node: Dict[str, Any] = {}
    if element.attrib:
        node["$"] = dict(element.attrib)
    if text and not children:
        node["_"] = text
    for child in children:
        node.setdefault(child.tag, []).append(_element_to_node(child))
    return node


def xml_to_payload(xml_text: str) -> Dict[str, Any]:
    """Convert ``svn --xml`` output into the nested payload shape the parsers expect."""
    root = ElementTree.fromstring(xml_text)
    return {root.tag: _element_to_node(root)}


class SvnCliExecutor:
    """Command executor backed by the ``svn`` command line client.

    Each command runs on a daemon thread so the event loop never blocks on the
    subprocess; results are delivered through the callback. The password is
    written to the child's stdin (``--password-from-stdin``, svn 1.10+) so it
    never appears in the process list. A child that outlives ``timeout_ms`` is
    killed.
    """

    _XML_COMMANDS = frozenset({"log", "info"})

    def __init__(
        self,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        binary: str = "svn",
        timeout_ms: Optional[int] = None,
    ) -> None:
        self._username = username
        self._password = password
        self._binary = binary
        self._timeout = timeout_ms / 1000 if timeout_ms else None

    def __call__(self, command: str, target: str, options: Dict[str, Any], callback: CommandCallback) -> None:
        args = self.build_args(command, target, options)
        thread = threading.Thread(
            target=self._run,
            args=(command, args, callback),
            name=f"svn-{command}",
            daemon=True,
        )
        thread.start()

    def build_args(self, command: str, target: str, options: Dict[str, Any]) -> List[str]:
        args = [self._binary, command, target, "--non-interactive"]
        if command in self._XML_COMMANDS:
            args.append("--xml")
        if options.get("revision"):
            args.extend(["-r", str(options["revision"])])
        if options.get("limit"):
            args.extend(["-l", str(options["limit"])])
        if options.get("verbose"):
            args.append("-v")
        if self._username:
            args.extend(["--username", self._username])
        if self._password:
            args.append("--password-from-stdin")
        return args

    def _run(self, command: str, args: List[str], callback: CommandCallback) -> None:
        logger.debug("Running svn %s", command)
        try:
            result = subprocess.run(
                args,
                input=self._password if self._password else None,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired:
            callback(SvnTimeoutError(f"svn {command} killed after {int(self._timeout * 1000)}ms"), None)
            return
        except OSError as exc:
            callback(exc, None)
            return

        if result.returncode != 0:
            callback(RuntimeError(result.stderr.strip() or f"svn {command} exited with {result.returncode}"), None)
            return

        if command not in self._XML_COMMANDS:
            callback(None, result.stdout)
            return

        try:
            payload = xml_to_payload(result.stdout)
        except ElementTree.ParseError as exc:
            callback(exc, None)
            return
        callback(None, payload)
