"""Local stand-in for a CLI agent, used by backend integration tests.

Accepts the argv shapes of every supported adapter and answers with a fenced
JSON block describing the prompt it received.  Behaviour is steered through
environment variables:

- ``ECHO_AGENT_EXIT_CODE``: exit status (default 0).
- ``ECHO_AGENT_STDERR``: text written to stderr.
- ``ECHO_AGENT_OUTPUT``: verbatim stdout instead of the JSON reply.
- ``ECHO_AGENT_SLEEP``: seconds to sleep before answering.
- ``ECHO_AGENT_IGNORE_SIGTERM``: ignore SIGTERM when set to 1.
- ``ECHO_AGENT_HELPER_PID_FILE``: start a SIGTERM-ignoring helper in the same
  process group and write its pid to this file.
"""

from __future__ import annotations

import argparse
import json
import os
import signal
import subprocess
import sys
import time
from pathlib import Path

_HELPER_CODE = (
    "import signal, time\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "time.sleep(600)\n"
)


def main(argv: list[str] | None = None) -> int:
    """Echo the received prompt as a JSON reply."""

    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("-p", "--prompt", nargs="?", default=None)
    parser.add_argument("--output-format", default="text")
    parser.add_argument("--model", default=None)
    args, rest = parser.parse_known_args(argv)

    if os.getenv("ECHO_AGENT_IGNORE_SIGTERM") == "1":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    helper_pid_file = os.getenv("ECHO_AGENT_HELPER_PID_FILE")
    if helper_pid_file:
        helper = subprocess.Popen([sys.executable, "-c", _HELPER_CODE])  # noqa: S603
        Path(helper_pid_file).write_text(str(helper.pid), "utf-8")

    positional = [item for item in rest if item != "exec"]
    prompt = args.prompt if args.prompt is not None else (positional[-1] if positional else "-")
    delivery = "argv"
    if prompt == "-":
        prompt = sys.stdin.read()
        delivery = "stdin"

    sleep_seconds = float(os.getenv("ECHO_AGENT_SLEEP", "0"))
    if sleep_seconds > 0:
        time.sleep(sleep_seconds)

    stderr_text = os.getenv("ECHO_AGENT_STDERR")
    if stderr_text:
        sys.stderr.write(stderr_text + "\n")

    verbatim = os.getenv("ECHO_AGENT_OUTPUT")
    if verbatim is not None:
        sys.stdout.write(verbatim)
    else:
        reply = {
            "echo": prompt.strip()[:200],
            "prompt_chars": len(prompt),
            "delivery": delivery,
            "model": args.model,
        }
        sys.stdout.write(
            "Here is the result.\n```json\n" + json.dumps(reply, indent=2) + "\n```\nDone.\n",
        )
    sys.stdout.flush()
    return int(os.getenv("ECHO_AGENT_EXIT_CODE", "0"))


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
