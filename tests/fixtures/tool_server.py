"""
Line-delimited JSON-RPC tool server used by the integration tests.

Run as a script: ``python tool_server.py [flags]``. Reads one request per
line from stdin and writes one reply per line to stdout. Every request is
handled on its own thread so slow calls do not block fast ones.

Methods:
    ping            -> "pong"
    tools/list      -> {"tools": [...]}
    read(path)      -> text of a file under the sandbox root
    echo(**params)  -> params, unchanged
    sleep(seconds)  -> seconds, after sleeping
    fail(message)   -> JSON-RPC fault -32000

Flags:
    --never-ready           ignore every ping
    --ping-once             answer only the first ping
    --fail-first N          exit at once on the first N starts (needs --count-file)
    --count-file PATH       append one line per start
    --exit-after SECONDS    exit once ready, on the first start only (needs --count-file)
    --spawn-child           start a long-sleeping child in the same process group
    --ignore-sigterm        ignore SIGTERM
"""

import argparse
import json
import os
import signal
import subprocess
import sys
import threading
import time

SANDBOX_ENV_VAR = "TOOL_BRIDGE_SANDBOX_ROOT"

TOOLS = [
    {
        "name": "read",
        "description": "Read a text file under the sandbox root",
        "parameters": {
            "type": "object",
            "properties": {"path": {"type": "string"}},
            "required": ["path"],
        },
    },
    {
        "name": "echo",
        "description": "Return the arguments unchanged",
        "parameters": {"type": "object", "properties": {}, "additionalProperties": True},
    },
    {
        "name": "sleep",
        "description": "Sleep, then return the duration",
        "parameters": {
            "type": "object",
            "properties": {"seconds": {"type": "number"}},
            "required": ["seconds"],
        },
    },
    {
        "name": "fail",
        "description": "Always fail",
        "parameters": {
            "type": "object",
            "properties": {"message": {"type": "string"}},
        },
    },
]

_write_lock = threading.Lock()
_pings = 0
_pings_lock = threading.Lock()


class ToolFault(Exception):
    def __init__(self, code, message):
        super().__init__(message)
        self.code = code
        self.message = message


def send(payload):
    with _write_lock:
        sys.stdout.write(json.dumps(payload) + "\n")
        sys.stdout.flush()


def read_file(params):
    root = os.environ.get(SANDBOX_ENV_VAR, os.getcwd())
    path = os.path.normpath(os.path.join(root, str(params["path"]).lstrip("/")))
    if not path.startswith(os.path.normpath(root)):
        raise ToolFault(-32001, "path escapes the sandbox")
    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        raise ToolFault(-32002, str(e))


def handle(request, args, on_ready):
    global _pings
    method = request.get("method")
    params = request.get("params") or {}

    if method == "ping":
        if args.never_ready:
            return None
        with _pings_lock:
            _pings += 1
            first = _pings == 1
        if args.ping_once and not first:
            return None
        if first:
            on_ready()
        return "pong"
    if method == "tools/list":
        return {"tools": TOOLS}
    if method == "read":
        return read_file(params)
    if method == "echo":
        return params
    if method == "sleep":
        time.sleep(float(params.get("seconds", 0)))
        return params.get("seconds", 0)
    if method == "fail":
        raise ToolFault(-32000, params.get("message", "tool failed"))
    raise ToolFault(-32601, f"Method not found: {method}")


def serve(request, args, on_ready):
    request_id = request.get("id")
    try:
        result = handle(request, args, on_ready)
    except ToolFault as e:
        send({"jsonrpc": "2.0", "error": {"code": e.code, "message": e.message}, "id": request_id})
        return
    if result is None:
        return
    send({"jsonrpc": "2.0", "result": result, "id": request_id})


def record_start(count_file):
    """Append a start marker and return how many starts happened, this one included."""
    if not count_file:
        return 1
    with open(count_file, "a", encoding="utf-8") as f:
        f.write(f"{os.getpid()}\n")
    with open(count_file, encoding="utf-8") as f:
        return sum(1 for _ in f)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--never-ready", action="store_true")
    parser.add_argument("--ping-once", action="store_true")
    parser.add_argument("--fail-first", type=int, default=0)
    parser.add_argument("--count-file")
    parser.add_argument("--exit-after", type=float)
    parser.add_argument("--spawn-child", action="store_true")
    parser.add_argument("--ignore-sigterm", action="store_true")
    args = parser.parse_args()

    if args.ignore_sigterm:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    start_number = record_start(args.count_file)
    if start_number <= args.fail_first:
        sys.stderr.write(f"failing start {start_number}\n")
        sys.exit(3)

    if args.spawn_child:
        subprocess.Popen(
            [sys.executable, "-c", "import time; time.sleep(600)"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
        )

    def on_ready():
        if args.exit_after is not None and start_number == 1:
            timer = threading.Timer(args.exit_after, os._exit, args=(4,))
            timer.daemon = True
            timer.start()

    sys.stderr.write("tool server ready for requests\n")
    sys.stderr.flush()

    while True:
        line = sys.stdin.readline()
        if not line:
            break
        line = line.strip()
        if not line:
            continue
        try:
            request = json.loads(line)
        except json.JSONDecodeError:
            send({"jsonrpc": "2.0", "error": {"code": -32700, "message": "Parse error"}, "id": None})
            continue
        threading.Thread(target=serve, args=(request, args, on_ready), daemon=True).start()


if __name__ == "__main__":
    main()
