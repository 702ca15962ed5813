"Env-switched diagnostics: `IPYCHAN_DEBUG` for stderr tracing, `IPYCHAN_DEBUG_MSGS` for per-message flow logs."
import logging, os, sys, threading

def envbool(name: str)->bool:
    v = (os.environ.get(name) or "").strip().lower()
    return v not in ("", "0", "false", "no")

enabled = envbool("IPYCHAN_DEBUG")
trace_msgs = envbool("IPYCHAN_DEBUG_MSGS")
_lock = threading.Lock()

def dbg(*args, **kw):
    if not enabled: return
    with _lock: print("[ipychan]", *args, **kw, file=sys.__stderr__, flush=True)

def setup():
    "Send the `ipychan` loggers to stderr at DEBUG when IPYCHAN_DEBUG is set."
    if not enabled: return
    pkg = logging.getLogger("ipychan")
    if pkg.handlers: return
    handler = logging.StreamHandler(sys.__stderr__)
    handler.setFormatter(logging.Formatter("%(asctime)s %(threadName)s %(name)s: %(message)s"))
    pkg.addHandler(handler)
    pkg.setLevel(logging.DEBUG)

def tlog(log, label: str, msg: dict|None):
    "One line per message crossing a channel: label, msg_type, msg_id, parent msg_id."
    if not trace_msgs or not msg: return
    log.info("%s %s id=%s parent=%s", label, msg.get("msg_type") or msg.get("header", {}).get("msg_type"),
        msg.get("header", {}).get("msg_id"), msg.get("parent_header", {}).get("msg_id"))
