import argparse
import json
import sys
import time

from . import debug
from .manager import KernelChannels


def _monitor(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(prog="ipychan monitor")
    parser.add_argument("-f", "--connection-file", required=True)
    parser.add_argument("--time-to-dead", type=float, default=None, help="Seconds between heartbeat probes")
    parser.add_argument("--count", type=int, default=0, help="Stop after N checks (0 runs until interrupted)")
    args = parser.parse_args(argv)

    chans = KernelChannels.from_connection_file(args.connection_file, time_to_dead=args.time_to_dead)
    hb = chans.hb_channel
    chans.start_channels(shell=False, iopub=False, stdin=False, control=False)
    hb.unpause()
    beating = True
    checks = 0
    try:
        while not args.count or checks < args.count:
            time.sleep(hb.time_to_dead)
            beating = hb.is_beating()
            print("beating" if beating else "dead", flush=True)
            checks += 1
    except KeyboardInterrupt:
        pass
    finally:
        chans.stop_channels()
    return 0 if beating else 1


def _info(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(prog="ipychan info")
    parser.add_argument("-f", "--connection-file", required=True)
    parser.add_argument("--timeout", type=float, default=5.0)
    args = parser.parse_args(argv)

    chans = KernelChannels.from_connection_file(args.connection_file)
    chans.start_channels(iopub=False, stdin=False, hb=False, control=False)
    shell = chans.shell_channel
    try:
        shell.send("kernel_info_request", {})
        if not shell.socket.poll(int(args.timeout * 1000)):
            print(f"no kernel_info_reply within {args.timeout}s", file=sys.stderr)
            return 1
        reply = shell.receive()
        print(json.dumps(reply["content"], indent=2, default=str))
    finally:
        chans.stop_channels()
    return 0


def main() -> None:
    debug.setup()
    argv = sys.argv[1:]
    if argv and argv[0] == "monitor":
        raise SystemExit(_monitor(argv[1:]))
    if argv and argv[0] == "info":
        raise SystemExit(_info(argv[1:]))
    print("usage: ipychan {monitor,info} -f CONNECTION_FILE", file=sys.stderr)
    raise SystemExit(2)


if __name__ == "__main__":
    main()
