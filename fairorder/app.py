"""
Command line entry point

    fairorder serve [--host H] [--port P]
    fairorder join --peers N --index I [--router URL] [--cipher keystream|sra]
    fairorder simulate --peers N [--mean S] [--stddev S] [--cipher keystream|sra]
"""
import argparse
import asyncio
import sys

from fairorder.config import PROTOCOL_CONFIG, NETWORK_CONFIG, LATENCY_CONFIG
from fairorder.errors import ConsensusError
from fairorder.http_server import run_router_server
from fairorder.main import join_network_run, simulate_run
from fairorder.service.cipher import CIPHERS, get_cipher


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fairorder", description="Fair turn order among distrusting peers")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="run a relay router")
    serve.add_argument("--host", default=NETWORK_CONFIG["router_host"])
    serve.add_argument("--port", type=int, default=NETWORK_CONFIG["router_port"])

    for name, help_text in (("join", "join a run through a relay router"),
                            ("simulate", "run all peers in this process")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--peers", type=int, required=True)
        cmd.add_argument("--cipher", choices=sorted(CIPHERS), default=PROTOCOL_CONFIG["cipher"])
        cmd.add_argument("--timeout", type=float, default=PROTOCOL_CONFIG["run_timeout"])

    join = sub.choices["join"]
    join.add_argument("--index", type=int, required=True)
    join.add_argument("--router", default=NETWORK_CONFIG["router_address"])

    simulate = sub.choices["simulate"]
    simulate.add_argument("--mean", type=float, default=LATENCY_CONFIG["mean"])
    simulate.add_argument("--stddev", type=float, default=LATENCY_CONFIG["stddev"])
    simulate.add_argument("--debug", action="store_true", default=PROTOCOL_CONFIG["debug"])

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        run_router_server(args.host, args.port)
        return 0

    try:
        if args.command == "join":
            order = asyncio.run(join_network_run(
                args.peers, args.index, args.router, args.timeout, get_cipher(args.cipher)
            ))
        else:
            order = asyncio.run(simulate_run(
                args.peers, args.mean, args.stddev, args.timeout, get_cipher(args.cipher), args.debug
            ))
    except ConsensusError as e:
        print(f"✗ {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    print(" ".join(str(peer) for peer in order))
    return 0


if __name__ == "__main__":
    sys.exit(main())
