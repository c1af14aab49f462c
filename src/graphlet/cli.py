"""CLI for graphlet-tools: import captures, scan and render HPG edge streams."""
from __future__ import annotations

import argparse
import json
import logging
import sys

from .config import PROFILES, load_settings
from .edges import EdgeStream
from .errors import CapacityError, FormatError, GraphletError, SourceError
from .flow import FlowAggregator, qualify_uniflows
from .ingest import import_pcap, write_flows
from .logging_config import setup_logging
from .render import DotRenderer, write_dot
from .scanner import GraphletIndex, scan
from . import __version__

log = logging.getLogger("graphlet.cli")

EXIT_OK = 0
EXIT_FORMAT = 2
EXIT_CAPACITY = 3
EXIT_SOURCE = 4


def build_parser():
    p = argparse.ArgumentParser(prog="graphlet", description="Host graphlet import, scan and DOT rendering")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--log", default="INFO", help="Log level")
    p.add_argument("--config", help="JSON settings file", metavar="FILE")
    p.add_argument("--profile", choices=sorted(PROFILES), default="default", help="Settings preset")
    sub = p.add_subparsers(dest="cmd")

    i = sub.add_parser("import", help="Aggregate a pcap/pcapng capture into a JSON flow list")
    i.add_argument("pcap", help="Path to pcap/pcapng")
    i.add_argument("--out", required=True, help="Path of the JSON flow list", metavar="FILE")
    i.add_argument("--local-net", help="Local network address (default 10.0.0.0)")
    i.add_argument("--prefix", type=int, dest="prefix_len", help="Local network prefix length (default 8)")
    i.add_argument("--max-flows", type=int, help="Abort when more distinct flows are seen")

    s = sub.add_parser("scan", help="List the graphlets of an HPG edge stream")
    s.add_argument("hpg", help="Path to the .hpg edge stream")
    s.add_argument("--json", action="store_true", help="Emit canonical JSON instead of a table")

    r = sub.add_parser("render", help="Render one graphlet as Graphviz DOT")
    r.add_argument("hpg", help="Path to the .hpg edge stream")
    which = r.add_mutually_exclusive_group()
    which.add_argument("--graphlet", type=int, default=0, help="Graphlet counter (0-based, default 0)")
    which.add_argument("--tag", type=int, help="On-disk graphlet number instead of the counter")
    r.add_argument("--out", help="Write DOT here instead of stdout", metavar="FILE")
    r.add_argument("--no-packet-counts", action="store_true", help="Label edges with bytes/flows only")
    r.add_argument("--role-numbers", action="store_true", default=None, help="Show role numbers in summary labels")

    d = sub.add_parser("describe", help="Print edges one per line")
    d.add_argument("hpg", help="Path to the .hpg edge stream")
    d.add_argument("--start", type=int, default=0, help="First edge index")
    d.add_argument("--count", type=int, default=None, help="Number of edges (default: all)")
    return p, {"import": i, "scan": s, "render": r, "describe": d}


def _cmd_import(args, settings) -> int:
    agg = FlowAggregator(settings.local_net_bytes, settings.netmask, max_flows=settings.max_flows)
    pkt_count, parsed_count = import_pcap(args.pcap, agg)
    records = agg.records()
    qualify_uniflows(records)
    write_flows(records, args.out)
    print(f"graphlet v{__version__} - Processed {pkt_count} packets ({parsed_count} parsed), flows={len(records)}")
    return EXIT_OK


def _progress(done: int, total: int):
    log.info("scan progress %d/%d edges", done, total)


def _cmd_scan(args, settings) -> int:
    stream = EdgeStream.load(args.hpg)
    graphlets = scan(stream, progress=_progress, progress_interval=settings.progress_interval)
    if args.json:
        print(json.dumps([g.to_dict() for g in graphlets], sort_keys=True, separators=(",", ":")))
        return EXIT_OK
    print(f"{'nr':>6} {'tag':>6} {'start':>8} {'edges':>7} {'prot':>5} {'lport':>6} {'rport':>6} {'rip':>6} {'bytes':>12}")
    for g in graphlets:
        tb = "-" if g.total_bytes is None else str(g.total_bytes)
        print(
            f"{g.number:>6} {g.tag_number:>6} {g.start_index:>8} {g.edge_count:>7} {g.protocol_count:>5} "
            f"{g.local_port_count:>6} {g.remote_port_count:>6} {g.remote_ip_count:>6} {tb:>12}"
        )
    return EXIT_OK


def _cmd_render(args, settings) -> int:
    stream = EdgeStream.load(args.hpg)
    index = GraphletIndex.from_stream(stream, progress_interval=settings.progress_interval)
    try:
        graphlet = index.by_tag(args.tag) if args.tag is not None else index.by_number(args.graphlet)
    except KeyError as e:
        log.error("%s", e.args[0])
        return EXIT_FORMAT
    renderer = DotRenderer(
        show_packet_counts=settings.show_packet_counts and not args.no_packet_counts,
        show_role_numbers=settings.show_role_numbers,
    )
    text = renderer.render_graphlet(stream, graphlet)
    if args.out:
        write_dot(text, args.out)
        log.info("wrote graphlet %d to %s", graphlet.number, args.out)
    else:
        sys.stdout.write(text)
    return EXIT_OK


def _cmd_describe(args, settings) -> int:
    stream = EdgeStream.load(args.hpg)
    stop = len(stream) if args.count is None else min(len(stream), args.start + args.count)
    for i in range(max(0, args.start), stop):
        print(f"{i:>8} @{stream.offset_of(i):>10}  {stream[i].describe()}")
    return EXIT_OK


_COMMANDS = {
    "import": _cmd_import,
    "scan": _cmd_scan,
    "render": _cmd_render,
    "describe": _cmd_describe,
}


def main(argv=None) -> int:
    parser, _ = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log)
    if args.cmd is None:
        parser.print_help()
        return EXIT_OK

    overrides = {}
    if args.cmd == "import":
        overrides = {"local_net": args.local_net, "prefix_len": args.prefix_len, "max_flows": args.max_flows}
    elif args.cmd == "render":
        overrides = {"show_role_numbers": args.role_numbers}
    try:
        settings = load_settings(args.config, profile=args.profile, **overrides)
    except (ValueError, SourceError) as e:
        log.error("invalid settings: %s", e)
        return EXIT_SOURCE if isinstance(e, SourceError) else EXIT_FORMAT

    log.info("%s requested for: %s", args.cmd, getattr(args, "pcap", None) or getattr(args, "hpg", None))
    try:
        return _COMMANDS[args.cmd](args, settings)
    except FormatError as e:
        log.error("format error: %s", e)
        return EXIT_FORMAT
    except CapacityError as e:
        log.error("capacity exceeded: %s", e)
        return EXIT_CAPACITY
    except SourceError as e:
        log.error("%s", e)
        return EXIT_SOURCE
    except GraphletError:
        log.exception("%s failed", args.cmd)
        return EXIT_FORMAT


if __name__ == "__main__":
    sys.exit(main())
