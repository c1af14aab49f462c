import logging

import pytest

from graphlet.address import numeric_id, to_bytes16
from graphlet.edges import EdgeStream, Rank, summary_value
from graphlet.errors import FormatError
from graphlet.flow import FlowType
from graphlet.render import HEADER, DotRenderer, protocol_name, write_dot
from graphlet.scanner import scan

from edge_builders import (
    PROTCODE_TCP,
    TCP,
    StreamBuilder,
    add_example_graphlet,
    add_labelled_graphlet,
    add_summary_graphlet,
    lport,
    rport,
    version_edge,
)


def _ip_id(text):
    return numeric_id(to_bytes16(text))


def test_labelled_graphlet_exact_output():
    s = EdgeStream.from_bytes(add_labelled_graphlet(StreamBuilder(), nr=7).build())
    local = _ip_id("10.0.0.1")
    remote = _ip_id("192.0.2.7")
    lp = "72057594037928016"   # TCP port 80, flow type masked off
    rp = "72057594037967936"   # TCP port 40000
    expected = (
        "graph G { /* graphlet 7 */\n"
        + HEADER
        + f'subgraph 0 {{rank=same;"localIP";"k1_{local}";}}\n'
        + f'k1_{local}[label="10.0.0.1"];\n'
        + f"k1_{local}--k2_6;\n"
        + 'subgraph 1 {rank=same;"protocol";k2_6;}\n'
        + 'k2_6[label="TCP"];\n'
        + f"k2_6--k3_{lp};\n"
        + f'subgraph 2 {{rank=same;"localPort";k3_{lp};}}\n'
        + f'k3_{lp}[label="80"];\n'
        + f'k3_{lp}--k4_{rp}[style=bold,dir=both,color=black][label="1500(10)"];\n'
        + f'subgraph 3 {{rank=same;"remotePort";k4_{rp};}}\n'
        + f'k4_{rp}[label="40000"];\n'
        + f'k4_{rp}--k5_{remote}[color=black][label="1(10)"];\n'
        + f'subgraph 4 {{rank=same;"remoteIP";k5_{remote};}}\n'
        + f'k5_{remote}[label="192.0.2.7", ip="192.0.2.7" ];\n'
        + "}\n"
    )
    assert DotRenderer().render(s, 1) == expected


def test_header_declares_rank_columns():
    for column in ("localIP", "protocol", "localPort", "remotePort", "remoteIP"):
        assert f'{column}[label="{column}"];' in HEADER
    assert '"localIP"--"protocol"--"localPort"' in HEADER


def test_example_graphlet_nodes_and_directions(example_stream):
    text = DotRenderer().render(example_stream, 1)
    assert 'k2_6[label="TCP"];' in text
    assert 'k2_17[label="UDP"];' in text
    # one group line per partition plus the local host
    assert text.count("subgraph ") == 5
    # remote host 192.0.2.10 is reached twice but annotated once
    assert text.count('[label="192.0.2.10", ip="192.0.2.10" ]') == 1
    assert text.count("--k5_") == 4
    # biflow on port 80, inflow on port 53
    assert text.count("[style=bold,dir=both,color=black]") == 2
    assert text.count("[dir=back, color=red]") == 2
    assert text.endswith("}\n")


@pytest.mark.parametrize(
    "flow_type,attrs",
    [
        (FlowType.BIFLOW, "[style=bold,dir=both,color=black]"),
        (FlowType.INFLOW, "[dir=back, color=red]"),
        (FlowType.OUTFLOW, "[dir=forward, color=red]"),
        (FlowType.INFLOW | FlowType.LOW_CONFIDENCE, "[dir=back, color=green]"),
        (FlowType.OUTFLOW | FlowType.LOW_CONFIDENCE, "[dir=forward, color=green]"),
    ],
)
def test_local_port_flow_type_styles(flow_type, attrs):
    lp = lport(22, PROTCODE_TCP, flow_type)
    b = StreamBuilder()
    b.add(Rank.LOCALIP_PROT, 0, "10.0.0.1", TCP)
    b.add(Rank.PROT_LOCALPORT, 0, TCP, lp)
    b.add(Rank.LOCALPORT_REMOTEPORT, 0, lp, rport(5000))
    text = DotRenderer().render(EdgeStream.from_bytes(b.build()), 1)
    assert f"--k4_{rport(5000)}{attrs};" in text


def test_unknown_flow_type_is_logged_and_left_plain(caplog):
    lp = lport(22, PROTCODE_TCP, 6)
    b = StreamBuilder()
    b.add(Rank.LOCALIP_PROT, 0, "10.0.0.1", TCP)
    b.add(Rank.PROT_LOCALPORT, 0, TCP, lp)
    b.add(Rank.LOCALPORT_REMOTEPORT, 0, lp, rport(5000))
    with caplog.at_level(logging.WARNING, logger="graphlet.render"):
        text = DotRenderer().render(EdgeStream.from_bytes(b.build()), 1)
    assert f"--k4_{rport(5000)};" in text
    assert "unknown flow type 6" in caplog.text


@pytest.mark.parametrize("color,attrs", [(0, "[color=black]"), (1, "[color=red]"), (2, "[color=green]"), (3, "[color=black]")])
def test_remote_port_color_codes(color, attrs):
    lp, rp = lport(22), rport(5000, color=color)
    b = StreamBuilder()
    b.add(Rank.LOCALIP_PROT, 0, "10.0.0.1", TCP)
    b.add(Rank.PROT_LOCALPORT, 0, TCP, lp)
    b.add(Rank.LOCALPORT_REMOTEPORT, 0, lp, rp)
    b.add(Rank.REMOTEPORT_REMOTEIP, 0, rp, "192.0.2.1")
    text = DotRenderer().render(EdgeStream.from_bytes(b.build()), 1)
    assert f"k4_{rp}--k5_{_ip_id('192.0.2.1')}{attrs};" in text


def test_summary_nodes():
    s = EdgeStream.from_bytes(add_summary_graphlet(StreamBuilder()).build())
    text = DotRenderer().render(s, 1)
    lsum = summary_value(12, role=2, protcode=PROTCODE_TCP, flow_type=int(FlowType.OUTFLOW))
    rsum = summary_value(0, role=0, protcode=PROTCODE_TCP)
    hosts = summary_value(5, role=3)
    # summary local port is used unmasked on both sides
    assert f"k2_6--k3_{lsum};" in text
    assert f'k3_{lsum}[label="#con=12", rolnum="2" , shape=box, style=bold];' in text
    assert f"k3_{lsum}--k4_{rsum}[dir=forward, color=red];" in text
    # an empty connection summary has a blank label
    assert f'k4_{rsum}[label="", shape=box, style=bold];' in text
    assert f'k5_{hosts}0[label="#hosts=5", rolnum="3" , shape=box, style=bold];' in text
    assert f'[color=green][label="4(6.2)"];' in text
    assert f'k5_{_ip_id("198.51.100.9")}[label="198.51.100.9", ip="198.51.100.9" ];' in text


def test_role_numbers_and_packet_counts_are_optional():
    s = EdgeStream.from_bytes(add_summary_graphlet(StreamBuilder()).build())
    text = DotRenderer(show_role_numbers=True, show_packet_counts=False).render(s, 1)
    assert '[label="#con=12 r2", rolnum="2" ' in text
    assert '[label="4"];' in text
    assert "(6.2)" not in text


def test_render_stops_at_next_graphlet(three_graphlets):
    graphlets = scan(three_graphlets)
    r = DotRenderer()
    text = r.render_graphlet(three_graphlets, graphlets[1])
    assert "/* graphlet 1 */" in text
    assert 'label="10.0.0.2"' in text
    assert "10.0.0.1" not in text and "10.0.0.3" not in text
    assert text.count("subgraph ") == 5


def test_subgraph_counter_is_per_renderer(three_graphlets):
    graphlets = scan(three_graphlets)
    r = DotRenderer()
    first = r.render_graphlet(three_graphlets, graphlets[0])
    second = r.render_graphlet(three_graphlets, graphlets[0])
    assert "subgraph 0 {" in first and "subgraph 5 {" not in first
    assert "subgraph 5 {" in second and "subgraph 0 {" not in second
    assert r.subgraph_count == 10
    # a fresh renderer starts over and produces identical text
    assert DotRenderer().render_graphlet(three_graphlets, graphlets[0]) == first


def test_render_errors(example_stream):
    with pytest.raises(FormatError, match="expected localip_prot"):
        DotRenderer().render(example_stream, 3)
    with pytest.raises(FormatError, match="outside of stream"):
        DotRenderer().render(example_stream, 99)

    b = StreamBuilder()
    b.add(Rank.LOCALIP_PROT, 0, "10.0.0.1", TCP)
    b.add(13, 0, 0, 0)
    with pytest.raises(FormatError, match="unrecognized rank code 13"):
        DotRenderer().render(EdgeStream.from_bytes(b.build()), 1)


def test_render_requires_version_3_stream(example_stream):
    body = add_example_graphlet(StreamBuilder(version=False)).build()
    with pytest.raises(FormatError, match="version 2"):
        DotRenderer().render(EdgeStream.from_bytes(version_edge(2) + body), 1)
    with pytest.raises(FormatError, match="marker missing"):
        DotRenderer().render(EdgeStream.from_bytes(body), 0)
    with pytest.raises(FormatError, match="version marker"):
        DotRenderer().render(example_stream, 0)


def test_render_stops_before_next_graphlet_without_checking_it(example_stream):
    expected = DotRenderer().render(example_stream, 1)

    b = add_example_graphlet(StreamBuilder())
    b.add(12, 1, 0, 0)
    assert DotRenderer().render(EdgeStream.from_bytes(b.build()), 1) == expected

    b = add_example_graphlet(StreamBuilder())
    b.raw(version_edge(nr=1))
    assert DotRenderer().render(EdgeStream.from_bytes(b.build()), 1) == expected


def test_protocol_names():
    assert protocol_name(6) == "TCP"
    assert protocol_name(58) == "ICMPv6"
    assert protocol_name(132) == "prot132"


def test_write_dot(tmp_path, example_stream):
    out = tmp_path / "dot" / "g0.dot"
    text = DotRenderer().render(example_stream, 1)
    write_dot(text, str(out))
    assert out.read_text() == text
