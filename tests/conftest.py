import pytest

from graphlet.edges import EdgeStream

from edge_builders import StreamBuilder, add_example_graphlet, add_labelled_graphlet


@pytest.fixture
def example_stream():
    """Version marker plus the 12-edge two-protocol example graphlet."""
    return EdgeStream.from_bytes(add_example_graphlet(StreamBuilder()).build())


@pytest.fixture
def three_graphlets():
    b = StreamBuilder()
    add_example_graphlet(b, nr=0, local_ip="10.0.0.1")
    add_labelled_graphlet(b, nr=1, local_ip="10.0.0.2")
    add_example_graphlet(b, nr=2, local_ip="10.0.0.3")
    return EdgeStream.from_bytes(b.build())


@pytest.fixture
def hpg_file(tmp_path, three_graphlets):
    path = tmp_path / "hosts.hpg"
    path.write_bytes(b"".join(e.pack() for e in three_graphlets))
    return path
