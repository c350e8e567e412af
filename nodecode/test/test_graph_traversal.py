from nodecode.core.GraphPrimitives import Connection, Node
from nodecode.core.GraphTraversal import (
    connected_components,
    connected_source,
    incoming_connections,
    related_nodes,
    upstream_by_label,
)
from nodecode.core.Types import NodeKind


def wire(conn_id, source, target, label):
    return Connection(conn_id, source, f"{source}-out-artifact", target, f"{target}-in-{label}")


class TestTraversal:

    def setup_method(self):
        self.nodes = [
            Node.create("html", NodeKind.CODE, title="index.html"),
            Node.create("b", NodeKind.CODE, title="b.css"),
            Node.create("a", NodeKind.CODE, title="a.css"),
            Node.create("js", NodeKind.CODE, title="app.js"),
            Node.create("prev", NodeKind.PREVIEW),
            Node.create("lonely", NodeKind.CODE, title="lonely.js"),
            Node.create("bot", NodeKind.AGENT),
        ]
        # b is wired before a; results must keep that order
        self.connections = [
            wire("c1", "b", "html", "style"),
            wire("c2", "a", "html", "style"),
            wire("c3", "js", "html", "script"),
            wire("c4", "html", "prev", "artifact"),
        ]

    def test_upstream_by_label_keeps_insertion_order(self):
        styles = upstream_by_label("html", "style", self.nodes, self.connections)
        assert [n.id for n in styles] == ["b", "a"]

    def test_label_match_is_case_insensitive(self):
        assert [n.id for n in upstream_by_label("html", "SCRIPT", self.nodes, self.connections)] == ["js"]

    def test_label_match_ignores_node_id(self):
        # a node id containing the label must not match every port
        nodes = [Node.create("style-host", NodeKind.CODE, title="x.html"), Node.create("s", NodeKind.CODE)]
        conns = [wire("c", "s", "style-host", "script")]
        assert upstream_by_label("style-host", "style", nodes, conns) == []

    def test_missing_sources_are_skipped(self):
        conns = self.connections + [wire("c5", "ghost", "html", "style")]
        assert [n.id for n in upstream_by_label("html", "style", self.nodes, conns)] == ["b", "a"]

    def test_connected_source(self):
        assert connected_source("prev", "artifact", self.nodes, self.connections).id == "html"
        assert connected_source("lonely", "artifact", self.nodes, self.connections) is None

    def test_incoming_connections(self):
        assert [c.id for c in incoming_connections("html", self.connections)] == ["c1", "c2", "c3"]

    def test_related_nodes_is_undirected(self):
        related = {n.id for n in related_nodes("a", self.nodes, self.connections)}
        assert related == {"a", "html", "b", "js", "prev"}

    def test_related_nodes_kind_filter(self):
        related = {n.id for n in related_nodes("prev", self.nodes, self.connections, NodeKind.CODE)}
        assert related == {"html", "b", "a", "js"}

    def test_connected_components_code_only(self):
        components = connected_components(self.nodes, self.connections)
        assert [[n.id for n in comp] for comp in components] == [
            ["html", "b", "a", "js"],
            ["lonely"],
        ]

    def test_preview_does_not_bridge_components(self):
        nodes = [
            Node.create("x", NodeKind.CODE),
            Node.create("p", NodeKind.PREVIEW),
            Node.create("t", NodeKind.TERMINAL),
        ]
        conns = [wire("c1", "x", "p", "artifact")]
        assert [[n.id for n in c] for c in connected_components(nodes, conns)] == [["x"]]
