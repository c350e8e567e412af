import json

from nodecode.compiler import PLACEHOLDER_DOCUMENT, PreviewArtifacts, compile_preview
from nodecode.core import Actions as A
from nodecode.core.GraphPrimitives import Connection, Node
from nodecode.core.GraphStore import GraphStore
from nodecode.core.Types import NodeKind


def wire(conn_id, source, target, label):
    return Connection(conn_id, source, f"{source}-out-artifact", target, f"{target}-in-{label}")


def html_page():
    nodes = [
        Node.create("h", NodeKind.CODE, title="index.html",
                    content='<h1>Hi</h1>\n<link rel="stylesheet" href="style.css">\n<script src="./app.js"></script>'),
        Node.create("s", NodeKind.CODE, title="style.css", content="h1{color:red}"),
        Node.create("j", NodeKind.CODE, title="app.js", content="console.log('hi')"),
        Node.create("p", NodeKind.PREVIEW),
    ]
    conns = [
        wire("c1", "h", "p", "artifact"),
        wire("c2", "s", "h", "style"),
        wire("c3", "j", "h", "script"),
    ]
    return nodes, conns


class TestCompilePreview:

    def test_unconnected_preview_is_placeholder(self):
        nodes = [Node.create("p", NodeKind.PREVIEW)]
        assert compile_preview("p", nodes, []) == PLACEHOLDER_DOCUMENT

    def test_style_and_body_embedding(self):
        nodes = [
            Node.create("h", NodeKind.CODE, title="index.html", content="<h1>Hi</h1>"),
            Node.create("s", NodeKind.CODE, title="style.css", content="h1{color:red}"),
            Node.create("p", NodeKind.PREVIEW),
        ]
        conns = [wire("c1", "h", "p", "artifact"), wire("c2", "s", "h", "style")]
        doc = compile_preview("p", nodes, conns)

        head, body = doc.split("<body>")
        assert "<style>\nh1{color:red}\n</style>" in head
        assert "<h1>Hi</h1>" in body

    def test_deterministic(self):
        nodes, conns = html_page()
        assert compile_preview("p", nodes, conns) == compile_preview("p", nodes, conns)

    def test_bootstrap_comes_first_in_head(self):
        nodes, conns = html_page()
        doc = compile_preview("p", nodes, conns)
        head = doc.split("</head>")[0]
        assert head.index("window.broadcastState") < head.index("<style>")
        assert json.dumps("p") in head
        assert "IFRAME_READY" in head
        assert "return false;" in head

    def test_scripts_are_isolated(self):
        nodes, conns = html_page()
        doc = compile_preview("p", nodes, conns)
        assert "try {\nconsole.log('hi')\n} catch (err) { console.error(err); }" in doc

    def test_bundled_references_are_stripped(self):
        nodes, conns = html_page()
        body = compile_preview("p", nodes, conns).split("<body>")[1]
        assert 'href="style.css"' not in body
        assert 'src="./app.js"' not in body

    def test_unbundled_references_survive(self):
        nodes = [
            Node.create("h", NodeKind.CODE, title="index.html",
                        content='<script src="https://cdn.example/lib.js"></script>'),
            Node.create("p", NodeKind.PREVIEW),
        ]
        doc = compile_preview("p", nodes, [wire("c1", "h", "p", "artifact")])
        assert 'src="https://cdn.example/lib.js"' in doc

    def test_fragments_follow_connection_order(self):
        nodes = [
            Node.create("h", NodeKind.CODE, title="index.html", content=""),
            Node.create("b", NodeKind.CODE, title="b.css", content="/* B */"),
            Node.create("a", NodeKind.CODE, title="a.css", content="/* A */"),
            Node.create("p", NodeKind.PREVIEW),
        ]
        conns = [
            wire("c0", "h", "p", "artifact"),
            wire("c1", "b", "h", "style"),
            wire("c2", "a", "h", "style"),
        ]
        doc = compile_preview("p", nodes, conns)
        assert doc.index("/* B */") < doc.index("/* A */")

    def test_imports_are_classified_by_extension(self):
        nodes = [
            Node.create("h", NodeKind.CODE, title="index.html", content=""),
            Node.create("s", NodeKind.CODE, title="theme.css", content="body{margin:0}"),
            Node.create("j", NodeKind.CODE, title="util.js", content="var u = 1;"),
            Node.create("d", NodeKind.CODE, title="notes.md", content="# notes"),
            Node.create("p", NodeKind.PREVIEW),
        ]
        conns = [
            wire("c0", "h", "p", "artifact"),
            wire("c1", "s", "h", "imports"),
            wire("c2", "j", "h", "imports"),
            wire("c3", "d", "h", "imports"),
        ]
        head, body = compile_preview("p", nodes, conns).split("<body>")
        assert "body{margin:0}" in head
        assert "var u = 1;" in body
        assert "# notes" not in head + body

    def test_each_source_used_once(self):
        nodes = [
            Node.create("h", NodeKind.CODE, title="index.html", content=""),
            Node.create("s", NodeKind.CODE, title="x.css", content="p{}"),
            Node.create("p", NodeKind.PREVIEW),
        ]
        conns = [
            wire("c0", "h", "p", "artifact"),
            wire("c1", "s", "h", "style"),
            wire("c2", "s", "h", "imports"),
        ]
        assert compile_preview("p", nodes, conns).count("p{}") == 1

    def test_nested_dependencies_are_bundled_first(self):
        nodes = [
            Node.create("h", NodeKind.CODE, title="index.html", content="<main></main>"),
            Node.create("app", NodeKind.CODE, title="app.js", content="start(UTIL)"),
            Node.create("u", NodeKind.CODE, title="util.js", content="var UTIL = 1;"),
            Node.create("t", NodeKind.CODE, title="theme.css", content=".theme{}"),
            Node.create("p", NodeKind.PREVIEW),
        ]
        conns = [
            wire("c0", "h", "p", "artifact"),
            wire("c1", "app", "h", "script"),
            wire("c2", "u", "app", "script"),
            wire("c3", "t", "app", "imports"),
        ]
        head, body = compile_preview("p", nodes, conns).split("<body>")
        assert ".theme{}" in head
        assert body.index("var UTIL = 1;") < body.index("start(UTIL)")

    def test_dependency_cycles_terminate(self):
        nodes = [
            Node.create("h", NodeKind.CODE, title="index.html", content=""),
            Node.create("a", NodeKind.CODE, title="a.js", content="/* A */"),
            Node.create("b", NodeKind.CODE, title="b.js", content="/* B */"),
            Node.create("p", NodeKind.PREVIEW),
        ]
        conns = [
            wire("c0", "h", "p", "artifact"),
            wire("c1", "a", "h", "script"),
            wire("c2", "b", "a", "script"),
            wire("c3", "a", "b", "script"),
            wire("c4", "h", "b", "imports"),
        ]
        doc = compile_preview("p", nodes, conns)
        assert doc.count("/* A */") == 1
        assert doc.count("/* B */") == 1
        assert doc.index("/* B */") < doc.index("/* A */")

    def test_script_root_mounts_and_runs_last(self):
        nodes = [
            Node.create("app", NodeKind.CODE, title="App.jsx", content="render()"),
            Node.create("lib", NodeKind.CODE, title="lib.js", content="function render(){}"),
            Node.create("p", NodeKind.PREVIEW),
        ]
        conns = [wire("c0", "app", "p", "artifact"), wire("c1", "lib", "app", "script")]
        body = compile_preview("p", nodes, conns).split("<body>")[1]
        assert '<div id="root"></div>' in body
        assert body.index("function render(){}") < body.index("render()\n}")

    def test_closing_tags_in_user_content_are_escaped(self):
        nodes = [
            Node.create("h", NodeKind.CODE, title="index.html", content=""),
            Node.create("j", NodeKind.CODE, title="a.js", content="var s = '</script><b>x</b>';"),
            Node.create("p", NodeKind.PREVIEW),
        ]
        conns = [wire("c0", "h", "p", "artifact"), wire("c1", "j", "h", "script")]
        doc = compile_preview("p", nodes, conns)
        assert "'<\\/script><b>x</b>'" in doc
        assert doc.count("</script>") == 2


class TestPreviewArtifacts:

    def setup_method(self):
        self.store = GraphStore()
        nodes, conns = html_page()
        for node in nodes:
            self.store.dispatch(A.CreateNode(node))
        for conn in conns:
            self.store.dispatch(A.Connect(conn))
        self.artifacts = PreviewArtifacts()

    def test_only_running_previews_compile(self):
        assert self.artifacts.refresh(self.store.state) == {}
        self.store.dispatch(A.SetRunning("p", True))
        changed = self.artifacts.refresh(self.store.state)
        assert list(changed) == ["p"]

    def test_unchanged_artifacts_are_not_reported(self):
        self.store.dispatch(A.SetRunning("p", True))
        self.artifacts.refresh(self.store.state)
        self.store.dispatch(A.MoveNode("h", self.store.state.get_node("h").position._replace(x=99)))
        assert self.artifacts.refresh(self.store.state) == {}

        self.store.dispatch(A.EditContent("s", "h1{color:blue}"))
        changed = self.artifacts.refresh(self.store.state)
        assert "h1{color:blue}" in changed["p"]

    def test_stopped_previews_are_forgotten(self):
        self.store.dispatch(A.SetRunning("p", True))
        self.artifacts.refresh(self.store.state)
        self.store.dispatch(A.SetRunning("p", False))
        self.artifacts.refresh(self.store.state)
        assert self.artifacts.get("p") is None
