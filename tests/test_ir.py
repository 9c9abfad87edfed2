import io

import pytest

from flowkit.ir import (
    Edge,
    Flow,
    FlowError,
    LoadError,
    NamedPortRef,
    Node,
    PortRef,
    load,
    marshal,
)

SAMPLE_JSON = """{
  "id": "echo_chain",
  "name": "echo chain",
  "nodes": [
    { "id": "upper",   "type": "tool", "config": { "tool": "upper" } },
    { "id": "reverse", "type": "tool", "config": { "tool": "reverse" } }
  ],
  "edges": [
    { "source": { "node": "upper", "port": "output" },
      "target": { "node": "reverse", "port": "input" } }
  ],
  "inputs":  [{ "name": "in",  "node": "upper",   "port": "input"  }],
  "outputs": [{ "name": "out", "node": "reverse", "port": "output" }]
}"""


def test_load_parses_sample_flow():
    f = load(SAMPLE_JSON)
    assert f.id == "echo_chain"
    assert f.name == "echo chain"
    assert len(f.nodes) == 2
    assert len(f.edges) == 1
    assert len(f.inputs) == 1
    assert f.inputs[0].name == "in"
    assert f.nodes[0] == Node(id="upper", type="tool", config={"tool": "upper"})
    assert f.edges[0] == Edge(
        source=PortRef(node="upper", port="output"),
        target=PortRef(node="reverse", port="input"),
    )
    assert f.outputs == [NamedPortRef(node="reverse", port="output", name="out")]


def test_load_rejects_unknown_fields():
    bad = '{"id":"x","nodes":[{"id":"a","type":"tool"}],"edges":[],"extra_field":1}'
    with pytest.raises(LoadError, match="extra_field"):
        load(bad)


def test_load_rejects_unknown_nested_field():
    bad = '{"id":"x","nodes":[{"id":"a","type":"tool","colour":"red"}],"edges":[]}'
    with pytest.raises(LoadError, match="colour"):
        load(bad)


def test_marshal_round_trip():
    original = load(SAMPLE_JSON)
    again = load(marshal(original))
    assert again == original
    assert again.id == original.id
    assert len(again.nodes) == len(original.nodes)
    assert len(again.edges) == len(original.edges)


def test_marshal_uses_two_space_indent():
    text = marshal(load(SAMPLE_JSON))
    assert '\n  "id": "echo_chain"' in text


def test_load_accepts_bytes_and_files():
    expected = load(SAMPLE_JSON)
    assert load(SAMPLE_JSON.encode("utf-8")) == expected
    assert load(io.StringIO(SAMPLE_JSON)) == expected
    assert load(io.BytesIO(SAMPLE_JSON.encode("utf-8"))) == expected


def test_load_ignores_trailing_data():
    assert load(SAMPLE_JSON + " trailing").id == "echo_chain"


@pytest.mark.parametrize("text", ["", "not json", "{"])
def test_load_rejects_invalid_json(text):
    with pytest.raises(LoadError):
        load(text)


def test_load_rejects_wrong_field_type():
    with pytest.raises(LoadError, match="id"):
        load('{"id": 5, "nodes": [], "edges": []}')


def test_load_rejects_non_object_document():
    with pytest.raises(FlowError):
        load("[1, 2, 3]")


def test_null_collections_become_empty():
    f = load('{"id":"x","nodes":null,"edges":null}')
    assert f.nodes == []
    assert f.edges == []


def test_to_dict_omits_empty_optional_fields():
    f = Flow(id="x", nodes=[Node(id="a", type="tool")])
    assert f.to_dict() == {"id": "x", "nodes": [{"id": "a", "type": "tool"}], "edges": []}


def test_condition_survives_round_trip():
    f = Flow(
        id="r",
        nodes=[Node(id="a", type="tool"), Node(id="b", type="tool")],
        edges=[Edge(PortRef("a", "output"), PortRef("b", "input"), condition='value == "go"')],
    )
    assert load(marshal(f)).edges[0].condition == 'value == "go"'


def test_from_dict_rejects_bad_edge_source():
    with pytest.raises(LoadError, match="edges"):
        Flow.from_dict({"id": "x", "nodes": [], "edges": [{"source": "a"}]})