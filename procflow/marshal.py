"""
Marshalling of procedures to and from a record store.

Layout:
    <block uuid>      {"type": "basic_block", "mnemonics": [...]}
    <procedure uuid>  {"type": "procedure", "version", "name", "entry",
                       "blocks": [block uuids in arena order],
                       "nodes": [node records in insertion order],
                       "edges": [edge records in insertion order]}

The procedure record is written last, so a save only becomes visible once
all the blocks it names are in the store. Node and edge order are kept,
which keeps reverse postorder identical after a round trip.
"""

from typing import Dict

from . import config
from .graph import BlockNode, ValueNode
from .model import BasicBlock, Guard, Mnemonic, rvalue_from_dict
from .procedure import Procedure


def save(procedure: Procedure, store) -> str:
    """Write `procedure` to `store`. Returns the procedure's record id."""
    graph = procedure.control_transfers

    for block in procedure.blocks:
        store.put(block.uuid, {
            "type": "basic_block",
            "mnemonics": [m.to_dict() for m in block.mnemonics],
        })

    node_pos: Dict[int, int] = {}
    nodes = []
    for nid in graph.nodes():
        payload = graph.get_node(nid)
        node_pos[nid] = len(nodes)
        if isinstance(payload, BlockNode):
            nodes.append({"kind": "block",
                          "block": procedure.blocks[payload.index].uuid})
        else:
            nodes.append({"kind": "value", "value": payload.value.to_dict()})

    edges = []
    for eid in graph.edges():
        edge = graph.get_edge(eid)
        edges.append({
            "source": node_pos[edge.source],
            "target": node_pos[edge.target],
            "guard": edge.guard.to_dict(),
        })

    entry = None
    if procedure.entry is not None:
        entry = procedure.blocks[procedure.entry].uuid

    store.put(procedure.uuid, {
        "type": "procedure",
        "version": config.STORE_VERSION,
        "name": procedure.name,
        "entry": entry,
        "blocks": [b.uuid for b in procedure.blocks],
        "nodes": nodes,
        "edges": edges,
    })
    store.flush()
    return procedure.uuid


def _expect(record: dict, record_type: str, record_id: str) -> dict:
    if record.get("type") != record_type:
        raise ValueError(
            f"record {record_id!r} is a {record.get('type')!r}, "
            f"expected {record_type!r}")
    return record


def load(record_id: str, store) -> Procedure:
    """Rebuild the procedure saved under `record_id` and verify it."""
    root = _expect(store.get(record_id), "procedure", record_id)
    if root.get("version") != config.STORE_VERSION:
        raise ValueError(
            f"procedure {record_id!r} has unsupported version {root.get('version')!r}")

    proc = Procedure(root["name"], record_id)
    index_by_uuid: Dict[str, int] = {}
    for block_id in root["blocks"]:
        rec = _expect(store.get(block_id), "basic_block", block_id)
        block = BasicBlock([Mnemonic.from_dict(m) for m in rec["mnemonics"]],
                           uuid=block_id)
        index_by_uuid[block_id] = proc.add_block(block, with_node=False)

    graph = proc.control_transfers
    node_ids = []
    for node in root["nodes"]:
        if node["kind"] == "block":
            nid = graph.add_node(BlockNode(index_by_uuid[node["block"]]))
        elif node["kind"] == "value":
            nid = graph.add_node(ValueNode(rvalue_from_dict(node["value"])))
        else:
            raise ValueError(f"unknown node kind {node['kind']!r}")
        node_ids.append(nid)

    for edge in root["edges"]:
        graph.add_edge(node_ids[edge["source"]], node_ids[edge["target"]],
                       Guard.from_dict(edge["guard"]))

    if root["entry"] is not None:
        proc.entry = index_by_uuid[root["entry"]]
    proc.verify()
    return proc


def drop(record_id: str, store) -> None:
    """Delete a saved procedure and its block records. Missing ids are ignored."""
    if record_id not in store:
        return
    root = _expect(store.get(record_id), "procedure", record_id)
    for block_id in root.get("blocks", []):
        store.delete(block_id)
    store.delete(record_id)
    store.flush()
