"""Segment-aware fluid injection.

Fluid in a connected network belongs to the network, not to the box it
was read from. Injection therefore groups recorded fluid by destination
network, sums the amounts, mixes temperatures by energy (amount-weighted)
and writes each network once, clamped to its capacity. Boxes outside any
network are filled directly.

Must run after activation: objects that attach to a network on activation
discard whatever was written into them while detached.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Tuple

from relay_core.capabilities import has_fluidbox
from relay_core.importing.context import ImportContext
from relay_core.keys import fluid_key

logger = logging.getLogger(__name__)


def _mix(entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    amount = sum(e["amount"] for e in entries)
    temperature = (
        sum(e["amount"] * e["temperature"] for e in entries) / amount if amount > 0 else 15.0
    )
    return {"name": entries[0]["name"], "amount": amount, "temperature": temperature}


def _note_drop(report: Dict[str, Any], fluid: Dict[str, Any], stored: float) -> None:
    dropped = fluid["amount"] - stored
    if dropped > 1e-9:
        key = fluid_key(fluid["name"], fluid["temperature"])
        report["dropped"][key] = report["dropped"].get(key, 0.0) + dropped


def inject_fluids(ctx: ImportContext, quota: int) -> bool:
    networks: Dict[Any, List[Tuple[Any, Dict[str, Any]]]] = defaultdict(list)
    isolated: List[Tuple[Any, Dict[str, Any]]] = []
    report: Dict[str, Any] = {"networks": 0, "isolated_boxes": 0, "injected": 0.0, "dropped": {}}

    for record in ctx.objects:
        recorded = (record.get("payload") or {}).get("fluids")
        if not recorded:
            continue
        obj = ctx.resolve(record["id"])
        if obj is None or not has_fluidbox(obj):
            continue
        for fluid in recorded:
            network_id = obj.get_fluid_network_id(fluid["index"])
            if network_id is None:
                isolated.append((obj, fluid))
            else:
                networks[network_id].append((obj, fluid))

    for network_id, members in networks.items():
        by_name: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for _, fluid in members:
            by_name[fluid["name"]].append(fluid)
        if len(by_name) == 1:
            mixed = _mix(next(iter(by_name.values())))
            anchor, fluid = members[0]
            stored = anchor.set_network_fluid(fluid["index"], mixed)
            report["injected"] += stored
            _note_drop(report, mixed, stored)
        else:
            # A network holding several fluids cannot be written as a whole.
            logger.warning(
                "Import %s: network %s holds %s; filling boxes individually",
                ctx.job.id,
                network_id,
                sorted(by_name),
            )
            isolated.extend(members)
        report["networks"] += 1

    for obj, fluid in isolated:
        stored = obj.set_fluid(fluid["index"], fluid)
        remainder = fluid["amount"] - stored
        if remainder > 1e-9:
            stored += obj.insert_fluid(dict(fluid, amount=remainder))
        report["injected"] += stored
        report["isolated_boxes"] += 1
        _note_drop(report, fluid, stored)

    report["injected"] = round(report["injected"], 3)
    ctx.job.state["fluid_injection"] = report
    ctx.job.metrics["fluid_injected"] = report["injected"]
    if report["dropped"]:
        logger.warning("Import %s: fluid exceeded capacity: %s", ctx.job.id, report["dropped"])
    return True
