"""
Scenario runner for the on-demand routing line experiment.

Reads experiments/aodv_line.yml, builds the scheduler, topology, routing
network, echo flows and the routing-table recorder, runs to the configured
duration and writes the route dumps (and the transmission trace when enabled).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
import logging
import sys
import time

from config import SimulationConfig, load_config
from errors import ConfigurationError
from instrumentation import (
    RoutingSnapshot,
    RoutingTableRecorder,
    TransmissionTrace,
    write_routes_text,
    write_snapshots_csv,
)
from scheduler import EventScheduler
from simulation import RoutingNetwork
from topology import TopologyModel
from traffic import EchoTrafficGenerator, FlowStats


@dataclass
class Simulation:
    config: SimulationConfig
    scheduler: EventScheduler
    topology: TopologyModel
    network: RoutingNetwork
    recorder: RoutingTableRecorder
    flows: List[EchoTrafficGenerator]
    trace: Optional[TransmissionTrace] = None

    def run(self) -> int:
        return self.scheduler.run_until(self.config.total_time)


@dataclass
class SimulationResult:
    snapshots: List[RoutingSnapshot]
    flows: List[FlowStats]
    router_stats: Dict[int, Dict[str, int]]
    network_stats: Dict[str, int]
    events_processed: int
    duration_sec: float = 0.0
    trace: Optional[TransmissionTrace] = field(default=None, repr=False)

    def summary(self) -> Dict[str, object]:
        totals: Dict[str, int] = {}
        for stats in self.router_stats.values():
            for key, value in stats.items():
                totals[key] = totals.get(key, 0) + value
        return {
            "events": self.events_processed,
            "flows": [flow.as_dict() for flow in self.flows],
            "routing": totals,
            "network": dict(self.network_stats),
        }


def build_simulation(cfg: SimulationConfig) -> Simulation:
    """
    Wire every component around one scheduler. Validation happens first, so a
    bad configuration fails before any event is scheduled.
    """
    cfg.validate()

    scheduler = EventScheduler()
    topology = TopologyModel(
        scheduler,
        positions=cfg.initial_positions(),
        radio_range=cfg.radio_range,
        mobility=cfg.waypoints(),
    )
    trace = TransmissionTrace() if cfg.trace else None
    network = RoutingNetwork(scheduler, topology, cfg.aodv, trace=trace)

    flows = [
        EchoTrafficGenerator(
            scheduler,
            network,
            source=flow.source,
            destination=flow.destination,
            start=flow.start,
            stop=flow.stop,
            interval=flow.interval,
            packet_size=flow.packet_size,
            max_packets=flow.max_packets,
            flow_id=flow_id,
        )
        for flow_id, flow in enumerate(cfg.traffic)
    ]

    recorder = RoutingTableRecorder(
        scheduler,
        network,
        instants=cfg.snapshot_instants if cfg.print_routes else (),
        node_instants=cfg.node_snapshots if cfg.print_routes else (),
    )
    return Simulation(cfg, scheduler, topology, network, recorder, flows, trace)


def run_simulation(cfg: SimulationConfig) -> SimulationResult:
    start = time.time()
    sim = build_simulation(cfg)
    events = sim.run()
    return SimulationResult(
        snapshots=list(sim.recorder.snapshots),
        flows=[flow.stats for flow in sim.flows],
        router_stats={node: dict(router.stats) for node, router in sim.network.routers().items()},
        network_stats=dict(sim.network.statistics),
        events_processed=events,
        duration_sec=time.time() - start,
        trace=sim.trace,
    )


def write_reports(result: SimulationResult, out_dir: Path) -> List[Path]:
    written: List[Path] = []
    if result.snapshots:
        routes_txt = out_dir / "aodv.routes"
        routes_csv = out_dir / "aodv_routes.csv"
        write_routes_text(result.snapshots, routes_txt)
        write_snapshots_csv(result.snapshots, routes_csv)
        written += [routes_txt, routes_csv]
    if result.trace is not None:
        trace_csv = out_dir / "aodv_trace.csv"
        result.trace.write_csv(trace_csv)
        written.append(trace_csv)
    return written


def main() -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    config_path = Path(__file__).parent / "experiments" / "aodv_line.yml"
    out_dir = Path(__file__).parent / "experiments" / "results"

    try:
        cfg = load_config(config_path)
        print(f"[run] Creating {cfg.size} nodes {cfg.step:g} m apart.")
        print(f"[run] Starting simulation for {cfg.total_time:g} s ...")
        result = run_simulation(cfg)
    except ConfigurationError as exc:
        print(f"[run] configuration error in '{exc.parameter}': {exc.message}")
        return 1

    for flow_id, flow in enumerate(result.flows):
        print(
            f"[run] flow {flow_id}: sent={flow.sent} delivered={flow.delivered} "
            f"echoed={flow.echoed} unreachable={flow.failed}"
        )
    print(f"[run] processed {result.events_processed} events in {result.duration_sec:.2f}s")
    for path in write_reports(result, out_dir):
        print(f"[run] wrote {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
