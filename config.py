"""
Scenario configuration.

Defaults reproduce the reference line scenario: five nodes 70 m apart, node 0
walking away from the line at 25/75/125 s, and an echo flow from node 0 to
node 4 every 10 s. Values can be overridden from a YAML file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence, Tuple
import math

from errors import ConfigurationError
from topology import Waypoint


@dataclass(frozen=True)
class AodvParameters:
    """
    Protocol constants. Derived timers follow the usual AODV relations.
    """

    active_route_timeout: float = 3.0
    node_traversal_time: float = 0.04
    net_diameter: int = 35
    rreq_retries: int = 2
    hello_interval: float = 1.0
    max_queue_len: int = 64
    max_queue_time: float = 30.0
    hop_delay: float = 0.001
    destination_only: bool = False

    @property
    def net_traversal_time(self) -> float:
        return 2 * self.node_traversal_time * self.net_diameter

    @property
    def path_discovery_time(self) -> float:
        return 2 * self.net_traversal_time

    @property
    def my_route_timeout(self) -> float:
        return 2 * max(self.path_discovery_time, self.active_route_timeout)

    @property
    def delete_period(self) -> float:
        return 5 * max(self.active_route_timeout, self.hello_interval)

    def validate(self) -> None:
        for name in ("active_route_timeout", "node_traversal_time", "hello_interval", "max_queue_time"):
            _require_positive(f"aodv.{name}", getattr(self, name))
        _require_non_negative("aodv.hop_delay", self.hop_delay)
        if self.net_diameter < 1:
            raise ConfigurationError("aodv.net_diameter", f"must be at least 1, got {self.net_diameter}")
        if self.rreq_retries < 0:
            raise ConfigurationError("aodv.rreq_retries", f"must be non-negative, got {self.rreq_retries}")
        if self.max_queue_len < 1:
            raise ConfigurationError("aodv.max_queue_len", f"must be at least 1, got {self.max_queue_len}")


@dataclass(frozen=True)
class TrafficConfig:
    source: int = 0
    destination: int = 4
    start: float = 10.0
    stop: float = 200.0
    interval: float = 10.0
    packet_size: int = 1024
    max_packets: int = 21


@dataclass(frozen=True)
class WaypointConfig:
    node: int
    time: float
    position: Tuple[float, float, float]


def _default_mobility() -> Tuple[WaypointConfig, ...]:
    return (
        WaypointConfig(node=0, time=25.0, position=(110.0, 0.0, 0.0)),
        WaypointConfig(node=0, time=75.0, position=(180.0, 0.0, 0.0)),
        WaypointConfig(node=0, time=125.0, position=(250.0, 0.0, 0.0)),
    )


@dataclass(frozen=True)
class SimulationConfig:
    size: int = 5
    step: float = 70.0
    total_time: float = 200.0
    radio_range: float = 100.0
    trace: bool = True
    print_routes: bool = True
    snapshot_instants: Tuple[float, ...] = (10.0, 50.0, 100.0, 150.0, 200.0)
    # (time, node) pairs for single-node dumps
    node_snapshots: Tuple[Tuple[float, int], ...] = ((10.0, 0),)
    mobility: Tuple[WaypointConfig, ...] = field(default_factory=_default_mobility)
    traffic: Tuple[TrafficConfig, ...] = (TrafficConfig(),)
    aodv: AodvParameters = field(default_factory=AodvParameters)

    def validate(self) -> None:
        """
        Check every parameter before any component is built.

        Raises
        ------
        ConfigurationError
            Naming the first parameter that failed validation.
        """
        if self.size < 1:
            raise ConfigurationError("size", f"need at least one node, got {self.size}")
        _require_non_negative("step", self.step)
        _require_positive("total_time", self.total_time)
        _require_positive("radio_range", self.radio_range)

        for t in self.snapshot_instants:
            self._require_instant("snapshot_instants", t)
        for t, node in self.node_snapshots:
            self._require_instant("node_snapshots", t)
            self._require_node("node_snapshots", node)

        last: Dict[int, float] = {}
        for wp in self.mobility:
            self._require_node("mobility", wp.node)
            self._require_instant("mobility", wp.time)
            if wp.time < last.get(wp.node, -math.inf):
                raise ConfigurationError("mobility", f"waypoints for node {wp.node} are not ordered by time")
            last[wp.node] = wp.time
            if len(wp.position) != 3 or not all(math.isfinite(c) for c in wp.position):
                raise ConfigurationError("mobility", f"waypoint position must be 3 finite numbers, got {wp.position}")

        for flow in self.traffic:
            self._require_node("traffic.source", flow.source)
            self._require_node("traffic.destination", flow.destination)
            if flow.source == flow.destination:
                raise ConfigurationError("traffic.destination", "source and destination must differ")
            self._require_instant("traffic.start", flow.start)
            if flow.stop < flow.start:
                raise ConfigurationError("traffic.stop", f"stop {flow.stop} is before start {flow.start}")
            _require_positive("traffic.interval", flow.interval)
            _require_positive("traffic.packet_size", flow.packet_size)
            if flow.max_packets < 0:
                raise ConfigurationError("traffic.max_packets", f"must be non-negative, got {flow.max_packets}")

        self.aodv.validate()

    def initial_positions(self) -> Dict[int, Tuple[float, float, float]]:
        """Everybody on a line, step metres apart."""
        return {i: (self.step * i, 0.0, 0.0) for i in range(self.size)}

    def waypoints(self) -> Dict[int, List[Waypoint]]:
        out: Dict[int, List[Waypoint]] = {}
        for wp in self.mobility:
            out.setdefault(wp.node, []).append(Waypoint(wp.time, tuple(wp.position)))
        return out

    def _require_node(self, parameter: str, node: int) -> None:
        if not 0 <= node < self.size:
            raise ConfigurationError(parameter, f"node {node} is outside 0..{self.size - 1}")

    def _require_instant(self, parameter: str, t: float) -> None:
        if not math.isfinite(t) or t < 0 or t > self.total_time:
            raise ConfigurationError(parameter, f"time {t} is outside 0..{self.total_time}")


def _require_positive(parameter: str, value: float) -> None:
    if not value > 0:
        raise ConfigurationError(parameter, f"must be positive, got {value}")


def _require_non_negative(parameter: str, value: float) -> None:
    if not value >= 0:
        raise ConfigurationError(parameter, f"must be non-negative, got {value}")


def _typed(cls: Any, values: Mapping[str, Any]) -> Any:
    """Build cls from values, converting each one to the type of the field's default."""
    if not isinstance(values, Mapping):
        raise TypeError(f"{cls.__name__} settings must be a mapping, got {values!r}")
    defaults = cls()
    kwargs: Dict[str, Any] = {}
    for key, value in values.items():
        if not hasattr(defaults, key):
            raise KeyError(f"unknown {cls.__name__} setting {key!r}")
        default = getattr(defaults, key)
        if isinstance(default, bool):
            if not isinstance(value, bool):
                raise ValueError(f"{key} must be true or false, got {value!r}")
            kwargs[key] = value
        else:
            kwargs[key] = type(default)(value)
    return cls(**kwargs)


def config_from_dict(data: Mapping[str, Any]) -> SimulationConfig:
    """Build a SimulationConfig from plain mappings, keeping defaults for missing keys."""
    defaults = SimulationConfig()
    try:
        mobility: Sequence[WaypointConfig] = defaults.mobility
        if "mobility" in data:
            mobility = tuple(
                WaypointConfig(
                    node=int(wp["node"]),
                    time=float(wp["time"]),
                    position=tuple(float(c) for c in wp["position"]),  # type: ignore[arg-type]
                )
                for wp in data["mobility"] or []
            )

        traffic: Sequence[TrafficConfig] = defaults.traffic
        if "traffic" in data:
            traffic = tuple(_typed(TrafficConfig, flow) for flow in data["traffic"] or [])

        aodv = _typed(AodvParameters, data.get("aodv") or {})

        cfg = SimulationConfig(
            size=int(data.get("size", defaults.size)),
            step=float(data.get("step", defaults.step)),
            total_time=float(data.get("total_time", defaults.total_time)),
            radio_range=float(data.get("radio_range", defaults.radio_range)),
            trace=bool(data.get("trace", defaults.trace)),
            print_routes=bool(data.get("print_routes", defaults.print_routes)),
            snapshot_instants=tuple(
                float(t) for t in data.get("snapshot_instants", defaults.snapshot_instants)
            ),
            node_snapshots=tuple(
                (float(entry["time"]), int(entry["node"]))
                for entry in data["node_snapshots"] or []
            )
            if "node_snapshots" in data
            else defaults.node_snapshots,
            mobility=tuple(mobility),
            traffic=tuple(traffic),
            aodv=aodv,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError("config", f"malformed configuration: {exc}") from exc
    return cfg


def load_config(path: Path) -> SimulationConfig:
    import yaml  # type: ignore

    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, Mapping):
        raise ConfigurationError("config", f"{path} must contain a mapping")
    cfg = config_from_dict(data)
    cfg.validate()
    return cfg
