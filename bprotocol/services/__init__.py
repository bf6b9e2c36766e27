"""Service modules"""
from .engine import BProtocol, BProtocolEngine, Compound
from .scenario import Scenario, ScenarioFailed, ScenarioRunner, load_scenario

__all__ = [
    "BProtocol",
    "BProtocolEngine",
    "Compound",
    "Scenario",
    "ScenarioFailed",
    "ScenarioRunner",
    "load_scenario",
]
