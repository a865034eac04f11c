from .engine import Engine, EngineLocations, build_engine

__all__ = ["Engine", "EngineLocations", "build_engine"]
