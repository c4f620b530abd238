from ._serialization import load_state, save_state

__all__ = ["load_state", "save_state"]
