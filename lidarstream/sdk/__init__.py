from .run import ReplayRunResult, replay_capture

__all__ = ["ReplayRunResult", "replay_capture"]
