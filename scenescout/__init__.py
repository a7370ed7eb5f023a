"""SceneScout: split a video into contiguous scenes with thumbnails and a frame-diff timeline."""

__version__ = "0.1.0"
