"""dronectl: keeps a swarm of drones flying."""

try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("dronectl")
except Exception:
    __version__ = "0.3.0"  # fallback

__all__ = ["__version__"]
