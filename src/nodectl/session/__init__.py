"""Interactive sessions against node containers."""

from nodectl.session.interactive import InteractiveSession, run_container

__all__ = ["InteractiveSession", "run_container"]
