"""envboot — environment bootstrap for uv and bun."""

__version__ = "0.1.0"
