"""kustoboot — resumable WSL2 / Docker / Kusto emulator deployment."""

__version__ = "0.1.0"
