"""vaultflow: quote lifecycle orchestration for cross-chain vault deposits and withdrawals."""

__version__ = "0.1.0"
