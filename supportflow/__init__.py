"""SupportFlow: conversation orchestration for automated customer support."""

__version__ = "0.1.0"
