"""Host graphlet toolkit: flow aggregation and the HPG graphlet codec."""

__version__ = "0.3.0"
