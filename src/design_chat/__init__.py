"""
design-chat-stream - chat stream aggregation and message normalization
for a design-agent chat panel.
"""

__version__ = "0.1.0"
