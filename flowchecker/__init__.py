"""FlowChecker: watches Homey flows and logic variables for breakage."""

__version__ = "1.2.0"
