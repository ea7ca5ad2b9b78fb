"""Node provisioning steps: pod filtering, batching, preference relaxation, topology spread, bin packing and capacity gauges."""

__version__ = "0.1.0"