"""
Step-scaling autoscaler for ECS services.

Watches a utilization metric against a scale-up and a scale-down alarm and
moves the service's desired task count by a fixed step, within bounds and
subject to per-direction cooldowns.
"""

__version__ = "0.1.0"
