"""
Multisite queue workers.

Dynamic load balancing of queue worker processes across the sites hosted on
one machine.
"""

__version__ = "0.1.0"
