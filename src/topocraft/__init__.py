"""topocraft - deployment topology compiler.

Turns a declared network + container service + load balancer topology into
an ordered, minimal set of provisioning operations and applies them through
a provider adapter.
"""

__version__ = "0.1.0"
