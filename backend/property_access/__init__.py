"""Property access control engine.

Policy layer in front of the generic property store: decides, per caller,
which fields and values can be read and written.
"""
__version__ = "0.1.0"
