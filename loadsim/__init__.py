"""
Multi-rate IoT load simulator.

Drives synthetic machine telemetry into a relational store on a fixed cycle and
into a document store on independent per-collection cadences.
"""

__version__ = "0.1.0"
