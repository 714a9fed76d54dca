"""
Branching Assessment Engine

Rule-driven clinical assessment engine that walks a patient through a
dynamically ordered sequence of symptom questions for one body region.
"""

__version__ = "1.0.0"
